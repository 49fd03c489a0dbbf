"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import pytest
from aws_cdk import Stack

from ec2efs.context import EnvironmentContext
from ec2efs.graph import ResourceGraph
from ec2efs.providers.assets import S3AssetBundle
from ec2efs.providers.images import PinnedMachineImage
from ec2efs.providers.network import Network, Subnet, SubnetKind
from ec2efs.stack.network import ImportedNetwork, import_network
from ec2efs.stack.scope import create_stack


class StaticNetworkLookup:
    """In-memory network lookup that records every name it was asked for."""

    def __init__(self, *networks: Network) -> None:
        self.networks = {network.name: network for network in networks}
        self.calls: list[str] = []

    def find_by_name(self, name: str) -> Network | None:
        self.calls.append(name)
        return self.networks.get(name)


@pytest.fixture
def context() -> EnvironmentContext:
    """Environment used throughout the suite."""
    return EnvironmentContext(
        region="ap-southeast-2",
        account_id="123456789012",
        account_name="sandpit1",
        env_name="kate",
    )


@pytest.fixture
def network() -> Network:
    """A network with public, private (two AZs) and isolated subnets."""
    return Network(
        name="vpc-sandpit1",
        vpc_id="vpc-0a1b2c3d",
        cidr_block="10.20.0.0/16",
        subnets=(
            Subnet("subnet-pub-a", "ap-southeast-2a", SubnetKind.PUBLIC),
            Subnet("subnet-priv-a", "ap-southeast-2a", SubnetKind.PRIVATE_WITH_EGRESS),
            Subnet("subnet-priv-a2", "ap-southeast-2a", SubnetKind.PRIVATE_WITH_EGRESS),
            Subnet("subnet-priv-b", "ap-southeast-2b", SubnetKind.PRIVATE_WITH_EGRESS),
            Subnet("subnet-iso-c", "ap-southeast-2c", SubnetKind.ISOLATED),
        ),
    )


@pytest.fixture
def public_only_network() -> Network:
    """A network without any private subnets."""
    return Network(
        name="vpc-sandpit1",
        vpc_id="vpc-0a1b2c3d",
        cidr_block="10.20.0.0/16",
        subnets=(Subnet("subnet-pub-a", "ap-southeast-2a", SubnetKind.PUBLIC),),
    )


@pytest.fixture
def lookup(network: Network) -> StaticNetworkLookup:
    """Lookup that knows about :func:`network`."""
    return StaticNetworkLookup(network)


@pytest.fixture
def empty_lookup() -> StaticNetworkLookup:
    """Lookup that knows about no networks at all."""
    return StaticNetworkLookup()


@pytest.fixture
def bundle() -> S3AssetBundle:
    """Bootstrap bundle location."""
    return S3AssetBundle(bucket="bootstrap-bucket", key="ec2efs/assets.zip")


@pytest.fixture
def pinned_image() -> PinnedMachineImage:
    """A fixed image so templates are reproducible."""
    return PinnedMachineImage("ami-0123456789abcdef0", region="ap-southeast-2")


@pytest.fixture
def make_lookup() -> type[StaticNetworkLookup]:
    """Factory for lookups over arbitrary networks."""
    return StaticNetworkLookup


@pytest.fixture
def stack(context: EnvironmentContext) -> Stack:
    """An empty stack bound to :func:`context`."""
    return create_stack(context)


@pytest.fixture
def graph() -> ResourceGraph:
    """An empty dependency graph."""
    return ResourceGraph()


@pytest.fixture
def imported(stack: Stack, network: Network) -> ImportedNetwork:
    """:func:`network` imported into :func:`stack`."""
    return import_network(stack, network)
