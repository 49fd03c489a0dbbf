"""Network resolution, import and security group construction.

Both security groups admit traffic only from the network's own address range.
Egress is left at the provider default (allow all).
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from aws_cdk import aws_ec2 as ec2
from constructs import Construct

from ..context import EnvironmentContext
from ..errors import NetworkNotFound
from ..graph import ResourceGraph
from ..providers.network import Network, NetworkLookup, Subnet
from .scope import pin_logical_id

logger = logging.getLogger(__name__)

SECURE_TRANSPORT_PORT = 443
FILESYSTEM_PORT = 2049

VPC_ID = "Vpc"
COMPUTE_SECURITY_GROUP_ID = "Ec2SecurityGroup"
FILESYSTEM_SECURITY_GROUP_ID = "EfsSecurityGroup"
SECURITY_GROUP_TYPE = "AWS::EC2::SecurityGroup"


@dataclass(frozen=True, slots=True)
class IngressRule:
    """One inbound TCP rule."""

    port: int
    source_cidr: str
    description: str


@dataclass(slots=True)
class ImportedNetwork:
    """A looked-up network made addressable inside one stack."""

    network: Network
    vpc: ec2.IVpc
    scope: Construct
    _subnets: dict[str, ec2.ISubnet] = field(default_factory=dict)

    def subnet(self, subnet: Subnet) -> ec2.ISubnet:
        """Return the imported subnet, importing it on first use."""
        imported = self._subnets.get(subnet.subnet_id)
        if imported is None:
            imported = ec2.Subnet.from_subnet_attributes(
                self.scope,
                f"Subnet-{subnet.subnet_id}",
                subnet_id=subnet.subnet_id,
                availability_zone=subnet.availability_zone,
            )
            self._subnets[subnet.subnet_id] = imported
        return imported

    def selection(self, subnets: tuple[Subnet, ...]) -> ec2.SubnetSelection:
        """Return a selection of exactly *subnets*."""
        return ec2.SubnetSelection(subnets=[self.subnet(subnet) for subnet in subnets])


@dataclass(slots=True)
class SecurityBoundary:
    """A declared security group and the rules it carries."""

    logical_id: str
    group: ec2.SecurityGroup
    rules: tuple[IngressRule, ...]

    @property
    def group_id(self) -> str:
        """Return a token for the group's id."""
        return self.group.security_group_id


@dataclass(slots=True)
class NetworkBoundaries:
    """The two security groups every stack declares."""

    compute: SecurityBoundary
    filesystem: SecurityBoundary

    def __iter__(self) -> Iterator[SecurityBoundary]:
        return iter((self.compute, self.filesystem))


def resolve_network(context: EnvironmentContext, lookup: NetworkLookup) -> Network:
    """Return the environment's network or raise :class:`NetworkNotFound`."""
    name = context.network_name
    network = lookup.find_by_name(name)
    if network is None:
        raise NetworkNotFound(name, f"no such network in {context.account_id}/{context.region}")
    return network


def import_network(scope: Construct, network: Network) -> ImportedNetwork:
    """Reference *network* from *scope* without managing it."""
    zones = sorted({subnet.availability_zone for subnet in network.subnets})
    vpc = ec2.Vpc.from_vpc_attributes(
        scope,
        VPC_ID,
        vpc_id=network.vpc_id,
        availability_zones=zones,
        vpc_cidr_block=network.cidr_block,
    )
    return ImportedNetwork(network=network, vpc=vpc, scope=scope)


def build_security_boundaries(
    scope: Construct,
    graph: ResourceGraph,
    imported: ImportedNetwork,
) -> NetworkBoundaries:
    """Declare the compute and filesystem security groups."""
    cidr = imported.network.cidr_block
    compute = _security_group(
        scope,
        graph,
        imported,
        COMPUTE_SECURITY_GROUP_ID,
        description="security group for the compute instance",
        rule=IngressRule(
            port=SECURE_TRANSPORT_PORT,
            source_cidr=cidr,
            description="https within the vpc",
        ),
    )
    filesystem = _security_group(
        scope,
        graph,
        imported,
        FILESYSTEM_SECURITY_GROUP_ID,
        description="security group for the shared filesystem",
        rule=IngressRule(
            port=FILESYSTEM_PORT,
            source_cidr=cidr,
            description="data within the vpc",
        ),
    )
    logger.debug("Declared security groups scoped to %s", cidr)
    return NetworkBoundaries(compute=compute, filesystem=filesystem)


def _security_group(
    scope: Construct,
    graph: ResourceGraph,
    imported: ImportedNetwork,
    logical_id: str,
    *,
    description: str,
    rule: IngressRule,
) -> SecurityBoundary:
    group = ec2.SecurityGroup(
        scope,
        logical_id,
        vpc=imported.vpc,
        description=description,
        allow_all_outbound=True,
    )
    group.add_ingress_rule(
        ec2.Peer.ipv4(rule.source_cidr),
        ec2.Port.tcp(rule.port),
        rule.description,
    )
    pin_logical_id(group, logical_id)
    graph.add(logical_id, SECURITY_GROUP_TYPE, group)
    return SecurityBoundary(logical_id=logical_id, group=group, rules=(rule,))


__all__ = [
    "COMPUTE_SECURITY_GROUP_ID",
    "FILESYSTEM_PORT",
    "FILESYSTEM_SECURITY_GROUP_ID",
    "ImportedNetwork",
    "IngressRule",
    "NetworkBoundaries",
    "SECURE_TRANSPORT_PORT",
    "SecurityBoundary",
    "build_security_boundaries",
    "import_network",
    "resolve_network",
]
