"""Compute instance and its bootstrap command sequence.

The instance declares an explicit edge to the filesystem construct, so the
engine finishes the filesystem (with its mount targets and access point)
before it starts the instance. The bootstrap sequence refers to the
filesystem id through a reference token, never a copied literal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from aws_cdk import aws_ec2 as ec2
from constructs import Construct

from ..errors import DependencyViolation, SubnetPlacementError
from ..graph import ResourceGraph
from ..providers.assets import AssetBundle
from ..providers.images import MachineImage
from ..providers.network import SubnetKind
from .access import FILESYSTEM_POLICY_ID, ROLE_ID, InstanceRole
from .filesystem import FILESYSTEM_ID, SharedFilesystem
from .network import ImportedNetwork, SecurityBoundary

logger = logging.getLogger(__name__)

INSTANCE_ID = "Ec2Instance"
DEFAULT_INSTANCE_TYPE = "t2.micro"
DEFAULT_INSTANCE_NAME = "test instance"

BOOTSTRAP_ROOT = "/root/cfn"
BUNDLE_PATH = f"{BOOTSTRAP_ROOT}/assets.zip"
INIT_SCRIPT = f"{BOOTSTRAP_ROOT}/initialize.sh"


@dataclass(frozen=True, slots=True)
class BootstrapSequence:
    """The three startup commands: fetch, unpack, execute."""

    fetch: str
    unpack: str
    filesystem_argument: str

    @property
    def execute(self) -> str:
        """Return the init script invocation."""
        return f"{INIT_SCRIPT} {self.filesystem_argument}"

    @property
    def commands(self) -> tuple[str, str, str]:
        """Return the commands in execution order."""
        return (self.fetch, self.unpack, self.execute)


@dataclass(slots=True)
class ComputeInstance:
    """The declared instance and the bootstrap it runs."""

    instance: ec2.Instance
    bootstrap: BootstrapSequence

    @property
    def instance_id(self) -> str:
        """Return a token for the generated instance id."""
        return self.instance.instance_id


def build_bootstrap(
    graph: ResourceGraph,
    instance_id: str,
    filesystem: SharedFilesystem,
    bundle: AssetBundle,
    *,
    region: str,
) -> BootstrapSequence:
    """Build the bootstrap sequence for the instance declared as *instance_id*.

    Refuses to hand out the filesystem id unless the instance already carries
    the explicit edge to the filesystem.
    """
    if FILESYSTEM_ID not in graph:
        raise DependencyViolation(f"{instance_id}: filesystem '{FILESYSTEM_ID}' is not declared.")
    if FILESYSTEM_ID not in graph.explicit_dependencies(instance_id):
        raise DependencyViolation(
            f"{instance_id}: bootstrap needs '{FILESYSTEM_ID}' but no dependency edge exists."
        )
    return BootstrapSequence(
        fetch=f"/usr/bin/aws --region {region} s3 cp {bundle.s3_object_url} {BUNDLE_PATH}",
        unpack=f"unzip {BUNDLE_PATH} -d {BOOTSTRAP_ROOT}/",
        filesystem_argument=filesystem.file_system_id,
    )


def provision_instance(
    scope: Construct,
    graph: ResourceGraph,
    imported: ImportedNetwork,
    role: InstanceRole,
    boundary: SecurityBoundary,
    filesystem: SharedFilesystem,
    bundle: AssetBundle,
    image: MachineImage,
    *,
    region: str,
    instance_type: str = DEFAULT_INSTANCE_TYPE,
    instance_name: str = DEFAULT_INSTANCE_NAME,
) -> ComputeInstance:
    """Declare the instance after the filesystem and wire its bootstrap."""
    network = imported.network
    subnets = network.subnets_of(SubnetKind.PRIVATE_WITH_EGRESS)
    if not subnets:
        raise SubnetPlacementError(
            f"{INSTANCE_ID}: network '{network.name}' has no private subnets with egress."
        )
    subnet = subnets[0]

    instance = ec2.Instance(
        scope,
        INSTANCE_ID,
        vpc=imported.vpc,
        vpc_subnets=imported.selection((subnet,)),
        instance_type=ec2.InstanceType(instance_type),
        machine_image=image.machine_image(),
        role=role.role,
        security_group=boundary.group,
        instance_name=instance_name,
    )
    instance.instance.override_logical_id(INSTANCE_ID)
    graph.add(INSTANCE_ID, "AWS::EC2::Instance", instance)
    graph.add_reference(INSTANCE_ID, boundary.logical_id)

    bundle.grant_read(role.role)

    graph.add_dependency(INSTANCE_ID, FILESYSTEM_ID)
    # The profile only references the role; grants must land before boot.
    graph.add_dependency(INSTANCE_ID, ROLE_ID)
    graph.add_dependency(INSTANCE_ID, FILESYSTEM_POLICY_ID)

    bootstrap = build_bootstrap(graph, INSTANCE_ID, filesystem, bundle, region=region)
    instance.user_data.add_commands(*bootstrap.commands)
    logger.debug("Declared instance %s in %s", instance_type, subnet.subnet_id)
    return ComputeInstance(instance=instance, bootstrap=bootstrap)


__all__ = [
    "BOOTSTRAP_ROOT",
    "BUNDLE_PATH",
    "BootstrapSequence",
    "ComputeInstance",
    "DEFAULT_INSTANCE_NAME",
    "DEFAULT_INSTANCE_TYPE",
    "INIT_SCRIPT",
    "INSTANCE_ID",
    "build_bootstrap",
    "provision_instance",
]
