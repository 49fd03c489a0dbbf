"""Encrypted shared filesystem placed in the network's private subnets."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from aws_cdk import RemovalPolicy
from aws_cdk import aws_efs as efs
from constructs import Construct

from ..errors import FilesystemCreationFailed
from ..graph import ResourceGraph
from ..providers.network import Network, Subnet, SubnetKind
from .network import ImportedNetwork, SecurityBoundary
from .scope import pin_logical_id

logger = logging.getLogger(__name__)

FILESYSTEM_ID = "EfsFileSystem"
ACCESS_POINT_ID = "EfsAccessPoint"


@dataclass(slots=True)
class SharedFilesystem:
    """The filesystem construct, its access point and where it is mounted."""

    filesystem: efs.FileSystem
    access_point: efs.AccessPoint
    mount_subnets: tuple[Subnet, ...]

    @property
    def file_system_id(self) -> str:
        """Return a token for the generated filesystem id."""
        return self.filesystem.file_system_id

    @property
    def arn(self) -> str:
        """Return a token for the filesystem ARN."""
        return self.filesystem.file_system_arn


def select_mount_subnets(network: Network) -> tuple[Subnet, ...]:
    """Return one private-with-egress subnet per availability zone."""
    chosen: dict[str, Subnet] = {}
    for subnet in network.subnets_of(SubnetKind.PRIVATE_WITH_EGRESS):
        chosen.setdefault(subnet.availability_zone, subnet)
    return tuple(chosen.values())


def provision_filesystem(
    scope: Construct,
    graph: ResourceGraph,
    imported: ImportedNetwork,
    boundary: SecurityBoundary,
    *,
    encrypted: bool | None = None,
) -> SharedFilesystem:
    """Declare the filesystem, one mount target per zone and an access point.

    Encryption is always on. Passing ``encrypted=False`` is accepted for
    symmetry with other provisioners but has no effect beyond a warning.
    """
    if encrypted is False:
        logger.warning("Ignoring request for an unencrypted filesystem; encryption is mandatory.")

    network = imported.network
    subnets = select_mount_subnets(network)
    if not subnets:
        raise FilesystemCreationFailed(
            f"{FILESYSTEM_ID}: network '{network.name}' has no private subnets with egress."
        )

    filesystem = efs.FileSystem(
        scope,
        FILESYSTEM_ID,
        vpc=imported.vpc,
        vpc_subnets=imported.selection(subnets),
        security_group=boundary.group,
        encrypted=True,
        performance_mode=efs.PerformanceMode.GENERAL_PURPOSE,
        removal_policy=RemovalPolicy.DESTROY,
    )
    pin_logical_id(filesystem, FILESYSTEM_ID)
    access_point = filesystem.add_access_point(ACCESS_POINT_ID)
    pin_logical_id(access_point, ACCESS_POINT_ID)

    graph.add(FILESYSTEM_ID, "AWS::EFS::FileSystem", filesystem)
    graph.add_reference(FILESYSTEM_ID, boundary.logical_id)

    logger.debug(
        "Declared filesystem with %d mount targets in %s",
        len(subnets),
        ", ".join(subnet.availability_zone for subnet in subnets),
    )
    return SharedFilesystem(
        filesystem=filesystem,
        access_point=access_point,
        mount_subnets=subnets,
    )


__all__ = [
    "ACCESS_POINT_ID",
    "FILESYSTEM_ID",
    "SharedFilesystem",
    "provision_filesystem",
    "select_mount_subnets",
]
