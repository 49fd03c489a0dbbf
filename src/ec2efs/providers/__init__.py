"""Provider interfaces for ec2efs."""
from __future__ import annotations

from .assets import AssetBundle, AssetBundleError, S3AssetBundle
from .cloudformation import CloudFormationDeployer, DeployError, DeployResult
from .images import (
    LatestAmazonLinux2,
    MachineImage,
    MachineImageError,
    PinnedMachineImage,
    machine_image_for,
)
from .network import Ec2NetworkLookup, Network, NetworkLookup, Subnet, SubnetKind

__all__ = [
    "AssetBundle",
    "AssetBundleError",
    "CloudFormationDeployer",
    "DeployError",
    "DeployResult",
    "Ec2NetworkLookup",
    "LatestAmazonLinux2",
    "MachineImage",
    "MachineImageError",
    "Network",
    "NetworkLookup",
    "PinnedMachineImage",
    "S3AssetBundle",
    "Subnet",
    "SubnetKind",
    "machine_image_for",
]
