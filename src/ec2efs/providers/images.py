"""Machine image selection for the compute instance.

``LatestAmazonLinux2`` resolves the newest Amazon Linux 2 image when the stack
is applied, so two applies may boot different images. Use
``PinnedMachineImage`` when a reproducible image is required.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from aws_cdk import aws_ec2 as ec2

from ..errors import Ec2EfsError

_AMI_PATTERN = re.compile(r"^ami-[0-9a-f]{8}([0-9a-f]{9})?$")


class MachineImageError(Ec2EfsError):
    """Raised when an image identifier is malformed."""


class MachineImage(Protocol):
    """Supply the machine image for an instance."""

    pinned: bool

    def machine_image(self) -> ec2.IMachineImage:
        """Return the CDK machine image."""
        ...


@dataclass(frozen=True, slots=True)
class LatestAmazonLinux2:
    """Latest Amazon Linux 2 image, read from the public SSM parameter."""

    pinned: bool = False

    def machine_image(self) -> ec2.IMachineImage:
        return ec2.MachineImage.latest_amazon_linux2()


@dataclass(frozen=True, slots=True)
class PinnedMachineImage:
    """A fixed image id in one region."""

    ami_id: str
    region: str
    pinned: bool = True

    def __post_init__(self) -> None:
        if not _AMI_PATTERN.match(self.ami_id):
            raise MachineImageError(f"'{self.ami_id}' is not a valid image id.")

    def machine_image(self) -> ec2.IMachineImage:
        return ec2.MachineImage.generic_linux({self.region: self.ami_id})


def machine_image_for(image_id: str | None, region: str) -> MachineImage:
    """Return a pinned image when *image_id* is set, otherwise the latest one."""
    if image_id:
        return PinnedMachineImage(image_id, region=region)
    return LatestAmazonLinux2()


__all__ = [
    "LatestAmazonLinux2",
    "MachineImage",
    "MachineImageError",
    "PinnedMachineImage",
    "machine_image_for",
]
