"""Bootstrap asset bundle stored in S3."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from aws_cdk import Stack
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3 as s3

from ..errors import Ec2EfsError

ASSET_BUCKET_ID = "AssetBucket"


class AssetBundleError(Ec2EfsError):
    """Raised when the asset location is malformed."""


class AssetBundle(Protocol):
    """Addressable bundle of bootstrap files."""

    @property
    def s3_object_url(self) -> str:
        """Return the ``s3://`` URL of the bundle."""
        ...

    def grant_read(self, role: iam.IRole) -> iam.Grant:
        """Allow *role* to read the bundle."""
        ...


@dataclass(frozen=True, slots=True)
class S3AssetBundle:
    """Bundle uploaded ahead of time to ``s3://<bucket>/<key>``."""

    bucket: str
    key: str

    def __post_init__(self) -> None:
        if not self.bucket or "/" in self.bucket:
            raise AssetBundleError(f"'{self.bucket}' is not a valid bucket name.")
        if not self.key or self.key.startswith("/"):
            raise AssetBundleError(f"'{self.key}' is not a valid object key.")

    @property
    def s3_object_url(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def grant_read(self, role: iam.IRole) -> iam.Grant:
        bucket = s3.Bucket.from_bucket_name(Stack.of(role), ASSET_BUCKET_ID, self.bucket)
        return bucket.grant_read(role, self.key)


__all__ = ["ASSET_BUCKET_ID", "AssetBundle", "AssetBundleError", "S3AssetBundle"]
