"""Machine image and asset bundle tests."""
from __future__ import annotations

import json

import pytest
from aws_cdk import Stack
from aws_cdk import aws_iam as iam
from aws_cdk.assertions import Template

from ec2efs.providers.assets import AssetBundleError, S3AssetBundle
from ec2efs.providers.images import (
    LatestAmazonLinux2,
    MachineImageError,
    PinnedMachineImage,
    machine_image_for,
)


def test_latest_image_is_resolved_at_apply_time(stack: Stack) -> None:
    """The latest image comes from the public SSM parameter."""
    image = LatestAmazonLinux2()

    config = image.machine_image().get_image(stack)

    assert image.pinned is False
    assert "Ref" in stack.resolve(config.image_id)
    parameters = Template.from_stack(stack).to_json()["Parameters"]
    defaults = [parameter.get("Default", "") for parameter in parameters.values()]
    assert any("amzn2-ami-hvm" in default for default in defaults)


def test_pinned_image_is_literal(stack: Stack) -> None:
    """A pinned image id is written as-is for its region."""
    image = PinnedMachineImage("ami-12345678", region="ap-southeast-2")

    config = image.machine_image().get_image(stack)

    assert image.pinned is True
    assert config.image_id == "ami-12345678"


@pytest.mark.parametrize("value", ["ami-xyz", "i-0123456789abcdef0", "ami-0123"])
def test_pinned_image_rejects_malformed_ids(value: str) -> None:
    """Only well-formed image ids are accepted."""
    with pytest.raises(MachineImageError):
        PinnedMachineImage(value, region="ap-southeast-2")


def test_machine_image_for_selects_by_configuration() -> None:
    """A configured id pins the image; otherwise the latest is used."""
    assert isinstance(machine_image_for(None, "ap-southeast-2"), LatestAmazonLinux2)
    pinned = machine_image_for("ami-0123456789abcdef0", "ap-southeast-2")
    assert isinstance(pinned, PinnedMachineImage)
    assert pinned.region == "ap-southeast-2"


def test_bundle_url() -> None:
    """The bundle is addressed by an s3:// URL."""
    bundle = S3AssetBundle("bootstrap-bucket", "ec2efs/assets.zip")

    assert bundle.s3_object_url == "s3://bootstrap-bucket/ec2efs/assets.zip"


@pytest.mark.parametrize(
    ("bucket", "key"),
    [("", "assets.zip"), ("a/b", "assets.zip"), ("bucket", ""), ("bucket", "/assets.zip")],
)
def test_bundle_rejects_malformed_locations(bucket: str, key: str) -> None:
    """Bucket names and keys are validated up front."""
    with pytest.raises(AssetBundleError):
        S3AssetBundle(bucket, key)


def test_grant_read_targets_bucket_and_object(stack: Stack) -> None:
    """grant_read gives the role read access to the bucket and the bundle object."""
    role = iam.Role(stack, "Reader", assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"))
    bundle = S3AssetBundle("bootstrap-bucket", "ec2efs/assets.zip")

    bundle.grant_read(role)

    template = Template.from_stack(stack)
    template.resource_count_is("AWS::S3::Bucket", 0)
    (policy,) = template.find_resources("AWS::IAM::Policy").values()
    (statement,) = policy["Properties"]["PolicyDocument"]["Statement"]
    assert {"s3:GetObject*", "s3:List*"} <= set(statement["Action"])
    assert "bootstrap-bucket/ec2efs/assets.zip" in json.dumps(statement["Resource"])
