"""Named exports for the instance and filesystem ids."""
from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import CfnOutput
from constructs import Construct

from ..errors import DependencyViolation
from ..graph import ResourceGraph
from .compute import INSTANCE_ID, ComputeInstance
from .filesystem import FILESYSTEM_ID, SharedFilesystem

INSTANCE_OUTPUT_ID = "Ec2InstanceId"
FILESYSTEM_OUTPUT_ID = "EfsFileSystemId"


def instance_export_name(stack_name: str) -> str:
    """Return the export name of the instance id."""
    return f"{stack_name}-ec2"


def filesystem_export_name(stack_name: str) -> str:
    """Return the export name of the filesystem id."""
    return f"{stack_name}-efs-id"


@dataclass(frozen=True, slots=True)
class StackOutputs:
    """The two exports a stack publishes."""

    instance_export: str
    filesystem_export: str

    def export_names(self) -> tuple[str, str]:
        """Return both export names."""
        return (self.instance_export, self.filesystem_export)


def export_outputs(
    scope: Construct,
    graph: ResourceGraph,
    stack_name: str,
    instance: ComputeInstance,
    filesystem: SharedFilesystem,
) -> StackOutputs:
    """Declare the instance and filesystem exports."""
    for logical_id in (INSTANCE_ID, FILESYSTEM_ID):
        if logical_id not in graph:
            raise DependencyViolation(f"Cannot export '{logical_id}': not declared.")
    outputs = StackOutputs(
        instance_export=instance_export_name(stack_name),
        filesystem_export=filesystem_export_name(stack_name),
    )
    CfnOutput(
        scope,
        INSTANCE_OUTPUT_ID,
        value=instance.instance_id,
        export_name=outputs.instance_export,
        description="Compute instance id",
    )
    CfnOutput(
        scope,
        FILESYSTEM_OUTPUT_ID,
        value=filesystem.file_system_id,
        export_name=outputs.filesystem_export,
        description="Shared filesystem id",
    )
    return outputs


__all__ = [
    "FILESYSTEM_OUTPUT_ID",
    "INSTANCE_OUTPUT_ID",
    "StackOutputs",
    "export_outputs",
    "filesystem_export_name",
    "instance_export_name",
]
