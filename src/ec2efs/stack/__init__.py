"""Stack builders: network boundaries, role, filesystem, instance and exports."""
from __future__ import annotations

from .access import FILESYSTEM_ACTIONS, InstanceRole, build_instance_role
from .compute import BootstrapSequence, ComputeInstance, build_bootstrap, provision_instance
from .filesystem import SharedFilesystem, provision_filesystem
from .network import (
    ImportedNetwork,
    NetworkBoundaries,
    SecurityBoundary,
    build_security_boundaries,
    import_network,
    resolve_network,
)
from .orchestrator import StackOrchestrator, StackResult, StackState, default_tags
from .outputs import StackOutputs, export_outputs
from .scope import create_stack, synthesize

__all__ = [
    # network
    "ImportedNetwork",
    "NetworkBoundaries",
    "SecurityBoundary",
    "build_security_boundaries",
    "import_network",
    "resolve_network",
    # access
    "FILESYSTEM_ACTIONS",
    "InstanceRole",
    "build_instance_role",
    # filesystem
    "SharedFilesystem",
    "provision_filesystem",
    # compute
    "BootstrapSequence",
    "ComputeInstance",
    "build_bootstrap",
    "provision_instance",
    # outputs
    "StackOutputs",
    "export_outputs",
    # orchestration
    "StackOrchestrator",
    "StackResult",
    "StackState",
    "default_tags",
    # scope
    "create_stack",
    "synthesize",
]
