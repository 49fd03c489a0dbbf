"""Whole-stack orchestration.

The orchestrator walks a fixed, one-directional state machine::

    Unprovisioned -> NetworkResolved -> BoundariesCreated -> PolicyBuilt
        -> FilesystemProvisioned -> ComputeProvisioned -> OutputsExported

A failure stops the walk where it is. Nothing already declared is removed;
the run simply ends with the error.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from aws_cdk import Stack, Tags

from ..context import EnvironmentContext
from ..errors import DependencyViolation
from ..graph import ResourceGraph
from ..providers.assets import AssetBundle
from ..providers.images import LatestAmazonLinux2, MachineImage
from ..providers.network import NetworkLookup
from .access import InstanceRole, build_instance_role, narrow_filesystem_statement
from .compute import (
    DEFAULT_INSTANCE_NAME,
    DEFAULT_INSTANCE_TYPE,
    ComputeInstance,
    provision_instance,
)
from .filesystem import FILESYSTEM_ID, SharedFilesystem, provision_filesystem
from .network import (
    ImportedNetwork,
    NetworkBoundaries,
    build_security_boundaries,
    import_network,
    resolve_network,
)
from .outputs import StackOutputs, export_outputs
from .scope import create_stack, synthesize

logger = logging.getLogger(__name__)


class StackState(str, Enum):
    """Progress of one orchestration run."""

    UNPROVISIONED = "Unprovisioned"
    NETWORK_RESOLVED = "NetworkResolved"
    BOUNDARIES_CREATED = "BoundariesCreated"
    POLICY_BUILT = "PolicyBuilt"
    FILESYSTEM_PROVISIONED = "FilesystemProvisioned"
    COMPUTE_PROVISIONED = "ComputeProvisioned"
    OUTPUTS_EXPORTED = "OutputsExported"


STATE_ORDER: tuple[StackState, ...] = tuple(StackState)


@dataclass(slots=True)
class StackResult:
    """Everything declared by a completed run."""

    context: EnvironmentContext
    stack: Stack
    graph: ResourceGraph
    network: ImportedNetwork
    boundaries: NetworkBoundaries
    role: InstanceRole
    filesystem: SharedFilesystem
    instance: ComputeInstance
    outputs: StackOutputs

    def template(self) -> dict[str, object]:
        """Return the synthesized template document."""
        return synthesize(self.stack)


@dataclass(slots=True)
class StackOrchestrator:
    """Declare the network boundaries, role, filesystem, instance and exports."""

    context: EnvironmentContext
    network_lookup: NetworkLookup
    asset_bundle: AssetBundle
    machine_image: MachineImage = field(default_factory=LatestAmazonLinux2)
    instance_type: str = DEFAULT_INSTANCE_TYPE
    instance_name: str = DEFAULT_INSTANCE_NAME
    narrow_filesystem_scope: bool = False
    tags: Mapping[str, str] = field(default_factory=dict)
    on_transition: Callable[[StackState], None] | None = None
    stack: Stack = field(init=False)
    graph: ResourceGraph = field(init=False)
    state: StackState = field(init=False, default=StackState.UNPROVISIONED)

    def __post_init__(self) -> None:
        self.stack = create_stack(
            self.context,
            description=f"EC2 instance with a shared EFS filesystem ({self.context.stack_name})",
        )
        self.graph = ResourceGraph()

    def advance(self, target: StackState) -> None:
        """Move to *target*, which must be the next state."""
        current = STATE_ORDER.index(self.state)
        if current + 1 >= len(STATE_ORDER) or STATE_ORDER[current + 1] is not target:
            raise DependencyViolation(
                f"Cannot move from {self.state.value} to {target.value}."
            )
        self.state = target
        logger.info("%s: %s", self.context.stack_name, target.value)
        if self.on_transition is not None:
            self.on_transition(target)

    def build(self) -> StackResult:
        """Run every step once and return what was declared."""
        if self.state is not StackState.UNPROVISIONED:
            raise DependencyViolation("A stack can only be built once per orchestrator.")

        if not self.machine_image.pinned:
            logger.warning(
                "Machine image is resolved at apply time; repeated applies may boot "
                "different images. Pin instance.image_id for reproducible stacks."
            )

        network = resolve_network(self.context, self.network_lookup)
        imported = import_network(self.stack, network)
        self.advance(StackState.NETWORK_RESOLVED)

        boundaries = build_security_boundaries(self.stack, self.graph, imported)
        self.advance(StackState.BOUNDARIES_CREATED)

        role = build_instance_role(self.stack, self.graph)
        self.advance(StackState.POLICY_BUILT)

        filesystem = provision_filesystem(self.stack, self.graph, imported, boundaries.filesystem)
        if self.narrow_filesystem_scope:
            narrow_filesystem_statement(role, self.graph, FILESYSTEM_ID, filesystem.arn)
        self.advance(StackState.FILESYSTEM_PROVISIONED)

        instance = provision_instance(
            self.stack,
            self.graph,
            imported,
            role,
            boundaries.compute,
            filesystem,
            self.asset_bundle,
            self.machine_image,
            region=self.context.region,
            instance_type=self.instance_type,
            instance_name=self.instance_name,
        )
        self.advance(StackState.COMPUTE_PROVISIONED)

        outputs = export_outputs(
            self.stack, self.graph, self.context.stack_name, instance, filesystem
        )
        for key, value in sorted(self.tags.items()):
            Tags.of(self.stack).add(key, value)
        self.graph.validate()
        self.advance(StackState.OUTPUTS_EXPORTED)

        return StackResult(
            context=self.context,
            stack=self.stack,
            graph=self.graph,
            network=imported,
            boundaries=boundaries,
            role=role,
            filesystem=filesystem,
            instance=instance,
            outputs=outputs,
        )


def default_tags(
    context: EnvironmentContext,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the tags applied to every taggable resource."""
    tags = {"createdvia": "ec2efs", "environment": context.env_name}
    if extra:
        tags.update(extra)
    return tags


__all__ = [
    "STATE_ORDER",
    "StackOrchestrator",
    "StackResult",
    "StackState",
    "default_tags",
]
