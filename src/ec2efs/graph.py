"""Declaration-level dependency graph for the stack.

Nodes are the stack's components (security groups, role, access policy,
filesystem, instance), each backed by the CDK construct that emits it. An
edge ``a -> b`` means *b must exist before a*. Edges come from two places:

* explicit edges declared with :meth:`ResourceGraph.add_dependency`, mirrored
  onto the constructs with ``node.add_dependency`` so they synthesize as
  ``DependsOn``, and
* reference edges declared with :meth:`ResourceGraph.add_reference` when one
  component consumes another's attribute. CDK derives the template side of
  those from its tokens; the graph records them for ordering and planning.

The graph never talks to a provider and never renders anything itself.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from constructs import Construct

from .errors import DependencyViolation, Ec2EfsError


class GraphError(Ec2EfsError):
    """Raised when the graph itself is malformed."""


@dataclass(frozen=True, slots=True, eq=False)
class Component:
    """One declared component and the construct that emits it."""

    logical_id: str
    type: str
    construct: Construct


class ResourceGraph:
    """Components keyed by logical id, plus the edges between them."""

    def __init__(self) -> None:
        self._components: dict[str, Component] = {}
        self._explicit: dict[str, set[str]] = {}
        self._references: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._components)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._components

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components.values())

    # Declaration ---------------------------------------------------------
    def add(self, logical_id: str, resource_type: str, construct: Construct) -> Component:
        """Declare *construct* under *logical_id*."""
        if logical_id in self._components:
            raise GraphError(f"Logical id '{logical_id}' is already declared.")
        component = Component(logical_id=logical_id, type=resource_type, construct=construct)
        self._components[logical_id] = component
        self._explicit[logical_id] = set()
        self._references[logical_id] = set()
        return component

    def add_dependency(self, dependent: Component | str, dependency: Component | str) -> None:
        """Declare that *dependency* must exist before *dependent*."""
        source, target = self._edge(dependent, dependency)
        if target.logical_id in self._explicit[source.logical_id]:
            return
        self._explicit[source.logical_id].add(target.logical_id)
        source.construct.node.add_dependency(target.construct)

    def add_reference(self, consumer: Component | str, source: Component | str) -> None:
        """Record that *consumer* reads an attribute of *source*."""
        reader, origin = self._edge(consumer, source)
        self._references[reader.logical_id].add(origin.logical_id)

    def _edge(
        self, dependent: Component | str, dependency: Component | str
    ) -> tuple[Component, Component]:
        source_id = _logical_id(dependent)
        target_id = _logical_id(dependency)
        if source_id == target_id:
            raise DependencyViolation(f"Resource '{source_id}' cannot depend on itself.")
        for logical_id in (source_id, target_id):
            if logical_id not in self._components:
                raise DependencyViolation(f"Resource '{logical_id}' is not declared.")
        return self._components[source_id], self._components[target_id]

    # Queries -------------------------------------------------------------
    def get(self, logical_id: str) -> Component:
        """Return the component declared under *logical_id*."""
        try:
            return self._components[logical_id]
        except KeyError:
            raise GraphError(f"Logical id '{logical_id}' is not declared.") from None

    def explicit_dependencies(self, logical_id: str) -> frozenset[str]:
        """Return the explicitly declared dependencies of *logical_id*."""
        self.get(logical_id)
        return frozenset(self._explicit[logical_id])

    def implicit_dependencies(self, logical_id: str) -> frozenset[str]:
        """Return the components whose attributes *logical_id* consumes."""
        self.get(logical_id)
        return frozenset(self._references[logical_id])

    def dependencies(self, logical_id: str) -> frozenset[str]:
        """Return every component that must exist before *logical_id*."""
        return self.explicit_dependencies(logical_id) | self.implicit_dependencies(logical_id)

    def depends_on(self, dependent: Component | str, dependency: Component | str) -> bool:
        """Return ``True`` when *dependency* is reachable from *dependent*."""
        target = _logical_id(dependency)
        seen: set[str] = set()
        pending = [_logical_id(dependent)]
        while pending:
            current = pending.pop()
            for upstream in self.dependencies(current):
                if upstream == target:
                    return True
                if upstream not in seen:
                    seen.add(upstream)
                    pending.append(upstream)
        return False

    def validate(self) -> None:
        """Raise :class:`DependencyViolation` on a dependency cycle."""
        self.creation_waves()

    def creation_waves(self) -> list[list[str]]:
        """Return components grouped into layers that may be created in parallel.

        Every component in wave *n* depends only on components in earlier
        waves. Within a wave, declaration order is preserved.
        """
        remaining = {
            logical_id: set(self.dependencies(logical_id)) for logical_id in self._components
        }
        waves: list[list[str]] = []
        placed: set[str] = set()
        while remaining:
            wave = [logical_id for logical_id, deps in remaining.items() if deps <= placed]
            if not wave:
                cycle = ", ".join(sorted(remaining))
                raise DependencyViolation(f"Dependency cycle detected between: {cycle}.")
            for logical_id in wave:
                del remaining[logical_id]
            placed.update(wave)
            waves.append(wave)
        return waves

    def topological_order(self) -> list[str]:
        """Return logical ids in an order that satisfies every edge."""
        return [logical_id for wave in self.creation_waves() for logical_id in wave]


def _logical_id(value: Component | str) -> str:
    return value.logical_id if isinstance(value, Component) else value


__all__ = [
    "Component",
    "GraphError",
    "ResourceGraph",
]
