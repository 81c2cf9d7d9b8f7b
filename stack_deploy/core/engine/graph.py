"""
Dependency graph — host filtering, validation and deployment order.

Flow:
    all descriptors → select_local(host) → DependencyGraph → plan()

The graph only contains stacks assigned to this host. Every depends_on
entry must name another local stack: a dependency that is missing from
the repository, or that runs on a different host, is an error rather
than something silently dropped. Ordering is Kahn's algorithm with a
min-heap keyed on stack name, so stacks with no ordering constraint
between them always come out alphabetically and the plan is the same
on every run for the same repository.

The graph is rebuilt from scratch every cycle and never mutated.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from stack_deploy.core.errors import DependencyCycle, UnknownOrCrossHostDependency
from stack_deploy.core.models.stack import StackDescriptor

logger = logging.getLogger(__name__)


def select_local(descriptors: Iterable[StackDescriptor], host: str) -> list[StackDescriptor]:
    """Keep the descriptors whose runs_on includes ``host``."""
    local = []
    for descriptor in descriptors:
        if descriptor.runs_on_host(host):
            local.append(descriptor)
        else:
            logger.info(
                "Skipping %s because my hostname %s is not in runs_on: %s",
                descriptor.name,
                host,
                sorted(descriptor.runs_on),
            )
    return local


class DependencyGraph:
    """Directed graph over the local stacks; edge A → B means A depends on B."""

    def __init__(self, stacks: Mapping[str, StackDescriptor]):
        self._stacks = MappingProxyType(dict(stacks))
        self._dependencies: dict[str, frozenset[str]] = {
            name: frozenset(d.depends_on) for name, d in self._stacks.items()
        }
        dependents: dict[str, set[str]] = {name: set() for name in self._stacks}
        for name, deps in self._dependencies.items():
            for dep in deps:
                dependents[dep].add(name)
        self._dependents = {name: frozenset(s) for name, s in dependents.items()}

    @classmethod
    def build(
        cls,
        descriptors: Iterable[StackDescriptor],
        local_host: str,
    ) -> DependencyGraph:
        """Filter to ``local_host`` and validate every dependency edge.

        ``descriptors`` must be the whole repository's declarations so
        that a dependency running elsewhere can be reported as such.

        Raises:
            UnknownOrCrossHostDependency: A dependency is not a local stack.
        """
        everything = list(descriptors)
        local = {d.name: d for d in select_local(everything, local_host)}
        all_by_name = {d.name: d for d in everything}

        for name in sorted(local):
            for dep in sorted(local[name].depends_on):
                if dep in local:
                    continue
                other = all_by_name.get(dep)
                elsewhere = tuple(sorted(other.runs_on)) if other is not None else ()
                raise UnknownOrCrossHostDependency(name, dep, elsewhere)

        return cls(local)

    # ── Queries ─────────────────────────────────────────────────

    @property
    def names(self) -> list[str]:
        return sorted(self._stacks)

    def __len__(self) -> int:
        return len(self._stacks)

    def __contains__(self, name: object) -> bool:
        return name in self._stacks

    def descriptor(self, name: str) -> StackDescriptor:
        return self._stacks[name]

    def dependencies(self, name: str) -> frozenset[str]:
        return self._dependencies[name]

    def dependents(self, name: str) -> frozenset[str]:
        return self._dependents[name]

    def descendants(self, name: str) -> set[str]:
        """Every stack that transitively depends on ``name``."""
        seen: set[str] = set()
        queue = deque(self._dependents[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._dependents[current] - seen)
        return seen

    # ── Ordering ────────────────────────────────────────────────

    def topological_order(self) -> list[str]:
        """Dependencies first, ties broken by ascending name.

        Raises:
            DependencyCycle: Carrying the names of the stacks on the cycle(s).
        """
        remaining = {name: len(deps) for name, deps in self._dependencies.items()}
        ready = [name for name, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            name = heapq.heappop(ready)
            order.append(name)
            for dependent in self._dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != len(self._stacks):
            residual = set(self._stacks) - set(order)
            raise DependencyCycle(frozenset(self._cycle_members(residual)))
        return order

    def _cycle_members(self, residual: set[str]) -> set[str]:
        """Strip stacks that merely wait on a cycle, keep the cycle itself.

        Kahn's leftovers include stacks downstream of a cycle. Those have
        no dependents left inside the residual once peeled from the
        outside in, so repeatedly removing such sinks leaves the loop.
        """
        members = set(residual)
        changed = True
        while changed:
            changed = False
            for name in sorted(members):
                if not (self._dependents[name] & members):
                    members.discard(name)
                    changed = True
        return members


@dataclass(frozen=True)
class DeploymentPlan:
    """Stacks in deployment order, plus the graph they came from."""

    stacks: tuple[StackDescriptor, ...]
    graph: DependencyGraph

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.stacks]

    @property
    def requires_secrets(self) -> bool:
        return any(s.requires_secrets for s in self.stacks)

    def __iter__(self) -> Iterator[StackDescriptor]:
        return iter(self.stacks)

    def __len__(self) -> int:
        return len(self.stacks)

    def reversed(self) -> list[StackDescriptor]:
        """Dependents first; the order for tearing stacks down."""
        return list(reversed(self.stacks))


def build_plan(descriptors: Iterable[StackDescriptor], local_host: str) -> DeploymentPlan:
    """Compute the deployment plan for ``local_host``.

    All-or-nothing: any GraphError propagates and no plan is returned.
    """
    graph = DependencyGraph.build(descriptors, local_host)
    order = graph.topological_order()
    logger.info("Deployment plan for %s: %s", local_host, " → ".join(order) or "(empty)")
    return DeploymentPlan(
        stacks=tuple(graph.descriptor(name) for name in order),
        graph=graph,
    )
