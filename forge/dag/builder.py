"""Dependency graph construction for phases.

build_graph() turns a phase list into a PhaseGraph: an index per phase,
forward edges from each dependency to its dependents and reverse edges from
each phase to its dependencies. The graph is read-only; rebuild it whenever
the phase list changes.
"""

from collections import deque
from collections.abc import Collection

import structlog

from forge.errors import CycleError, DuplicatePhaseError, UnknownDependencyError
from forge.models.phase import Phase

logger = structlog.get_logger(__name__)


class PhaseGraph:
    """Adjacency view over a validated, acyclic phase list."""

    def __init__(
        self,
        phases: list[Phase],
        index_map: dict[str, int],
        forward_edges: list[list[int]],
        reverse_edges: list[list[int]],
    ) -> None:
        self.phases = phases
        self.index_map = index_map
        self.forward_edges = forward_edges
        self.reverse_edges = reverse_edges

    def __len__(self) -> int:
        return len(self.phases)

    def is_empty(self) -> bool:
        return not self.phases

    def get_phase(self, index: int) -> Phase:
        return self.phases[index]

    def get_phase_by_number(self, number: str) -> Phase | None:
        index = self.index_map.get(number)
        return None if index is None else self.phases[index]

    def get_index(self, number: str) -> int | None:
        return self.index_map.get(number)

    def dependents(self, index: int) -> list[int]:
        """Indices of phases that depend directly on this one."""
        return self.forward_edges[index]

    def dependencies(self, index: int) -> list[int]:
        """Indices of phases this one depends on directly."""
        return self.reverse_edges[index]

    def root_phases(self) -> list[int]:
        return [i for i, deps in enumerate(self.reverse_edges) if not deps]

    def leaf_phases(self) -> list[int]:
        return [i for i, dependents in enumerate(self.forward_edges) if not dependents]

    def dependencies_satisfied(self, index: int, completed: Collection[int]) -> bool:
        """True if every dependency of the phase is in the completed set."""
        return all(dep in completed for dep in self.reverse_edges[index])


def build_graph(phases: list[Phase]) -> PhaseGraph:
    """Validate a phase list and build its dependency graph.

    Args:
        phases: Phases in declaration order. An empty list gives an empty graph.

    Returns:
        The PhaseGraph for the list.

    Raises:
        DuplicatePhaseError: If two phases share a number.
        UnknownDependencyError: If a phase depends on a missing number.
        CycleError: If the dependencies contain a cycle.
    """
    index_map: dict[str, int] = {}
    for index, phase in enumerate(phases):
        if phase.number in index_map:
            raise DuplicatePhaseError(phase.number)
        index_map[phase.number] = index

    forward_edges: list[list[int]] = [[] for _ in phases]
    reverse_edges: list[list[int]] = [[] for _ in phases]
    for index, phase in enumerate(phases):
        for dep in dict.fromkeys(phase.depends_on):
            dep_index = index_map.get(dep)
            if dep_index is None:
                raise UnknownDependencyError(phase.number, dep)
            forward_edges[dep_index].append(index)
            reverse_edges[index].append(dep_index)

    _check_acyclic(phases, forward_edges, reverse_edges)

    logger.debug(
        "phase_graph_built",
        phases=len(phases),
        edges=sum(len(edges) for edges in forward_edges),
    )
    return PhaseGraph(list(phases), index_map, forward_edges, reverse_edges)


def _check_acyclic(
    phases: list[Phase], forward_edges: list[list[int]], reverse_edges: list[list[int]]
) -> None:
    """Kahn's algorithm; whatever cannot be removed sits on or behind a cycle."""
    in_degree = [len(deps) for deps in reverse_edges]
    queue = deque(i for i, degree in enumerate(in_degree) if degree == 0)
    visited = 0

    while queue:
        current = queue.popleft()
        visited += 1
        for dependent in forward_edges[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if visited != len(phases):
        stuck = [phases[i].number for i, degree in enumerate(in_degree) if degree > 0]
        raise CycleError(stuck)
