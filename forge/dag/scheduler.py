"""Wave scheduler for the phase DAG.

The scheduler owns the live status of every phase. Only the executor's
coordinating loop calls its mark_* methods, and it applies results one at a
time, so status updates never race.

Planning (compute_waves) and live readiness (get_ready_phases) share the
same predicate, PhaseGraph.dependencies_satisfied, but planning runs on a
private copy of the completed set and never touches live status.
"""

from dataclasses import dataclass, field

import structlog

from forge.config import DagConfig
from forge.dag.builder import PhaseGraph, build_graph
from forge.dag.status import (
    Completed,
    Failed,
    Pending,
    PhaseStatus,
    Ready,
    Running,
    Skipped,
)
from forge.models.phase import Phase

logger = structlog.get_logger(__name__)


@dataclass
class PhaseNode:
    """A phase together with its runtime status."""

    phase: Phase
    index: int
    status: PhaseStatus = field(default_factory=Pending)

    @property
    def number(self) -> str:
        return self.phase.number

    def is_ready_to_start(self) -> bool:
        return isinstance(self.status, Pending | Ready)


class DagScheduler:
    """Decides which phases may run and records how they finished.

    Usage:
        >>> scheduler = DagScheduler.from_phases(phases)
        >>> scheduler.compute_waves()
        [['01'], ['02', '03'], ['04']]
        >>> for node in scheduler.get_ready_phases():
        ...     scheduler.mark_running(node.number)
    """

    def __init__(self, graph: PhaseGraph, config: DagConfig | None = None) -> None:
        self.graph = graph
        self.config = config or DagConfig()
        self.nodes = [PhaseNode(phase=phase, index=i) for i, phase in enumerate(graph.phases)]
        self.completed: set[int] = set()
        self.failed: set[int] = set()

    @classmethod
    def from_phases(cls, phases: list[Phase], config: DagConfig | None = None) -> "DagScheduler":
        """Build the graph and a scheduler over it.

        Raises:
            GraphError: If the phase list is not a valid DAG.
        """
        return cls(build_graph(phases), config)

    def get_node(self, number: str) -> PhaseNode | None:
        index = self.graph.get_index(number)
        return None if index is None else self.nodes[index]

    # -------------------------------------------------------------------------
    # Planning and readiness
    # -------------------------------------------------------------------------

    def compute_waves(self) -> list[list[str]]:
        """Group every phase into waves of simultaneously runnable phases.

        Phases within a wave keep declaration order. Live status is not read
        or modified.
        """
        completed: set[int] = set()
        waves: list[list[str]] = []

        while len(completed) < len(self.nodes):
            wave = [
                node.index
                for node in self.nodes
                if node.index not in completed
                and self.graph.dependencies_satisfied(node.index, completed)
            ]
            if not wave:
                break
            waves.append([self.nodes[i].number for i in wave])
            completed.update(wave)

        return waves

    def get_ready_phases(self) -> list[PhaseNode]:
        """Phases that have not started and whose dependencies all completed."""
        return [
            node
            for node in self.nodes
            if node.is_ready_to_start()
            and self.graph.dependencies_satisfied(node.index, self.completed)
        ]

    def promote_ready(self) -> list[str]:
        """Move every ready Pending phase to Ready. Returns the promoted numbers."""
        promoted = []
        for node in self.get_ready_phases():
            if isinstance(node.status, Pending):
                node.status = Ready()
                promoted.append(node.number)
        return promoted

    def blocked_phases(self) -> list[str]:
        """Non-terminal phases that can never start.

        A phase is blocked when one of its dependencies failed, was skipped,
        or is itself blocked.
        """
        blocked = set(self.failed)
        changed = True
        while changed:
            changed = False
            for node in self.nodes:
                if node.index in blocked or node.status.is_terminal:
                    continue
                if any(dep in blocked for dep in self.graph.dependencies(node.index)):
                    blocked.add(node.index)
                    changed = True
        return [
            self.nodes[i].number for i in sorted(blocked) if not self.nodes[i].status.is_terminal
        ]

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _node_for_transition(self, number: str, transition: str) -> PhaseNode | None:
        node = self.get_node(number)
        if node is None:
            logger.warning("unknown_phase", phase=number, transition=transition)
            return None
        if node.status.is_terminal:
            logger.warning(
                "phase_already_terminal",
                phase=number,
                status=node.status.kind,
                transition=transition,
            )
            return None
        return node

    def mark_running(self, number: str) -> bool:
        node = self._node_for_transition(number, "running")
        if node is None:
            return False
        if not node.is_ready_to_start():
            logger.warning("phase_not_startable", phase=number, status=node.status.kind)
            return False
        node.status = Running()
        logger.info("phase_running", phase=number)
        return True

    def mark_completed(self, number: str, iterations: int) -> bool:
        node = self._node_for_transition(number, "completed")
        if node is None:
            return False
        node.status = Completed(iterations=iterations)
        self.completed.add(node.index)
        logger.info("phase_marked_completed", phase=number, iterations=iterations)
        return True

    def mark_failed(self, number: str, error: str) -> list[str]:
        """Mark a phase failed.

        Returns:
            Numbers of the dependents skipped as a result (only with fail_fast).
        """
        node = self._node_for_transition(number, "failed")
        if node is None:
            return []
        node.status = Failed(error=error)
        self.failed.add(node.index)
        logger.info("phase_marked_failed", phase=number, error=error)
        if self.config.fail_fast:
            return self.skip_dependents(node.index)
        return []

    def mark_skipped(self, number: str) -> list[str]:
        """Skip a phase and, since it will never complete, its dependents.

        A phase that is already terminal is left alone.

        Returns:
            Numbers of every phase skipped by this call, starting with this one.
        """
        node = self._node_for_transition(number, "skipped")
        if node is None:
            return []
        node.status = Skipped()
        self.failed.add(node.index)
        return [number, *self.skip_dependents(node.index)]

    def skip_dependents(self, index: int) -> list[str]:
        """Skip every non-terminal transitive dependent of a phase.

        Walks the forward edges with an explicit worklist; terminal phases
        are not touched, so a phase reachable along several paths is
        skipped once.

        Returns:
            Numbers of the phases that were skipped.
        """
        skipped: list[str] = []
        worklist = list(self.graph.dependents(index))
        while worklist:
            current = worklist.pop()
            node = self.nodes[current]
            if node.status.is_terminal:
                continue
            node.status = Skipped()
            self.failed.add(current)
            skipped.append(node.number)
            worklist.extend(self.graph.dependents(current))

        if skipped:
            logger.info(
                "dependents_skipped",
                phase=self.nodes[index].number,
                skipped=skipped,
            )
        return skipped

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def all_complete(self) -> bool:
        return all(node.status.is_terminal for node in self.nodes)

    def all_success(self) -> bool:
        return all(isinstance(node.status, Completed) for node in self.nodes)

    def completed_count(self) -> int:
        return len(self.completed)

    def failed_count(self) -> int:
        return len(self.failed)

    def running_count(self) -> int:
        return sum(1 for node in self.nodes if isinstance(node.status, Running))

    def completion_percentage(self) -> float:
        """Share of phases in a terminal status; 100 for an empty graph."""
        if not self.nodes:
            return 100.0
        terminal = sum(1 for node in self.nodes if node.status.is_terminal)
        return terminal / len(self.nodes) * 100
