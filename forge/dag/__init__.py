"""Phase dependency graph, wave scheduler and executor.

This module exports:
- build_graph / PhaseGraph: validated adjacency over a phase list
- DagScheduler / PhaseNode: live phase status and wave planning
- PhaseStatus and its variants
- DagExecutor / IterationBackend: the coordinating run loop
"""

from forge.dag.builder import PhaseGraph, build_graph
from forge.dag.executor import DagExecutor, IterationBackend, LoopOutcome
from forge.dag.scheduler import DagScheduler, PhaseNode
from forge.dag.state import DagState, DagSummary, ExecutionResult, PhaseResult
from forge.dag.status import (
    Completed,
    Failed,
    Pending,
    PhaseStatus,
    Ready,
    Running,
    Skipped,
)

__all__ = [
    # Graph
    "PhaseGraph",
    "build_graph",
    # Scheduler
    "DagScheduler",
    "PhaseNode",
    "PhaseStatus",
    "Completed",
    "Failed",
    "Pending",
    "Ready",
    "Running",
    "Skipped",
    # Execution
    "DagExecutor",
    "DagState",
    "DagSummary",
    "ExecutionResult",
    "IterationBackend",
    "LoopOutcome",
    "PhaseResult",
]
