"""Forge: decision core of a phase-based autonomous build orchestrator.

Forge drives an external coding agent through a dependency graph of
phases. It decides which phases may run, detects phases that have outgrown
their budget and splits them into sub-phases, and tracks context usage so
history can be compacted before it overflows.

Usage:
    >>> from forge import DagExecutor, Phase
    >>> phases = [Phase(number="01", name="Scaffold", promise="SCAFFOLD DONE", budget=10)]
    >>> result = await DagExecutor(backend).execute(phases)
"""

from forge.config import Settings, configure_logging, settings
from forge.dag import DagExecutor, DagScheduler, ExecutionResult, IterationBackend, build_graph
from forge.models import IterationRequest, IterationResult, Phase, PhasesFile, SubPhase

__all__ = [
    "DagExecutor",
    "DagScheduler",
    "ExecutionResult",
    "IterationBackend",
    "IterationRequest",
    "IterationResult",
    "Phase",
    "PhasesFile",
    "Settings",
    "SubPhase",
    "build_graph",
    "configure_logging",
    "settings",
]
