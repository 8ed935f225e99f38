"""Dynamic decomposition of over-scoped phases.

This module exports:
- DecompositionDetector and the trigger types it returns
- DecompositionExecutor with plan parsing and validation
- DecomposedPhaseRunner, the LangGraph runner for decomposed tasks
"""

from forge.decomposition.detector import (
    BudgetProgressMismatch,
    ComplexitySignal,
    DecompositionDetector,
    DecompositionTrigger,
    ExecutionSignals,
    ExplicitRequest,
    MultipleBlockers,
    NoTrigger,
)
from forge.decomposition.executor import (
    DecompositionExecutor,
    ExecutionSummary,
    parse_plan,
    validate_plan,
)
from forge.decomposition.runner import DecomposedPhaseRunner, TaskOutcome
from forge.decomposition.types import (
    DecomposedPhase,
    DecompositionPlan,
    DecompositionTask,
    TaskStatus,
)

__all__ = [
    # Detector
    "BudgetProgressMismatch",
    "ComplexitySignal",
    "DecompositionDetector",
    "DecompositionTrigger",
    "ExecutionSignals",
    "ExplicitRequest",
    "MultipleBlockers",
    "NoTrigger",
    # Executor
    "DecompositionExecutor",
    "ExecutionSummary",
    "parse_plan",
    "validate_plan",
    # Runner
    "DecomposedPhaseRunner",
    "TaskOutcome",
    # Types
    "DecomposedPhase",
    "DecompositionPlan",
    "DecompositionTask",
    "TaskStatus",
]
