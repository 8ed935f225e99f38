"""Exception hierarchy for the Forge orchestration core.

Structural errors (bad phase graphs, malformed decomposition plans, invalid
context limits) are fatal and never retried. Budget-policy errors are
recoverable: the caller may retry with a smaller request or keep the phase
undecomposed.
"""


class ForgeError(Exception):
    """Base class for all errors raised by the orchestration core."""


# -----------------------------------------------------------------------------
# Phase graph
# -----------------------------------------------------------------------------


class GraphError(ForgeError):
    """Raised when a phase list cannot be turned into a dependency graph."""


class DuplicatePhaseError(GraphError):
    """Two phases share the same number."""

    def __init__(self, number: str) -> None:
        self.number = number
        super().__init__(f"Duplicate phase number: {number}")


class UnknownDependencyError(GraphError):
    """A phase depends on a number that no phase carries."""

    def __init__(self, phase: str, dependency: str) -> None:
        self.phase = phase
        self.dependency = dependency
        super().__init__(
            f"Unknown dependency '{dependency}' in phase '{phase}': "
            "no phase with that number exists"
        )


class CycleError(GraphError):
    """The dependency graph contains at least one cycle.

    Attributes:
        phases: Numbers of the phases that could not be ordered, which
            includes every member of the cycle.
    """

    def __init__(self, phases: list[str]) -> None:
        self.phases = phases
        super().__init__(
            f"Cycle detected in phase dependencies. Involved phases: {', '.join(phases)}"
        )


# -----------------------------------------------------------------------------
# Decomposition
# -----------------------------------------------------------------------------


class DecompositionError(ForgeError):
    """Raised when a decomposition plan cannot be applied to a phase."""


class InvalidPlanError(DecompositionError):
    """The plan is structurally malformed (empty, duplicate ids, cycles...)."""


class PlanBudgetError(DecompositionError):
    """The plan asks for more iterations than the parent can give.

    Attributes:
        requested: Total budget requested by the plan.
        available: Budget the parent can still hand out.
    """

    def __init__(self, requested: int, available: int, message: str | None = None) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            message
            or f"Decomposition budget {requested} exceeds available budget {available}"
        )


# -----------------------------------------------------------------------------
# Context tracking
# -----------------------------------------------------------------------------


class ContextLimitError(ForgeError, ValueError):
    """A context limit string could not be parsed."""
