"""Decomposition trigger detection.

The detector is a pure function of a phase, the signals accumulated over its
iterations and the iterations spent so far. It never mutates anything; the
executor decides what to do with the trigger it returns.
"""

from typing import Annotated, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from forge.config import DecompositionConfig
from forge.models.phase import Phase
from forge.models.signals import BlockerSignal, IterationSignals

logger = structlog.get_logger(__name__)

# Open blockers at which a phase is considered stuck.
MULTIPLE_BLOCKERS_THRESHOLD = 3


# -----------------------------------------------------------------------------
# Trigger types
# -----------------------------------------------------------------------------


class _Trigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def should_decompose(self) -> bool:
        return True


class BudgetProgressMismatch(_Trigger):
    """Too much of the budget is gone for the progress made."""

    kind: Literal["budget_progress_mismatch"] = "budget_progress_mismatch"
    iterations_used: int
    budget: int
    progress_percent: int

    @property
    def description(self) -> str:
        used_percent = self.iterations_used * 100 // self.budget if self.budget else 100
        return (
            f"Budget progress mismatch: {used_percent}% budget used "
            f"({self.iterations_used}/{self.budget}) with only "
            f"{self.progress_percent}% progress"
        )


class ComplexitySignal(_Trigger):
    """A blocker mentions a complexity keyword."""

    kind: Literal["complexity_signal"] = "complexity_signal"
    message: str

    @property
    def description(self) -> str:
        return f"Complexity signal detected: {self.message}"


class ExplicitRequest(_Trigger):
    """The agent asked for the phase to be decomposed."""

    kind: Literal["explicit_request"] = "explicit_request"

    @property
    def description(self) -> str:
        return "Explicit decomposition request"


class MultipleBlockers(_Trigger):
    """Several unresolved blockers piled up."""

    kind: Literal["multiple_blockers"] = "multiple_blockers"
    count: int

    @property
    def description(self) -> str:
        return f"Multiple blockers ({self.count}) indicate need for decomposition"


class NoTrigger(_Trigger):
    """Nothing suggests the phase should be split."""

    kind: Literal["none"] = "none"

    @property
    def should_decompose(self) -> bool:
        return False

    @property
    def description(self) -> str:
        return "No decomposition trigger"


DecompositionTrigger = Annotated[
    BudgetProgressMismatch | ComplexitySignal | ExplicitRequest | MultipleBlockers | NoTrigger,
    Field(discriminator="kind"),
]


# -----------------------------------------------------------------------------
# Signal accumulation
# -----------------------------------------------------------------------------


class ExecutionSignals(BaseModel):
    """Signals accumulated across a phase's iterations."""

    blockers: list[BlockerSignal] = Field(default_factory=list)
    decomposition_requested: bool = False
    latest_progress: int | None = None

    def add_iteration(self, signals: IterationSignals) -> None:
        self.blockers.extend(signals.blockers)
        if signals.decomposition_request:
            self.decomposition_requested = True
        if signals.progress_percent is not None:
            self.latest_progress = signals.progress_percent

    def open_blockers(self) -> list[BlockerSignal]:
        return [blocker for blocker in self.blockers if not blocker.acknowledged]

    def reset(self) -> None:
        self.blockers.clear()
        self.decomposition_requested = False
        self.latest_progress = None


# -----------------------------------------------------------------------------
# Detector
# -----------------------------------------------------------------------------


class DecompositionDetector:
    """Decides whether a running phase should be decomposed.

    Signal triggers (explicit request, complexity keyword, multiple
    blockers) take precedence over the budget trigger.
    """

    def __init__(self, config: DecompositionConfig | None = None) -> None:
        self.config = config or DecompositionConfig()

    def check_budget_trigger(
        self, phase: Phase, iterations_used: int, progress_percent: int
    ) -> DecompositionTrigger:
        if not self.config.enabled:
            return NoTrigger()

        threshold = phase.budget * self.config.budget_threshold_percent // 100
        if (
            iterations_used > threshold
            and progress_percent < self.config.progress_threshold_percent
        ):
            return BudgetProgressMismatch(
                iterations_used=iterations_used,
                budget=phase.budget,
                progress_percent=progress_percent,
            )
        return NoTrigger()

    def check_signals_trigger(self, signals: ExecutionSignals) -> DecompositionTrigger:
        if not self.config.enabled:
            return NoTrigger()

        if self.config.allow_explicit_request and signals.decomposition_requested:
            return ExplicitRequest()

        open_blockers = signals.open_blockers()
        if self.config.detect_complexity_signals:
            for blocker in open_blockers:
                if self.config.is_complexity_keyword(blocker.description):
                    return ComplexitySignal(message=blocker.description)

        if len(open_blockers) >= MULTIPLE_BLOCKERS_THRESHOLD:
            return MultipleBlockers(count=len(open_blockers))

        return NoTrigger()

    def check(
        self,
        phase: Phase,
        signals: ExecutionSignals,
        iterations_used: int,
        progress_percent: int | None = None,
    ) -> DecompositionTrigger:
        """Return the first trigger that applies to the phase.

        Args:
            phase: The running phase.
            signals: Signals accumulated over the phase's iterations.
            iterations_used: Iterations the phase has spent.
            progress_percent: Current progress; defaults to the latest
                reported progress, or 0.
        """
        trigger = self.check_signals_trigger(signals)
        if not trigger.should_decompose:
            if progress_percent is None:
                progress_percent = signals.latest_progress or 0
            trigger = self.check_budget_trigger(phase, iterations_used, progress_percent)

        if trigger.should_decompose:
            logger.info(
                "decomposition_triggered",
                phase=phase.number,
                trigger=trigger.kind,
                description=trigger.description,
                iterations_used=iterations_used,
            )
        return trigger
