"""Run-level state and results for a DAG execution."""

from enum import StrEnum

from pydantic import BaseModel, Field

from forge.models.phase import Phase


class DagState(StrEnum):
    """Overall state of a DAG run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PhaseResult(BaseModel):
    """How a single phase finished.

    Attributes:
        phase: Phase number.
        success: Whether the phase completed.
        iterations: Iterations consumed, including those of its sub-phases.
        error: Failure reason, if any.
        duration_seconds: Wall-clock time spent on the phase.
        decomposed: Whether the phase was split into sub-phases.
        sub_phases_completed: Sub-phases that completed.
        sub_phases_total: Sub-phases the phase ended up with.
    """

    phase: str
    success: bool
    iterations: int = 0
    error: str | None = None
    duration_seconds: float = 0.0
    decomposed: bool = False
    sub_phases_completed: int = 0
    sub_phases_total: int = 0


class DagSummary(BaseModel):
    """Aggregate outcome of a DAG run."""

    total_phases: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    phase_results: dict[str, PhaseResult] = Field(default_factory=dict)
    skipped_phases: list[str] = Field(default_factory=list)
    blocked_phases: list[str] = Field(default_factory=list)

    def add_result(self, result: PhaseResult) -> None:
        self.phase_results[result.phase] = result
        if result.success:
            self.completed += 1
        else:
            self.failed += 1

    def mark_skipped(self, number: str) -> None:
        if number not in self.skipped_phases:
            self.skipped_phases.append(number)
            self.skipped += 1

    def all_success(self) -> bool:
        return self.completed == self.total_phases and self.failed == 0

    def completion_percentage(self) -> float:
        if self.total_phases == 0:
            return 100.0
        return (self.completed + self.failed + self.skipped) / self.total_phases * 100


class ExecutionResult(BaseModel):
    """What DagExecutor.execute() returns.

    Attributes:
        run_id: Identifier used for the run's events.
        state: Final run state.
        summary: Per-phase results and counts.
        waves: The wave plan computed before the run started.
        phases: The phases as they stand after the run, including any
            sub-phases created while running.
    """

    run_id: str
    state: DagState
    summary: DagSummary
    waves: list[list[str]] = Field(default_factory=list)
    phases: list[Phase] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == DagState.COMPLETED
