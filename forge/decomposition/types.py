"""Types for dynamic phase decomposition.

A decomposition plan arrives from outside (usually produced by the coding
agent) and is untrusted until parse_plan and validate_plan have accepted it.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from forge.models.phase import SubPhaseStatus

# Tasks share the sub-phase lifecycle: each accepted task becomes a sub-phase.
TaskStatus = SubPhaseStatus


class DecompositionTask(BaseModel):
    """One unit of work in a decomposition plan.

    Attributes:
        id: Identifier unique within the plan.
        name: Human-readable name.
        description: What the task must accomplish.
        budget: Iterations allocated to the task.
        depends_on: Ids of tasks that must complete first.
        files: Files the task is expected to touch.
        status: Current lifecycle status.
        iterations_used: Iterations consumed so far.
        error: Failure reason, if the task failed.
    """

    id: str
    name: str
    description: str = ""
    budget: int = Field(ge=1)
    depends_on: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    iterations_used: int = 0
    error: str | None = None

    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


class DecompositionPlan(BaseModel):
    """The set of tasks a phase is split into."""

    tasks: list[DecompositionTask] = Field(default_factory=list)
    analysis: str | None = None

    def task_count(self) -> int:
        return len(self.tasks)

    def total_budget(self) -> int:
        return sum(task.budget for task in self.tasks)

    def get_task(self, task_id: str) -> DecompositionTask | None:
        return next((task for task in self.tasks if task.id == task_id), None)

    def completed_task_ids(self) -> set[str]:
        return {task.id for task in self.tasks if task.status == TaskStatus.COMPLETED}


class DecomposedPhase(BaseModel):
    """Record of a phase that was split into sub-phases.

    Attributes:
        phase_number: The decomposed phase.
        phase_name: Its name.
        promise: Its promise.
        original_budget: Its budget before decomposition.
        iterations_before_decomposition: Iterations spent before the split.
        decomposition_reason: Description of the trigger that caused the split.
        plan: The accepted plan; task statuses are updated during execution.
        task_sub_phases: Maps each task id to the number of its sub-phase.
        decomposed_at: When the plan was accepted.
    """

    phase_number: str
    phase_name: str
    promise: str
    original_budget: int
    iterations_before_decomposition: int
    decomposition_reason: str
    plan: DecompositionPlan
    task_sub_phases: dict[str, str] = Field(default_factory=dict)
    decomposed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def remaining_budget(self) -> int:
        return max(self.original_budget - self.iterations_before_decomposition, 0)

    def fits_budget(self) -> bool:
        return self.plan.total_budget() <= self.remaining_budget()

    def budget_overflow(self) -> int:
        return max(self.plan.total_budget() - self.remaining_budget(), 0)
