"""Decomposition executor: validates plans and drives their tasks.

Converting a plan into sub-phases is all-or-nothing. The plan is checked
for structure and budget, every sub-phase is validated against a scratch
copy of the parent, and only then are the sub-phases appended. A rejected
plan leaves the parent exactly as it was.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from forge.config import DecompositionConfig, SubPhaseConfig
from forge.decomposition.types import (
    DecomposedPhase,
    DecompositionPlan,
    DecompositionTask,
    TaskStatus,
)
from forge.errors import InvalidPlanError, PlanBudgetError
from forge.models.phase import Phase
from forge.models.signals import SubPhaseSpawnSignal
from forge.subphase.manager import SubPhaseManager
from forge.subphase.spawn import spawn_from_signal

logger = structlog.get_logger(__name__)


@dataclass
class ExecutionSummary:
    """Per-status counts for the tasks of a decomposed phase."""

    total_tasks: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0
    in_progress: int = 0
    iterations_used: int = 0
    total_budget: int = 0

    def is_complete(self) -> bool:
        return self.pending == 0 and self.in_progress == 0

    def is_success(self) -> bool:
        return self.is_complete() and self.failed == 0 and self.skipped == 0

    def completion_percentage(self) -> float:
        if self.total_tasks == 0:
            return 100.0
        return self.completed / self.total_tasks * 100


# -----------------------------------------------------------------------------
# Plan validation
# -----------------------------------------------------------------------------


def parse_plan(raw: Mapping[str, Any] | DecompositionPlan) -> DecompositionPlan:
    """Turn an untrusted plan mapping into a DecompositionPlan.

    Raises:
        InvalidPlanError: If the mapping does not have the plan shape.
    """
    if isinstance(raw, DecompositionPlan):
        return raw
    try:
        return DecompositionPlan.model_validate(raw)
    except ValidationError as e:
        raise InvalidPlanError(f"Malformed decomposition plan: {e}") from e


def validate_plan(plan: DecompositionPlan, config: DecompositionConfig | None = None) -> None:
    """Check the plan's structure.

    Raises:
        InvalidPlanError: If the plan is empty or outside the task count
            limits, repeats a task id, has a task depending on itself or on
            an unknown id, or contains a dependency cycle.
    """
    config = config or DecompositionConfig()
    count = plan.task_count()

    if count == 0:
        raise InvalidPlanError("Decomposition has no tasks")
    if count < config.min_tasks:
        raise InvalidPlanError(
            f"Decomposition has {count} tasks, minimum is {config.min_tasks}"
        )
    if count > config.max_tasks:
        raise InvalidPlanError(
            f"Decomposition has {count} tasks, maximum is {config.max_tasks}"
        )

    ids: set[str] = set()
    for task in plan.tasks:
        if task.id in ids:
            raise InvalidPlanError(f"Duplicate task id: {task.id}")
        ids.add(task.id)

    for task in plan.tasks:
        for dep in task.depends_on:
            if dep == task.id:
                raise InvalidPlanError(f"Task '{task.id}' depends on itself")
            if dep not in ids:
                raise InvalidPlanError(f"Task '{task.id}' depends on unknown task '{dep}'")

    # Repeatedly peel off tasks whose dependencies are all resolved.
    resolved: set[str] = set()
    remaining = list(plan.tasks)
    while remaining:
        ready = [task for task in remaining if all(dep in resolved for dep in task.depends_on)]
        if not ready:
            cycle = ", ".join(task.id for task in remaining)
            raise InvalidPlanError(f"Circular dependency between tasks: {cycle}")
        resolved.update(task.id for task in ready)
        remaining = [task for task in remaining if task.id not in resolved]


# -----------------------------------------------------------------------------
# Executor
# -----------------------------------------------------------------------------


class DecompositionExecutor:
    """Applies decomposition plans to phases and tracks their tasks.

    Usage:
        >>> executor = DecompositionExecutor()
        >>> decomposed = executor.convert_to_subphases(phase, plan, 12, "Explicit request")
        >>> for task in executor.get_ready_tasks(decomposed.plan):
        ...     executor.start_task(decomposed.plan, task.id)
    """

    def __init__(
        self,
        config: DecompositionConfig | None = None,
        subphase_manager: SubPhaseManager | None = None,
    ) -> None:
        self.config = config or DecompositionConfig()
        self.subphase_manager = subphase_manager or SubPhaseManager(SubPhaseConfig())

    def convert_to_subphases(
        self,
        phase: Phase,
        plan: DecompositionPlan | Mapping[str, Any],
        iterations_used: int,
        reason: str,
    ) -> DecomposedPhase:
        """Validate a plan and append one sub-phase per task to the phase.

        Args:
            phase: The phase being decomposed. Modified only on success.
            plan: The plan, or an untrusted mapping with the plan shape.
            iterations_used: Iterations the phase spent before decomposing.
            reason: Description of the trigger.

        Returns:
            A DecomposedPhase that maps each task to its sub-phase.

        Raises:
            InvalidPlanError: If the plan is structurally malformed.
            PlanBudgetError: If the plan needs more budget than is available,
                or the parent cannot accept one of its sub-phases.
        """
        plan = parse_plan(plan)
        validate_plan(plan, self.config)

        remaining = max(phase.budget - iterations_used, 0)
        available = self.config.available_budget(remaining)
        requested = plan.total_budget()
        if requested > available:
            logger.warning(
                "decomposition_over_budget",
                phase=phase.number,
                requested=requested,
                available=available,
            )
            raise PlanBudgetError(requested, available)

        requests = [
            self._spawn_request(phase, task, offset) for offset, task in enumerate(plan.tasks)
        ]

        # Dry run on a scratch copy so a late rejection leaves the parent untouched.
        # Iterations already spent are accounted for by the check above.
        scratch = phase.model_copy(deep=True)
        for request in requests:
            validation = self.subphase_manager.validate(scratch, request)
            if not validation.is_valid:
                logger.warning(
                    "decomposition_sub_phase_rejected",
                    phase=phase.number,
                    name=request.name,
                    reason=validation.rejection,
                )
                raise PlanBudgetError(
                    requested,
                    available,
                    f"Sub-phase '{request.name}' rejected: {validation.message}",
                )
            scratch.sub_phases.append(spawn_from_signal(request, scratch))

        first_order = len(phase.sub_phases) + 1
        for request in requests:
            self.subphase_manager.spawn(phase, request)

        task_sub_phases = {
            task.id: f"{phase.number}.{first_order + offset}"
            for offset, task in enumerate(plan.tasks)
        }
        logger.info(
            "phase_decomposed",
            phase=phase.number,
            tasks=plan.task_count(),
            budget=requested,
            available=available,
            reason=reason,
        )
        return DecomposedPhase(
            phase_number=phase.number,
            phase_name=phase.name,
            promise=phase.promise,
            original_budget=phase.budget,
            iterations_before_decomposition=iterations_used,
            decomposition_reason=reason,
            plan=plan,
            task_sub_phases=task_sub_phases,
        )

    @staticmethod
    def _spawn_request(phase: Phase, task: DecompositionTask, offset: int) -> SubPhaseSpawnSignal:
        order = len(phase.sub_phases) + offset + 1
        return SubPhaseSpawnSignal(
            name=task.name,
            promise=f"{phase.promise} SUBTASK {order} COMPLETE",
            budget=task.budget,
            reasoning=task.description,
            skills=list(phase.skills),
        )

    # -------------------------------------------------------------------------
    # Task lifecycle
    # -------------------------------------------------------------------------

    def get_ready_tasks(self, plan: DecompositionPlan) -> list[DecompositionTask]:
        """Pending tasks whose dependencies have all completed."""
        completed = plan.completed_task_ids()
        return [
            task
            for task in plan.tasks
            if task.is_pending() and all(dep in completed for dep in task.depends_on)
        ]

    def update_task_status(
        self, plan: DecompositionPlan, task_id: str, status: TaskStatus
    ) -> bool:
        task = plan.get_task(task_id)
        if task is None:
            return False
        task.status = status
        return True

    def start_task(self, plan: DecompositionPlan, task_id: str) -> bool:
        task = plan.get_task(task_id)
        if task is None or not task.is_pending():
            return False
        task.status = TaskStatus.IN_PROGRESS
        return True

    def complete_task(self, plan: DecompositionPlan, task_id: str, iterations: int) -> bool:
        task = plan.get_task(task_id)
        if task is None or task.status.is_terminal:
            return False
        task.status = TaskStatus.COMPLETED
        task.iterations_used = iterations
        return True

    def fail_task(
        self, plan: DecompositionPlan, task_id: str, iterations: int, error: str
    ) -> bool:
        task = plan.get_task(task_id)
        if task is None or task.status.is_terminal:
            return False
        task.status = TaskStatus.FAILED
        task.iterations_used = iterations
        task.error = error
        return True

    def skip_dependent_tasks(self, plan: DecompositionPlan, failed_task_id: str) -> list[str]:
        """Skip every pending task that transitively depends on the failed task.

        Returns:
            Ids of the tasks that were skipped, in the order they were skipped.
        """
        blocked = {failed_task_id}
        skipped: list[str] = []
        changed = True
        while changed:
            changed = False
            for task in plan.tasks:
                if task.is_pending() and any(dep in blocked for dep in task.depends_on):
                    task.status = TaskStatus.SKIPPED
                    blocked.add(task.id)
                    skipped.append(task.id)
                    changed = True
        return skipped

    def sync_subphase_statuses(self, phase: Phase, decomposed: DecomposedPhase) -> None:
        """Mirror task statuses onto the sub-phases created for them."""
        for task in decomposed.plan.tasks:
            number = decomposed.task_sub_phases.get(task.id)
            if number is not None:
                phase.update_sub_phase_status(number, task.status)

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def total_iterations_used(self, plan: DecompositionPlan) -> int:
        return sum(task.iterations_used for task in plan.tasks)

    def completion_percentage(self, plan: DecompositionPlan) -> float:
        if not plan.tasks:
            return 100.0
        completed = sum(1 for task in plan.tasks if task.status == TaskStatus.COMPLETED)
        return completed / len(plan.tasks) * 100

    def all_complete(self, plan: DecompositionPlan) -> bool:
        return all(task.status.is_terminal for task in plan.tasks)

    def all_success(self, plan: DecompositionPlan) -> bool:
        return all(task.status == TaskStatus.COMPLETED for task in plan.tasks)

    def has_failures(self, plan: DecompositionPlan) -> bool:
        return any(task.status == TaskStatus.FAILED for task in plan.tasks)

    def execution_summary(self, plan: DecompositionPlan) -> ExecutionSummary:
        summary = ExecutionSummary(
            total_tasks=plan.task_count(),
            iterations_used=self.total_iterations_used(plan),
            total_budget=plan.total_budget(),
        )
        for task in plan.tasks:
            match task.status:
                case TaskStatus.PENDING:
                    summary.pending += 1
                case TaskStatus.IN_PROGRESS:
                    summary.in_progress += 1
                case TaskStatus.COMPLETED:
                    summary.completed += 1
                case TaskStatus.FAILED:
                    summary.failed += 1
                case TaskStatus.SKIPPED:
                    summary.skipped += 1
        return summary
