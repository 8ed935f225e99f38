"""Sub-phase lifecycle management.

The SubPhaseManager turns spawn requests into sub-phases on a parent,
tracks their status and decides whether the parent may accept its promise.
The parent's sub_phases list is only modified by whichever coroutine is
executing that parent.
"""

from dataclasses import dataclass

import structlog

from forge.config import SubPhaseConfig
from forge.models.phase import Phase, SubPhase, SubPhaseStatus
from forge.models.signals import SubPhaseSpawnSignal
from forge.subphase.spawn import SpawnValidation, spawn_from_signal, validate_spawn

logger = structlog.get_logger(__name__)


@dataclass
class SubPhaseStatusSummary:
    """Per-status counts of a parent's sub-phases.

    Attributes:
        total: Number of sub-phases.
        pending: Not yet started.
        in_progress: Currently running.
        completed: Finished successfully.
        failed: Finished unsuccessfully.
        skipped: Never run.
        total_budget: Iterations allocated to all sub-phases.
    """

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    total_budget: int = 0

    def all_done(self) -> bool:
        return self.pending == 0 and self.in_progress == 0

    def has_failures(self) -> bool:
        return self.failed > 0

    def completion_percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return self.completed / self.total * 100

    def display(self) -> str:
        if self.total == 0:
            return "no sub-phases"
        return (
            f"{self.completed}/{self.total} complete "
            f"({self.pending} pending, {self.failed} failed)"
        )


def build_context_header(sub_phase: SubPhase, parent: Phase) -> str:
    """Prompt header telling the agent it is working inside a parent phase."""
    return (
        "## SUB-PHASE CONTEXT\n\n"
        f"You are executing **sub-phase {sub_phase.number}** of parent phase {parent.number}.\n\n"
        f"**Parent Phase:** {parent.number} - {parent.name}\n"
        f"**Sub-Phase:** {sub_phase.number} - {sub_phase.name}\n"
        f"**Promise:** {sub_phase.promise}\n"
        f"**Budget:** {sub_phase.budget} iterations\n\n"
        "### Sub-Phase Requirements\n"
        f"{sub_phase.reasoning}\n\n"
        "When complete, output:\n"
        f"<promise>{sub_phase.promise}</promise>\n"
    )


class SubPhaseManager:
    """Creates sub-phases on a parent and drives their lifecycle.

    Usage:
        >>> manager = SubPhaseManager()
        >>> validation = manager.spawn(parent, SubPhaseSpawnSignal(
        ...     name="Auth", promise="AUTH DONE", budget=4))
        >>> validation.is_valid
        True
        >>> manager.next_pending_sub_phase(parent).number
        '05.1'
    """

    def __init__(self, config: SubPhaseConfig | None = None) -> None:
        self.config = config or SubPhaseConfig()

    def validate(
        self, parent: Phase, request: SubPhaseSpawnSignal, iterations_used: int = 0
    ) -> SpawnValidation:
        return validate_spawn(request, parent, self.config, iterations_used)

    def spawn(
        self, parent: Phase, request: SubPhaseSpawnSignal, iterations_used: int = 0
    ) -> SpawnValidation:
        """Validate a request and append the sub-phase if it is accepted."""
        validation = self.validate(parent, request, iterations_used)
        if not validation.is_valid:
            logger.warning(
                "sub_phase_spawn_rejected",
                parent=parent.number,
                name=request.name,
                reason=validation.rejection,
                error=validation.message,
            )
            return validation

        sub_phase = spawn_from_signal(request, parent)
        parent.sub_phases.append(sub_phase)
        logger.info(
            "sub_phase_spawned",
            parent=parent.number,
            sub_phase=sub_phase.number,
            budget=sub_phase.budget,
            remaining_budget=parent.remaining_budget(),
        )
        return validation

    def process_spawn_signals(
        self,
        parent: Phase,
        requests: list[SubPhaseSpawnSignal],
        iterations_used: int = 0,
    ) -> list[tuple[SubPhaseSpawnSignal, SpawnValidation]]:
        """Spawn each request in order; later requests see earlier allocations."""
        return [(request, self.spawn(parent, request, iterations_used)) for request in requests]

    def next_pending_sub_phase(self, parent: Phase) -> SubPhase | None:
        return next(
            (sub for sub in parent.sub_phases if sub.status == SubPhaseStatus.PENDING), None
        )

    def start_sub_phase(self, parent: Phase, number: str) -> bool:
        return self._transition(parent, number, SubPhaseStatus.IN_PROGRESS)

    def complete_sub_phase(self, parent: Phase, number: str) -> bool:
        return self._transition(parent, number, SubPhaseStatus.COMPLETED)

    def fail_sub_phase(self, parent: Phase, number: str) -> bool:
        return self._transition(parent, number, SubPhaseStatus.FAILED)

    def skip_sub_phase(self, parent: Phase, number: str) -> bool:
        return self._transition(parent, number, SubPhaseStatus.SKIPPED)

    def _transition(self, parent: Phase, number: str, status: SubPhaseStatus) -> bool:
        sub = parent.get_sub_phase(number)
        if sub is None:
            return False
        if sub.status.is_terminal:
            logger.warning(
                "sub_phase_already_terminal",
                parent=parent.number,
                sub_phase=number,
                status=sub.status,
                requested=status,
            )
            return False
        sub.status = status
        return True

    def all_sub_phases_complete(self, parent: Phase) -> bool:
        return parent.all_sub_phases_complete()

    def parent_can_complete(self, parent: Phase) -> bool:
        """The parent may accept its promise only once every sub-phase completed."""
        return parent.all_sub_phases_complete()

    def status_summary(self, parent: Phase) -> SubPhaseStatusSummary:
        summary = SubPhaseStatusSummary(
            total=len(parent.sub_phases),
            total_budget=parent.allocated_budget(),
        )
        for sub in parent.sub_phases:
            match sub.status:
                case SubPhaseStatus.PENDING:
                    summary.pending += 1
                case SubPhaseStatus.IN_PROGRESS:
                    summary.in_progress += 1
                case SubPhaseStatus.COMPLETED:
                    summary.completed += 1
                case SubPhaseStatus.FAILED:
                    summary.failed += 1
                case SubPhaseStatus.SKIPPED:
                    summary.skipped += 1
        return summary
