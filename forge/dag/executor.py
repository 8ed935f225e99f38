"""DAG executor: the coordinating loop of an orchestrator run.

The executor pulls ready phases from the scheduler, runs up to
``max_parallel`` of them concurrently, and applies each result to the
scheduler as it arrives. It is the only writer of scheduler state.

Each phase runs a strictly sequential iteration loop against the injected
IterationBackend. Between iterations the loop feeds the context tracker
(compacting when needed), processes sub-phase spawn requests, and asks the
decomposition detector whether the phase should be split. A split phase
hands its remaining work to the DecomposedPhaseRunner.
"""

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

import structlog

from forge.compaction.manager import CompactionManager
from forge.compaction.tracker import ContextTracker
from forge.config import Settings, settings
from forge.dag.scheduler import DagScheduler
from forge.dag.state import DagState, DagSummary, ExecutionResult, PhaseResult
from forge.decomposition.detector import (
    DecompositionDetector,
    DecompositionTrigger,
    ExecutionSignals,
)
from forge.decomposition.executor import DecompositionExecutor
from forge.decomposition.runner import DecomposedPhaseRunner, TaskOutcome
from forge.decomposition.types import DecompositionPlan, DecompositionTask
from forge.errors import DecompositionError
from forge.events.bus import EventBus, get_event_bus
from forge.events.types import EventType, ForgeEvent
from forge.models.phase import Phase, SubPhase, SubPhaseStatus
from forge.models.signals import IterationRequest, IterationResult, SubPhaseSpawnSignal
from forge.subphase.manager import SubPhaseManager, build_context_header

logger = structlog.get_logger(__name__)


class IterationBackend(Protocol):
    """Runs agent iterations and produces decomposition plans.

    Implementations invoke the coding agent and turn its output into
    structured results; the executor never sees raw agent output.
    """

    async def run_iteration(self, request: IterationRequest) -> IterationResult:
        """Run one iteration of the agent on request.phase."""
        ...

    async def request_decomposition(
        self, phase: Phase, reason: str
    ) -> Mapping[str, Any] | DecompositionPlan | None:
        """Produce a decomposition plan for the phase, or None to keep going undecomposed."""
        ...


@dataclass
class LoopOutcome:
    """How a phase's iteration loop ended."""

    success: bool
    iterations: int
    error: str | None = None
    decomposed: bool = False


class DagExecutor:
    """Executes a phase DAG against an iteration backend.

    Usage:
        >>> executor = DagExecutor(backend, event_bus=bus)
        >>> result = await executor.execute(phases)
        >>> result.summary.all_success()
        True
    """

    def __init__(
        self,
        backend: IterationBackend,
        config: Settings | None = None,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            backend: Runs iterations and produces decomposition plans.
            config: Orchestrator settings (defaults to the global settings).
            event_bus: Bus for run events (defaults to the global bus).
            run_id: Identifier attached to events; generated when omitted.
        """
        self.backend = backend
        self.config = config or settings
        self.event_bus = event_bus or get_event_bus()
        self.run_id = run_id or f"run_{uuid4().hex[:8]}"
        self.subphase_manager = SubPhaseManager(self.config.subphase)
        self.decomposition_executor = DecompositionExecutor(
            self.config.decomposition, self.subphase_manager
        )

    async def _emit(self, event_type: EventType, phase: str | None = None, **data: Any) -> None:
        await self.event_bus.publish(
            ForgeEvent(type=event_type, run_id=self.run_id, phase=phase, data=data)
        )

    # -------------------------------------------------------------------------
    # Coordinating loop
    # -------------------------------------------------------------------------

    async def execute(self, phases: list[Phase]) -> ExecutionResult:
        """Run every phase whose dependencies allow it.

        Args:
            phases: The phase list. Phases gain sub-phases in place while running.

        Returns:
            The final state, per-phase results and the planned waves. The run
            is closed on the event bus before returning; its history is kept.

        Raises:
            GraphError: If the phase list is not a valid DAG.
        """
        scheduler = DagScheduler.from_phases(phases, self.config.dag)
        waves = scheduler.compute_waves()
        summary = DagSummary(total_phases=len(phases))
        started = time.monotonic()
        max_parallel = self.config.dag.max_parallel

        logger.info(
            "dag_run_started",
            run_id=self.run_id,
            phases=len(phases),
            waves=len(waves),
            max_parallel=max_parallel,
            fail_fast=self.config.dag.fail_fast,
        )
        await self._emit(
            EventType.RUN_STARTED,
            phases=[phase.number for phase in phases],
            waves=waves,
            max_parallel=max_parallel,
            fail_fast=self.config.dag.fail_fast,
        )

        running: dict[asyncio.Task[PhaseResult], str] = {}
        open_waves: dict[int, list[str]] = {}
        wave_count = 0

        try:
            while True:
                promoted = scheduler.promote_ready()
                if promoted:
                    wave_count += 1
                    open_waves[wave_count] = promoted
                    await self._emit(EventType.WAVE_STARTED, wave=wave_count, phases=promoted)

                for node in scheduler.get_ready_phases():
                    if len(running) >= max_parallel:
                        break
                    scheduler.mark_running(node.number)
                    await self._emit(
                        EventType.PHASE_STARTED,
                        node.number,
                        name=node.phase.name,
                        budget=node.phase.budget,
                    )
                    task = asyncio.create_task(
                        self._execute_phase(node.phase), name=f"phase-{node.number}"
                    )
                    running[task] = node.number

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                # Apply in declaration order so simultaneous finishes are deterministic.
                for task in sorted(done, key=lambda t: scheduler.graph.get_index(running[t]) or 0):
                    number = running.pop(task)
                    result = self._task_result(task, number)
                    await self._apply_result(scheduler, summary, number, result)

                await self._close_finished_waves(scheduler, open_waves)

                if self.config.dag.fail_fast and summary.failed:
                    await self._abort_running(
                        running, scheduler, summary, "Aborted: fail-fast after phase failure"
                    )
                    await self._skip_unstarted(scheduler, summary)
                    await self._close_finished_waves(scheduler, open_waves)
                    break
        except asyncio.CancelledError:
            await self._abort_running(running, scheduler, summary, "Run cancelled")
            await self._emit(EventType.RUN_COMPLETE, state=DagState.CANCELLED.value)
            logger.warning("dag_run_cancelled", run_id=self.run_id)
            await self.event_bus.close_run(self.run_id)
            raise

        summary.duration_seconds = time.monotonic() - started
        summary.blocked_phases = scheduler.blocked_phases()
        state = DagState.COMPLETED if scheduler.all_success() else DagState.FAILED

        logger.info(
            "dag_run_finished",
            run_id=self.run_id,
            state=state.value,
            completed=summary.completed,
            failed=summary.failed,
            skipped=summary.skipped,
            blocked=summary.blocked_phases,
            duration_seconds=round(summary.duration_seconds, 3),
        )
        await self._emit(
            EventType.RUN_COMPLETE,
            state=state.value,
            completed=summary.completed,
            failed=summary.failed,
            skipped=summary.skipped,
            blocked=summary.blocked_phases,
        )
        await self.event_bus.close_run(self.run_id)
        return ExecutionResult(
            run_id=self.run_id,
            state=state,
            summary=summary,
            waves=waves,
            phases=[node.phase for node in scheduler.nodes],
        )

    @staticmethod
    def _task_result(task: asyncio.Task[PhaseResult], number: str) -> PhaseResult:
        try:
            return task.result()
        except Exception as e:
            logger.error("phase_task_crashed", phase=number, error=str(e), exc_info=True)
            return PhaseResult(phase=number, success=False, error=str(e))

    async def _apply_result(
        self,
        scheduler: DagScheduler,
        summary: DagSummary,
        number: str,
        result: PhaseResult,
    ) -> None:
        summary.add_result(result)
        if result.success:
            scheduler.mark_completed(number, result.iterations)
            await self._emit(
                EventType.PHASE_COMPLETED,
                number,
                iterations=result.iterations,
                decomposed=result.decomposed,
                duration_seconds=result.duration_seconds,
            )
            return

        skipped = scheduler.mark_failed(number, result.error or "Phase failed")
        await self._emit(
            EventType.PHASE_FAILED,
            number,
            error=result.error,
            iterations=result.iterations,
        )
        await self._record_skipped(summary, skipped)

    async def _record_skipped(self, summary: DagSummary, numbers: list[str]) -> None:
        for number in numbers:
            summary.mark_skipped(number)
            await self._emit(EventType.PHASE_SKIPPED, number)

    async def _close_finished_waves(
        self, scheduler: DagScheduler, open_waves: dict[int, list[str]]
    ) -> None:
        for wave, numbers in list(open_waves.items()):
            nodes = [scheduler.get_node(number) for number in numbers]
            if all(node is not None and node.status.is_terminal for node in nodes):
                del open_waves[wave]
                await self._emit(EventType.WAVE_COMPLETED, wave=wave, phases=numbers)

    async def _abort_running(
        self,
        running: dict[asyncio.Task[PhaseResult], str],
        scheduler: DagScheduler,
        summary: DagSummary,
        reason: str,
    ) -> None:
        """Cancel in-flight phases and report them as failed."""
        if not running:
            return
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)

        for number in sorted(running.values(), key=lambda n: scheduler.graph.get_index(n) or 0):
            logger.warning("phase_aborted", phase=number, reason=reason)
            await self._apply_result(
                scheduler, summary, number, PhaseResult(phase=number, success=False, error=reason)
            )
        running.clear()

    async def _skip_unstarted(self, scheduler: DagScheduler, summary: DagSummary) -> None:
        """Skip every phase that never started once the run stops early."""
        for node in scheduler.nodes:
            if not node.status.is_terminal:
                await self._record_skipped(summary, scheduler.mark_skipped(node.number))

    # -------------------------------------------------------------------------
    # Phase execution
    # -------------------------------------------------------------------------

    async def _execute_phase(self, phase: Phase) -> PhaseResult:
        """Run one phase to completion or failure. Never raises on backend errors."""
        started = time.monotonic()
        with structlog.contextvars.bound_contextvars(run_id=self.run_id, phase=phase.number):
            try:
                outcome = await self._run_phase_loop(phase)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("phase_execution_error", error=str(e), exc_info=True)
                outcome = LoopOutcome(success=False, iterations=0, error=str(e))

            sub_summary = self.subphase_manager.status_summary(phase)
            logger.info(
                "phase_finished",
                success=outcome.success,
                iterations=outcome.iterations,
                decomposed=outcome.decomposed,
                sub_phases=sub_summary.display(),
                error=outcome.error,
            )
        return PhaseResult(
            phase=phase.number,
            success=outcome.success,
            iterations=outcome.iterations,
            error=outcome.error,
            duration_seconds=time.monotonic() - started,
            decomposed=outcome.decomposed,
            sub_phases_completed=sub_summary.completed,
            sub_phases_total=sub_summary.total,
        )

    async def _run_phase_loop(
        self,
        phase: Phase,
        nested: bool = False,
        context_header: str | None = None,
    ) -> LoopOutcome:
        """Iterate on a phase until its promise appears or its budget runs out.

        Args:
            phase: The phase to run. For sub-phases and tasks this is the
                executable phase built from the sub-phase.
            nested: True for sub-phases and tasks, which may neither spawn
                nor decompose.
            context_header: Parent context passed with every request.
        """
        compaction = CompactionManager(phase, ContextTracker.from_config(self.config.context))
        decomposition_config = self.config.decomposition.for_phase(phase)
        if nested:
            decomposition_config = decomposition_config.model_copy(update={"enabled": False})
        detector = DecompositionDetector(decomposition_config)
        signals = ExecutionSignals()

        iterations = 0
        iteration = 0
        context_summary: str | None = None
        last_prompt_chars = 0

        # Sub-phases spawned along the way shrink the parent's own allowance.
        while iterations < phase.budget - phase.allocated_budget():
            iteration += 1

            if last_prompt_chars:
                forced = compaction.ensure_capacity(last_prompt_chars)
                if forced is not None:
                    context_summary = forced.summary_text
                    await self._emit_compaction(phase, compaction, forced=True)

            result = await self.backend.run_iteration(
                IterationRequest(
                    phase=phase,
                    iteration=iteration,
                    context_summary=context_summary,
                    context_header=context_header,
                )
            )
            iterations += max(result.iterations_used, 1)
            last_prompt_chars = result.prompt_chars
            compaction.record_iteration(iteration, result)
            signals.add_iteration(result.signals)

            logger.debug(
                "iteration_finished",
                sub_phase=phase.number if nested else None,
                iteration=iteration,
                iterations_used=iterations,
                promise_found=result.promise_found,
                progress=result.signals.progress_percent,
            )
            await self._emit(
                EventType.PHASE_PROGRESS,
                phase.number,
                iteration=iteration,
                iterations_used=iterations,
                budget=phase.budget,
                promise_found=result.promise_found,
                progress_percent=result.signals.progress_percent,
                blockers=[blocker.description for blocker in result.signals.blockers],
            )

            if result.spawn_requests:
                if nested:
                    logger.warning(
                        "nested_spawn_ignored",
                        sub_phase=phase.number,
                        requests=len(result.spawn_requests),
                    )
                else:
                    await self._process_spawns(phase, result.spawn_requests, iterations)

            if result.promise_found:
                return await self._finish_with_sub_phases(phase, iterations)

            summary_text = compaction.compact_if_needed()
            if summary_text is not None:
                context_summary = summary_text
                await self._emit_compaction(phase, compaction, forced=False)

            trigger = detector.check(phase, signals, iterations)
            if trigger.should_decompose:
                outcome = await self._try_decompose(phase, trigger, iterations)
                if outcome is not None:
                    return outcome
                signals.reset()

        self._skip_pending_sub_phases(phase)
        logger.info(
            "budget_exhausted",
            sub_phase=phase.number if nested else None,
            iterations=iterations,
            budget=phase.budget,
        )
        return LoopOutcome(
            success=False,
            iterations=iterations,
            error="Budget exhausted without finding promise",
        )

    async def _emit_compaction(
        self, phase: Phase, compaction: CompactionManager, forced: bool
    ) -> None:
        last = compaction.last_compaction
        await self._emit(
            EventType.CONTEXT_COMPACTED,
            phase.number,
            forced=forced,
            iterations_compacted=last.iterations_summarized if last else 0,
            summary_chars=last.summary_chars if last else 0,
            chars_saved=compaction.tracker.chars_saved(),
        )

    async def _process_spawns(
        self, phase: Phase, requests: list[SubPhaseSpawnSignal], iterations_used: int
    ) -> None:
        results = self.subphase_manager.process_spawn_signals(phase, requests, iterations_used)
        for request, validation in results:
            if validation.is_valid:
                await self._emit(
                    EventType.SUB_PHASE_SPAWNED,
                    phase.number,
                    sub_phase=phase.sub_phases[-1].number,
                    name=request.name,
                    budget=request.budget,
                )
            else:
                await self._emit(
                    EventType.SUB_PHASE_REJECTED,
                    phase.number,
                    name=request.name,
                    reason=validation.rejection,
                    error=validation.message,
                )

    async def _finish_with_sub_phases(
        self, phase: Phase, iterations: int, decomposed: bool = False
    ) -> LoopOutcome:
        """Run pending sub-phases in order, then decide whether the phase completed."""
        total = iterations
        while (sub := self.subphase_manager.next_pending_sub_phase(phase)) is not None:
            outcome = await self._run_sub_phase(phase, sub)
            total += outcome.iterations
            if not outcome.success:
                self._skip_pending_sub_phases(phase)
                break

        if self.subphase_manager.parent_can_complete(phase):
            return LoopOutcome(success=True, iterations=total, decomposed=decomposed)

        status = self.subphase_manager.status_summary(phase)
        return LoopOutcome(
            success=False,
            iterations=total,
            error=f"Sub-phases incomplete: {status.display()}",
            decomposed=decomposed,
        )

    def _skip_pending_sub_phases(self, phase: Phase) -> None:
        for sub in phase.sub_phases:
            if sub.status == SubPhaseStatus.PENDING:
                self.subphase_manager.skip_sub_phase(phase, sub.number)

    async def _run_sub_phase(self, parent: Phase, sub: SubPhase) -> LoopOutcome:
        self.subphase_manager.start_sub_phase(parent, sub.number)
        await self._emit(
            EventType.PHASE_STARTED, sub.number, parent=parent.number, budget=sub.budget
        )

        outcome = await self._run_phase_loop(
            sub.to_phase(parent), nested=True, context_header=build_context_header(sub, parent)
        )

        if outcome.success:
            self.subphase_manager.complete_sub_phase(parent, sub.number)
            await self._emit(
                EventType.PHASE_COMPLETED,
                sub.number,
                parent=parent.number,
                iterations=outcome.iterations,
            )
        else:
            self.subphase_manager.fail_sub_phase(parent, sub.number)
            await self._emit(
                EventType.PHASE_FAILED,
                sub.number,
                parent=parent.number,
                iterations=outcome.iterations,
                error=outcome.error,
            )
        return outcome

    # -------------------------------------------------------------------------
    # Decomposition
    # -------------------------------------------------------------------------

    async def _try_decompose(
        self, phase: Phase, trigger: DecompositionTrigger, iterations: int
    ) -> LoopOutcome | None:
        """Ask for a plan and run it. Returns None if the phase stays undecomposed."""
        reason = trigger.description
        await self._emit(
            EventType.DECOMPOSITION_STARTED,
            phase.number,
            trigger=trigger.kind,
            reason=reason,
            iterations_used=iterations,
        )

        plan = await self.backend.request_decomposition(phase, reason)
        if plan is None:
            logger.info("decomposition_plan_unavailable", reason=reason)
            await self._emit(
                EventType.DECOMPOSITION_REJECTED, phase.number, error="No plan produced"
            )
            return None

        try:
            decomposed = self.decomposition_executor.convert_to_subphases(
                phase, plan, iterations, reason
            )
        except DecompositionError as e:
            logger.warning("decomposition_rejected", error=str(e))
            await self._emit(EventType.DECOMPOSITION_REJECTED, phase.number, error=str(e))
            return None

        runner = DecomposedPhaseRunner(
            self.decomposition_executor, self._run_task, self.event_bus, self.run_id
        )
        task_summary = await runner.run(phase, decomposed)
        total = iterations + task_summary.iterations_used

        await self._emit(
            EventType.DECOMPOSITION_COMPLETED,
            phase.number,
            tasks=task_summary.total_tasks,
            completed=task_summary.completed,
            failed=task_summary.failed,
            skipped=task_summary.skipped,
            iterations_used=task_summary.iterations_used,
        )

        if task_summary.is_success():
            return await self._finish_with_sub_phases(phase, total, decomposed=True)
        return LoopOutcome(
            success=False,
            iterations=total,
            error=(
                f"Decomposed tasks did not all complete: {task_summary.failed} failed, "
                f"{task_summary.skipped} skipped"
            ),
            decomposed=True,
        )

    async def _run_task(
        self, parent: Phase, sub_phase: SubPhase, task: DecompositionTask
    ) -> TaskOutcome:
        """Run a decomposition task as its sub-phase."""
        outcome = await self._run_phase_loop(
            sub_phase.to_phase(parent),
            nested=True,
            context_header=build_context_header(sub_phase, parent),
        )
        return TaskOutcome(
            task_id=task.id,
            success=outcome.success,
            iterations=outcome.iterations,
            error=outcome.error,
        )
