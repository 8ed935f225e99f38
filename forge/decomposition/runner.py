"""LangGraph runner for the tasks of a decomposed phase.

Tasks run in dependency waves. Each wave fans out with Send() so its tasks
execute concurrently, and the results are fanned back in through an
``operator.add`` reducer. Between waves a single node applies the results
in order (complete or fail, skip dependents, sync sub-phase statuses), so
task state only ever has one writer.

Graph:
    START -> dispatch_wave -> run_task (xN) -> advance_wave -> dispatch_wave | finish -> END
"""

import operator
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.types import Send

from forge.decomposition.executor import DecompositionExecutor, ExecutionSummary
from forge.decomposition.types import DecomposedPhase, DecompositionTask
from forge.events.bus import EventBus
from forge.events.types import EventType, ForgeEvent
from forge.models.phase import Phase, SubPhase

logger = structlog.get_logger(__name__)


# -----------------------------------------------------------------------------
# State Schema Definitions
# -----------------------------------------------------------------------------


class TaskOutcome(TypedDict):
    """Result of running one task.

    Attributes:
        task_id: The task that ran.
        success: Whether the task's promise was found within its budget.
        iterations: Iterations the task consumed.
        error: Failure reason, if any.
    """

    task_id: str
    success: bool
    iterations: int
    error: str | None


class DecomposedRunState(TypedDict):
    """State for one decomposed-phase run.

    Attributes:
        phase: The decomposed parent phase.
        decomposed: The accepted decomposition; its task statuses are updated
            in place by advance_wave.
        wave: Number of waves dispatched so far.
        current_wave: Task ids dispatched in the current wave.
        outcomes: Outcomes from every task run (fan-in via operator.add).
        applied: Number of outcomes already applied to task state.
        status: Current run status.
    """

    phase: Phase
    decomposed: DecomposedPhase
    wave: int
    current_wave: list[str]
    outcomes: Annotated[list[TaskOutcome], operator.add]
    applied: int
    status: Literal["running", "complete", "failed"]


TaskRunner = Callable[[Phase, SubPhase, DecompositionTask], Awaitable[TaskOutcome]]


# -----------------------------------------------------------------------------
# DecomposedPhaseRunner
# -----------------------------------------------------------------------------


class DecomposedPhaseRunner:
    """Runs the tasks of a decomposed phase wave by wave.

    Usage:
        >>> runner = DecomposedPhaseRunner(executor, run_task, event_bus, run_id)
        >>> summary = await runner.run(phase, decomposed)
        >>> summary.is_success()
        True
    """

    def __init__(
        self,
        executor: DecompositionExecutor,
        task_runner: TaskRunner,
        event_bus: EventBus | None = None,
        run_id: str = "",
    ) -> None:
        """Initialize the runner.

        Args:
            executor: Owns the task lifecycle rules.
            task_runner: Coroutine that executes one task as its sub-phase.
            event_bus: Optional bus for sub-task events.
            run_id: Run identifier attached to events.
        """
        self.executor = executor
        self.task_runner = task_runner
        self.event_bus = event_bus
        self.run_id = run_id
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> Any:
        graph = StateGraph(DecomposedRunState)

        graph.add_node("dispatch_wave", self._dispatch_wave)
        graph.add_node("run_task", self._run_task)
        graph.add_node("advance_wave", self._advance_wave)
        graph.add_node("finish", self._finish)

        graph.add_edge(START, "dispatch_wave")
        graph.add_conditional_edges("dispatch_wave", self._fan_out_current_wave, ["run_task"])
        graph.add_edge("run_task", "advance_wave")
        graph.add_conditional_edges(
            "advance_wave",
            self._route_after_wave,
            {
                "dispatch": "dispatch_wave",
                "finish": "finish",
            },
        )
        graph.add_edge("finish", END)

        return graph.compile()

    async def _emit(self, event_type: EventType, phase: str, data: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            ForgeEvent(type=event_type, run_id=self.run_id, phase=phase, data=data)
        )

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def _dispatch_wave(self, state: DecomposedRunState) -> dict[str, Any]:
        """Start every task whose dependencies have completed."""
        phase = state["phase"]
        decomposed = state["decomposed"]
        plan = decomposed.plan

        ready = self.executor.get_ready_tasks(plan)
        for task in ready:
            self.executor.start_task(plan, task.id)
        self.executor.sync_subphase_statuses(phase, decomposed)

        wave = state.get("wave", 0) + 1
        task_ids = [task.id for task in ready]
        logger.info(
            "dispatch_wave_start",
            phase=phase.number,
            wave=wave,
            task_ids=task_ids,
        )
        for task in ready:
            await self._emit(
                EventType.SUBTASK_STARTED,
                phase.number,
                {
                    "task_id": task.id,
                    "sub_phase": decomposed.task_sub_phases.get(task.id),
                    "name": task.name,
                    "budget": task.budget,
                    "wave": wave,
                },
            )
        return {"current_wave": task_ids, "wave": wave}

    def _fan_out_current_wave(self, state: DecomposedRunState) -> list[Send]:
        """Create Send() objects for the tasks of the current wave."""
        return [
            Send(
                "run_task",
                {
                    "task_id": task_id,
                    "phase": state["phase"],
                    "decomposed": state["decomposed"],
                },
            )
            for task_id in state.get("current_wave", [])
        ]

    async def _run_task(self, state: dict[str, Any]) -> dict[str, Any]:
        """Run one task through the injected task runner.

        Args:
            state: Task-specific state from Send()

        Returns:
            The task's outcome, appended to the shared outcomes list.
        """
        phase: Phase = state["phase"]
        decomposed: DecomposedPhase = state["decomposed"]
        task_id: str = state["task_id"]

        task = decomposed.plan.get_task(task_id)
        sub_phase = phase.get_sub_phase(decomposed.task_sub_phases.get(task_id, ""))
        if task is None or sub_phase is None:
            outcome = TaskOutcome(
                task_id=task_id,
                success=False,
                iterations=0,
                error=f"No sub-phase registered for task '{task_id}'",
            )
            return {"outcomes": [outcome]}

        try:
            outcome = await self.task_runner(phase, sub_phase, task)
        except Exception as e:
            logger.error(
                "task_execution_error",
                phase=phase.number,
                task_id=task_id,
                error=str(e),
                exc_info=True,
            )
            outcome = TaskOutcome(task_id=task_id, success=False, iterations=0, error=str(e))
        return {"outcomes": [outcome]}

    async def _advance_wave(self, state: DecomposedRunState) -> dict[str, Any]:
        """Apply the current wave's outcomes to task and sub-phase state."""
        phase = state["phase"]
        decomposed = state["decomposed"]
        plan = decomposed.plan
        outcomes = state.get("outcomes", [])
        new_outcomes = outcomes[state.get("applied", 0):]

        for outcome in new_outcomes:
            task_id = outcome["task_id"]
            if outcome["success"]:
                self.executor.complete_task(plan, task_id, outcome["iterations"])
                skipped: list[str] = []
            else:
                self.executor.fail_task(
                    plan, task_id, outcome["iterations"], outcome["error"] or "Task failed"
                )
                skipped = self.executor.skip_dependent_tasks(plan, task_id)
            logger.info(
                "task_finished",
                phase=phase.number,
                task_id=task_id,
                success=outcome["success"],
                iterations=outcome["iterations"],
                skipped=skipped,
            )
            await self._emit(
                EventType.SUBTASK_COMPLETED,
                phase.number,
                {
                    "task_id": task_id,
                    "sub_phase": decomposed.task_sub_phases.get(task_id),
                    "success": outcome["success"],
                    "iterations": outcome["iterations"],
                    "error": outcome["error"],
                    "skipped": skipped,
                },
            )

        self.executor.sync_subphase_statuses(phase, decomposed)
        return {"applied": len(outcomes), "current_wave": []}

    def _route_after_wave(self, state: DecomposedRunState) -> str:
        if self.executor.get_ready_tasks(state["decomposed"].plan):
            return "dispatch"
        return "finish"

    async def _finish(self, state: DecomposedRunState) -> dict[str, Any]:
        plan = state["decomposed"].plan
        summary = self.executor.execution_summary(plan)
        status = "complete" if summary.is_success() else "failed"
        logger.info(
            "decomposed_phase_finished",
            phase=state["phase"].number,
            waves=state.get("wave", 0),
            completed=summary.completed,
            failed=summary.failed,
            skipped=summary.skipped,
            iterations=summary.iterations_used,
        )
        return {"status": status}

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self, phase: Phase, decomposed: DecomposedPhase) -> ExecutionSummary:
        """Run every task of the decomposition to a terminal status.

        Args:
            phase: The decomposed phase; its sub-phase statuses are updated.
            decomposed: The accepted decomposition.

        Returns:
            Per-status counts for the plan's tasks.
        """
        initial_state = DecomposedRunState(
            phase=phase,
            decomposed=decomposed,
            wave=0,
            current_wave=[],
            outcomes=[],
            applied=0,
            status="running",
        )
        # dispatch_wave, run_task and advance_wave per wave, plus finish.
        recursion_limit = 3 * max(decomposed.plan.task_count(), 1) + 5
        await self._compiled_graph.ainvoke(
            initial_state, config={"recursion_limit": recursion_limit}
        )
        return self.executor.execution_summary(decomposed.plan)
