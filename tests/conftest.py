"""Shared test fixtures for the orchestrator tests.

Provides a fresh EventBus, phase and settings factories, and a scripted
iteration backend so executor tests never need a real coding agent.
"""

from collections import defaultdict
from collections.abc import Mapping
from typing import Any

import pytest

from forge.config import ContextConfig, DagConfig, DecompositionConfig, Settings, SubPhaseConfig
from forge.decomposition.types import DecompositionPlan
from forge.events.bus import EventBus, reset_event_bus
from forge.events.types import EventType, ForgeEvent
from forge.models.phase import Phase
from forge.models.signals import IterationRequest, IterationResult, IterationSignals

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    return EventBus()


def event_types(bus: EventBus, run_id: str) -> list[EventType]:
    """Types of every event recorded for a run, in order."""
    return [event.type for event in bus.get_event_history(run_id)]


def events_of(bus: EventBus, run_id: str, event_type: EventType) -> list[ForgeEvent]:
    return [event for event in bus.get_event_history(run_id) if event.type == event_type]


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_phase(
    number: str,
    budget: int = 10,
    depends_on: list[str] | None = None,
    **kwargs: Any,
) -> Phase:
    """Build a phase whose name and promise derive from its number."""
    return Phase(
        number=number,
        name=kwargs.pop("name", f"Phase {number}"),
        promise=kwargs.pop("promise", f"PHASE {number} COMPLETE"),
        budget=budget,
        depends_on=depends_on or [],
        **kwargs,
    )


def make_settings(
    dag: DagConfig | None = None,
    decomposition: DecompositionConfig | None = None,
    subphase: SubPhaseConfig | None = None,
    context: ContextConfig | None = None,
) -> Settings:
    """Settings built from explicit sections, ignoring any .env file."""
    return Settings(
        _env_file=None,
        dag=dag or DagConfig(),
        decomposition=decomposition or DecompositionConfig(),
        subphase=subphase or SubPhaseConfig(),
        context=context or ContextConfig(),
    )


def promise() -> IterationResult:
    return IterationResult(promise_found=True, output_summary="Finished")


def working(progress: int | None = None, **kwargs: Any) -> IterationResult:
    """An iteration that made some progress but did not finish."""
    signals = kwargs.pop("signals", IterationSignals(progress_percent=progress))
    return IterationResult(output_summary="Still working", signals=signals, **kwargs)


# ---------------------------------------------------------------------------
# Scripted backend
# ---------------------------------------------------------------------------


class ScriptedBackend:
    """Iteration backend that replays canned results per phase number.

    Each phase (or sub-phase) number maps to a list of results consumed in
    order; once a script runs out every further iteration returns a plain
    unfinished result. Decomposition plans are looked up by phase number.
    """

    def __init__(
        self,
        scripts: dict[str, list[IterationResult]] | None = None,
        plans: dict[str, Mapping[str, Any] | DecompositionPlan] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.scripts = {number: list(results) for number, results in (scripts or {}).items()}
        self.plans = plans or {}
        self.failures = failures or {}
        self.requests: list[IterationRequest] = []
        self.decomposition_requests: list[tuple[str, str]] = []
        self.calls: dict[str, int] = defaultdict(int)

    async def run_iteration(self, request: IterationRequest) -> IterationResult:
        number = request.phase.number
        self.requests.append(request)
        self.calls[number] += 1
        if number in self.failures:
            raise self.failures[number]
        script = self.scripts.get(number)
        if script:
            return script.pop(0)
        return IterationResult(output_summary="No progress")

    async def request_decomposition(
        self, phase: Phase, reason: str
    ) -> Mapping[str, Any] | DecompositionPlan | None:
        self.decomposition_requests.append((phase.number, reason))
        return self.plans.get(phase.number)

    def requests_for(self, number: str) -> list[IterationRequest]:
        return [request for request in self.requests if request.phase.number == number]
