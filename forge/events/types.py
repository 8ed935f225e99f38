"""Event type definitions for the Forge event system.

Every meaningful scheduling decision produces an event: phases starting and
finishing, waves, decompositions, sub-phase spawns and context compactions.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types emitted by the orchestrator.

    Events are categorized by:
    - Run lifecycle: start, completion and close of a DAG run
    - Waves: groups of phases started together
    - Phase lifecycle: start, per-iteration progress and terminal states
    - Context: history compaction
    - Decomposition: plan acceptance, rejection and sub-task execution
    - Sub-phases: ad-hoc spawn outcomes
    """

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETE = "run_complete"
    RUN_CLOSED = "run_closed"

    # Waves
    WAVE_STARTED = "wave_started"
    WAVE_COMPLETED = "wave_completed"

    # Phase lifecycle
    PHASE_STARTED = "phase_started"
    PHASE_PROGRESS = "phase_progress"
    PHASE_COMPLETED = "phase_completed"
    PHASE_FAILED = "phase_failed"
    PHASE_SKIPPED = "phase_skipped"

    # Context
    CONTEXT_COMPACTED = "context_compacted"

    # Decomposition
    DECOMPOSITION_STARTED = "decomposition_started"
    DECOMPOSITION_COMPLETED = "decomposition_completed"
    DECOMPOSITION_REJECTED = "decomposition_rejected"
    SUBTASK_STARTED = "subtask_started"
    SUBTASK_COMPLETED = "subtask_completed"

    # Sub-phases
    SUB_PHASE_SPAWNED = "sub_phase_spawned"
    SUB_PHASE_REJECTED = "sub_phase_rejected"


class ForgeEvent(BaseModel):
    """An event emitted while a DAG run executes.

    Attributes:
        type: The category of event.
        timestamp: Unix timestamp of when the event was created.
        run_id: The run this event belongs to.
        phase: Number of the phase or sub-phase involved, if any.
        data: Event-specific payload.
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    run_id: str
    phase: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
