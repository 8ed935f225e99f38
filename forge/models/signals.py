"""Structured signals exchanged with the execution backend.

The backend parses the agent's raw output; the core only ever sees the
pre-extracted values defined here.
"""

from pydantic import BaseModel, Field

from forge.models.phase import Phase


class BlockerSignal(BaseModel):
    """Something the agent reported as stopping its progress."""

    description: str
    acknowledged: bool = False


class IterationSignals(BaseModel):
    """Signals reported by a single iteration.

    Attributes:
        progress_percent: Self-reported completion (0-100), if any.
        blockers: Blockers raised during the iteration.
        pivot: Description of a change of approach, if any.
        decomposition_request: True if the agent explicitly asked to split the phase.
    """

    progress_percent: int | None = Field(default=None, ge=0, le=100)
    blockers: list[BlockerSignal] = Field(default_factory=list)
    pivot: str | None = None
    decomposition_request: bool = False

    def unacknowledged_blockers(self) -> list[BlockerSignal]:
        return [blocker for blocker in self.blockers if not blocker.acknowledged]

    def has_signals(self) -> bool:
        return (
            self.progress_percent is not None
            or bool(self.blockers)
            or self.pivot is not None
            or self.decomposition_request
        )


class SubPhaseSpawnSignal(BaseModel):
    """A request to carve a new sub-phase out of the running phase."""

    name: str
    promise: str
    budget: int = Field(ge=0)
    reasoning: str = ""
    skills: list[str] = Field(default_factory=list)


class IterationRequest(BaseModel):
    """What the executor hands the backend for one iteration.

    Attributes:
        phase: The phase (or sub-phase rendered as a phase) being worked on.
        iteration: 1-based iteration number within the phase.
        context_summary: Compaction summary to carry into the prompt, if the
            history was compacted.
        context_header: Parent-phase context for sub-phases and sub-tasks.
    """

    phase: Phase
    iteration: int = Field(ge=1)
    context_summary: str | None = None
    context_header: str | None = None


class IterationResult(BaseModel):
    """What the backend reports after running one iteration.

    Attributes:
        promise_found: The agent emitted the phase's promise.
        iterations_used: Iterations consumed by this call.
        prompt_chars: Size of the prompt that was sent.
        output_chars: Size of the agent's output.
        output_summary: Short summary of what the iteration did.
        files_modified: Paths the iteration modified.
        files_added: Paths the iteration created.
        signals: Progress, blockers and requests reported by the agent.
        spawn_requests: Sub-phases the agent asked to spawn.
    """

    promise_found: bool = False
    iterations_used: int = Field(default=1, ge=0)
    prompt_chars: int = Field(default=0, ge=0)
    output_chars: int = Field(default=0, ge=0)
    output_summary: str = ""
    files_modified: list[str] = Field(default_factory=list)
    files_added: list[str] = Field(default_factory=list)
    signals: IterationSignals = Field(default_factory=IterationSignals)
    spawn_requests: list[SubPhaseSpawnSignal] = Field(default_factory=list)
