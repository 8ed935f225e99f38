"""Phase definitions: the units of work the orchestrator schedules.

A phase carries an iteration budget and a promise, the sentinel string the
coding agent prints when the phase is done. Phases may own ordered
sub-phases that are carved out of the parent's budget at run time.
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class PermissionMode(StrEnum):
    """How much freedom the agent has while working on a phase."""

    STRICT = "strict"
    STANDARD = "standard"
    AUTONOMOUS = "autonomous"
    READONLY = "readonly"


class PhaseType(StrEnum):
    """Kind of work a phase performs."""

    SCAFFOLD = "scaffold"
    IMPLEMENT = "implement"
    TEST = "test"
    REFACTOR = "refactor"
    FIX = "fix"


class SubPhaseStatus(StrEnum):
    """Lifecycle of a sub-phase or decomposition task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (SubPhaseStatus.COMPLETED, SubPhaseStatus.FAILED, SubPhaseStatus.SKIPPED)


class PhaseReviewConfig(BaseModel):
    """Review settings attached to a phase. Carried, not interpreted, by the core."""

    enabled: bool = False
    specialists: list[str] = Field(default_factory=list)
    mode: str = "advisory"


class SubPhase(BaseModel):
    """A child unit of work nested in a parent phase's budget.

    Attributes:
        number: Identifier of the form "<parent>.<order>".
        parent_phase: Number of the owning phase.
        order: 1-based position among the parent's sub-phases.
        name: Human-readable name.
        promise: Completion marker, unique among the parent's sub-phases.
        budget: Iterations allocated from the parent.
        reasoning: Why the sub-phase exists.
        skills: Skills to load; empty means inherit the parent's.
        status: Current lifecycle status.
    """

    number: str
    parent_phase: str
    order: int = Field(ge=1)
    name: str
    promise: str
    budget: int = Field(ge=0)
    reasoning: str = ""
    skills: list[str] = Field(default_factory=list)
    status: SubPhaseStatus = SubPhaseStatus.PENDING

    def to_phase(self, parent: "Phase") -> "Phase":
        """Build an executable phase that runs under the parent's permissions."""
        return Phase(
            number=self.number,
            name=self.name,
            promise=self.promise,
            budget=self.budget,
            reasoning=self.reasoning,
            skills=list(self.skills or parent.skills),
            permission_mode=parent.permission_mode,
            phase_type=parent.phase_type,
        )


class Phase(BaseModel):
    """A schedulable unit of work.

    Attributes:
        number: Unique identifier, e.g. "01".
        name: Human-readable name.
        promise: Sentinel the agent emits when the phase is complete.
        budget: Maximum number of iterations.
        reasoning: Why the phase exists.
        depends_on: Numbers of phases that must complete first.
        skills: Skills the agent should load.
        permission_mode: Agent permission level.
        sub_phases: Ordered child units carved from this phase's budget.
        phase_type: Optional kind of work.
        review: Optional review settings.
    """

    number: str
    name: str
    promise: str
    budget: int = Field(ge=0)
    reasoning: str = ""
    depends_on: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    permission_mode: PermissionMode = PermissionMode.STANDARD
    sub_phases: list[SubPhase] = Field(default_factory=list)
    phase_type: PhaseType | None = None
    review: PhaseReviewConfig | None = None

    def has_sub_phases(self) -> bool:
        return bool(self.sub_phases)

    def allocated_budget(self) -> int:
        """Iterations already handed to sub-phases."""
        return sum(sub.budget for sub in self.sub_phases)

    def remaining_budget(self) -> int:
        """Iterations not yet allocated to sub-phases."""
        return max(self.budget - self.allocated_budget(), 0)

    def get_sub_phase(self, number: str) -> SubPhase | None:
        return next((sub for sub in self.sub_phases if sub.number == number), None)

    def update_sub_phase_status(self, number: str, status: SubPhaseStatus) -> bool:
        """Set a sub-phase's status. Returns False if no sub-phase has that number."""
        sub = self.get_sub_phase(number)
        if sub is None:
            return False
        sub.status = status
        return True

    def all_sub_phases_complete(self) -> bool:
        """True when every sub-phase completed; vacuously true with none."""
        return all(sub.status == SubPhaseStatus.COMPLETED for sub in self.sub_phases)


class PhasesFile(BaseModel):
    """The persisted shape of a phase plan.

    Only in-memory conversion is provided; reading and writing the file is
    the caller's job.
    """

    spec_hash: str = ""
    generated_at: str = ""
    phases: list[Phase] = Field(default_factory=list)

    @classmethod
    def from_json(cls, text: str | bytes) -> "PhasesFile":
        return cls.model_validate_json(text)

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(indent=indent)

    def get_phase(self, number: str) -> Phase | None:
        return next((phase for phase in self.phases if phase.number == number), None)

    def get_phases_from(self, number: str) -> list[Phase]:
        """Return the phase with this number and every phase after it."""
        for index, phase in enumerate(self.phases):
            if phase.number == number:
                return list(self.phases[index:])
        return []
