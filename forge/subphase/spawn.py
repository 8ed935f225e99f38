"""Sub-phase spawn validation.

Every path that creates a sub-phase (an ad-hoc spawn request from the agent
or an accepted decomposition plan) goes through validate_spawn, so the
budget and uniqueness rules are enforced in exactly one place.
"""

from dataclasses import dataclass
from enum import StrEnum

from forge.config import SubPhaseConfig
from forge.models.phase import Phase, SubPhase
from forge.models.signals import SubPhaseSpawnSignal


class SpawnRejection(StrEnum):
    """Why a spawn request was refused."""

    INVALID_NAME = "invalid_name"
    INVALID_PROMISE = "invalid_promise"
    DUPLICATE_PROMISE = "duplicate_promise"
    INSUFFICIENT_BUDGET = "insufficient_budget"
    TOO_MANY_SUB_PHASES = "too_many_sub_phases"


@dataclass(frozen=True)
class SpawnValidation:
    """Outcome of validating a spawn request.

    Attributes:
        rejection: None when the request is valid, otherwise the reason.
        message: Human-readable explanation of the rejection.
        requested: Budget the request asked for.
        available: Budget the parent could give at validation time.
    """

    rejection: SpawnRejection | None = None
    message: str = ""
    requested: int = 0
    available: int = 0

    @property
    def is_valid(self) -> bool:
        return self.rejection is None

    @property
    def error_message(self) -> str | None:
        return None if self.is_valid else self.message


def validate_spawn(
    request: SubPhaseSpawnSignal,
    parent: Phase,
    config: SubPhaseConfig | None = None,
    iterations_used: int = 0,
) -> SpawnValidation:
    """Check whether the parent can take on the requested sub-phase.

    Does not modify the parent.

    Args:
        request: The sub-phase being requested.
        parent: The phase that would own the sub-phase.
        config: Spawn limits; defaults apply when omitted.
        iterations_used: Iterations the parent has already spent itself.

    Returns:
        A SpawnValidation; check is_valid before appending.
    """
    config = config or SubPhaseConfig()

    if not request.name.strip():
        return SpawnValidation(SpawnRejection.INVALID_NAME, "Invalid name: name cannot be empty")

    if not request.promise.strip():
        return SpawnValidation(
            SpawnRejection.INVALID_PROMISE, "Invalid promise: promise cannot be empty"
        )

    if any(sub.promise == request.promise for sub in parent.sub_phases):
        return SpawnValidation(
            SpawnRejection.DUPLICATE_PROMISE,
            f"Invalid promise: '{request.promise}' already used by another sub-phase",
        )

    available = parent.remaining_budget() - iterations_used - config.min_parent_budget_reserve
    if request.budget > available:
        return SpawnValidation(
            SpawnRejection.INSUFFICIENT_BUDGET,
            f"Requested budget {request.budget} exceeds available budget "
            f"{max(available, 0)}",
            requested=request.budget,
            available=max(available, 0),
        )

    if len(parent.sub_phases) >= config.max_sub_phases:
        return SpawnValidation(
            SpawnRejection.TOO_MANY_SUB_PHASES,
            f"Too many sub-phases: {len(parent.sub_phases)} already spawned "
            f"(max {config.max_sub_phases})",
        )

    return SpawnValidation(requested=request.budget, available=available)


def spawn_from_signal(request: SubPhaseSpawnSignal, parent: Phase) -> SubPhase:
    """Build the next sub-phase for the parent. Does not validate or append."""
    order = len(parent.sub_phases) + 1
    return SubPhase(
        number=f"{parent.number}.{order}",
        parent_phase=parent.number,
        order=order,
        name=request.name,
        promise=request.promise,
        budget=request.budget,
        reasoning=request.reasoning,
        skills=list(request.skills),
    )
