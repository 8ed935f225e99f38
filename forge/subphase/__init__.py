"""Sub-phase spawning and lifecycle.

This module exposes the single spawn validation shared by ad-hoc spawns and
decomposition, and the manager that tracks sub-phase status on a parent.
"""

from forge.subphase.manager import SubPhaseManager, SubPhaseStatusSummary, build_context_header
from forge.subphase.spawn import (
    SpawnRejection,
    SpawnValidation,
    spawn_from_signal,
    validate_spawn,
)

__all__ = [
    "SpawnRejection",
    "SpawnValidation",
    "SubPhaseManager",
    "SubPhaseStatusSummary",
    "build_context_header",
    "spawn_from_signal",
    "validate_spawn",
]
