"""Data models shared by every orchestrator component.

This module exposes the phase definitions and the structured signals
exchanged with the execution backend.
"""

from forge.models.phase import (
    PermissionMode,
    Phase,
    PhaseReviewConfig,
    PhasesFile,
    PhaseType,
    SubPhase,
    SubPhaseStatus,
)
from forge.models.signals import (
    BlockerSignal,
    IterationRequest,
    IterationResult,
    IterationSignals,
    SubPhaseSpawnSignal,
)

__all__ = [
    "BlockerSignal",
    "IterationRequest",
    "IterationResult",
    "IterationSignals",
    "PermissionMode",
    "Phase",
    "PhaseReviewConfig",
    "PhaseType",
    "PhasesFile",
    "SubPhase",
    "SubPhaseSpawnSignal",
    "SubPhaseStatus",
]
