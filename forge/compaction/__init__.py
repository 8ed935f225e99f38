"""Context window accounting and history compaction.

Key Components:
    - ContextLimit / parse_context_limit: "80%" or "120000" style limits
    - ContextTracker: per-phase usage accounting and the compaction decision
    - CompactionSummary / IterationContext: structured history and its summary
    - CompactionManager: ties the tracker to the history and compacts it
"""

from forge.compaction.limit import (
    COMPACTION_SAFETY_MARGIN_PERCENT,
    DEFAULT_MODEL_WINDOW_CHARS,
    MIN_PRESERVED_CONTEXT,
    ContextLimit,
    parse_context_limit,
)
from forge.compaction.manager import MAX_RECENT_ITERATIONS, CompactionManager
from forge.compaction.summary import CompactionSummary, IterationContext
from forge.compaction.tracker import ContextTracker

__all__ = [
    "COMPACTION_SAFETY_MARGIN_PERCENT",
    "DEFAULT_MODEL_WINDOW_CHARS",
    "MAX_RECENT_ITERATIONS",
    "MIN_PRESERVED_CONTEXT",
    "CompactionManager",
    "CompactionSummary",
    "ContextLimit",
    "ContextTracker",
    "IterationContext",
    "parse_context_limit",
]
