"""Compaction manager: keeps iteration history and compacts it on demand.

The manager pairs a ContextTracker with the structured history of the
current phase. Between iterations the executor asks it whether to compact;
when it does, all but the most recent iterations are folded into a
CompactionSummary whose text is carried into the next prompt.
"""

from collections import deque
from typing import TYPE_CHECKING

import structlog

from forge.compaction.summary import CompactionSummary, IterationContext
from forge.compaction.tracker import ContextTracker
from forge.models.signals import IterationResult

if TYPE_CHECKING:
    from forge.models.phase import Phase

logger = structlog.get_logger(__name__)

# Iterations kept verbatim when compacting on threshold.
MAX_RECENT_ITERATIONS = 2


class CompactionManager:
    """Owns context accounting and iteration history for one phase."""

    def __init__(self, phase: "Phase", tracker: ContextTracker | None = None) -> None:
        self.phase_number = phase.number
        self.phase_name = phase.name
        self.promise = phase.promise
        self.tracker = tracker or ContextTracker()
        self._history: deque[IterationContext] = deque()
        self._last_compaction: CompactionSummary | None = None

    def record_iteration(self, iteration: int, result: IterationResult) -> None:
        """Account for an iteration's context use and keep its details."""
        self.tracker.add_iteration(result.prompt_chars, result.output_chars)

        ctx = IterationContext(
            iteration=iteration,
            summary=result.output_summary,
            promise_found=result.promise_found,
            progress_percent=result.signals.progress_percent,
        )
        for path in result.files_added:
            ctx.add_new_file(path)
        for path in result.files_modified:
            ctx.add_modified_file(path)
        if result.signals.pivot:
            ctx.pivots.append(result.signals.pivot)
        ctx.errors.extend(
            blocker.description for blocker in result.signals.unacknowledged_blockers()
        )
        self._history.append(ctx)

    def should_compact(self) -> bool:
        return self.tracker.should_compact() and len(self._history) >= 2

    def compact_if_needed(self) -> str | None:
        """Compact all but the most recent iterations if the threshold is reached.

        Returns:
            The summary text to inject into the next prompt, or None if no
            compaction happened.
        """
        if not self.should_compact():
            return None

        to_compact = len(self._history) - MAX_RECENT_ITERATIONS
        if to_compact <= 0:
            return None

        summary = self._compact(to_compact)
        return summary.summary_text

    def force_compact(self) -> CompactionSummary | None:
        """Compact everything except the latest iteration, ignoring the threshold."""
        if not self._history:
            return None
        to_compact = max(len(self._history) - 1, 1)
        return self._compact(to_compact)

    def ensure_capacity(self, estimated_prompt_chars: int) -> CompactionSummary | None:
        """Force a compaction if the next prompt would eat into the preserved context."""
        if self.tracker.has_budget_for(estimated_prompt_chars):
            return None
        logger.info(
            "context_capacity_low",
            phase=self.phase_number,
            estimated_prompt_chars=estimated_prompt_chars,
            remaining=self.tracker.remaining_budget(),
        )
        return self.force_compact()

    def _compact(self, count: int) -> CompactionSummary:
        iterations = [self._history.popleft() for _ in range(min(count, len(self._history)))]
        summary = CompactionSummary.from_iterations(
            self.phase_number,
            self.phase_name,
            self.promise,
            iterations,
            self.tracker.total_context_used(),
        )
        self.tracker.apply_compaction(summary.summary_chars, len(iterations))
        self._last_compaction = summary
        logger.info(
            "phase_history_compacted",
            phase=self.phase_number,
            iterations=len(iterations),
            original_chars=summary.original_chars,
            summary_chars=summary.summary_chars,
        )
        return summary

    @property
    def last_compaction(self) -> CompactionSummary | None:
        return self._last_compaction

    def context_injection(self) -> str | None:
        """Text of the latest compaction summary, for inclusion in prompts."""
        if self._last_compaction is None:
            return None
        return self._last_compaction.summary_text

    def iteration_count(self) -> int:
        """Number of iterations still held in full."""
        return len(self._history)

    def status(self) -> str:
        return self.tracker.status_summary()
