"""Per-phase accounting of how much conversation context has been used.

The tracker answers one question between iterations: is the accumulated
prompt and output history close enough to the configured limit that it
should be compacted before the next iteration?
"""

from typing import TYPE_CHECKING

import structlog

from forge.compaction.limit import (
    COMPACTION_SAFETY_MARGIN_PERCENT,
    DEFAULT_MODEL_WINDOW_CHARS,
    MIN_PRESERVED_CONTEXT,
    ContextLimit,
    parse_context_limit,
)

if TYPE_CHECKING:
    from forge.config import ContextConfig

logger = structlog.get_logger(__name__)


class ContextTracker:
    """Tracks context usage for a single phase.

    Create a new tracker at the start of every phase.

    Usage:
        >>> tracker = ContextTracker("80%", model_window_chars=100_000)
        >>> tracker.add_iteration(prompt_chars=40_000, output_chars=33_000)
        >>> tracker.add_iteration(prompt_chars=0, output_chars=0)
        >>> tracker.should_compact()
        True
    """

    def __init__(
        self,
        limit: ContextLimit | str = "80%",
        model_window_chars: int = DEFAULT_MODEL_WINDOW_CHARS,
        safety_margin_percent: float = COMPACTION_SAFETY_MARGIN_PERCENT,
        min_preserved_context: int = MIN_PRESERVED_CONTEXT,
    ) -> None:
        """Initialize the tracker.

        Args:
            limit: A ContextLimit or a string such as "80%" or "120000".
            model_window_chars: Size of the model's context window.
            safety_margin_percent: Share of the limit kept free before compacting.
            min_preserved_context: Characters that must stay free after a prompt.

        Raises:
            ContextLimitError: If limit is a string that cannot be parsed.
        """
        self.limit = parse_context_limit(limit) if isinstance(limit, str) else limit
        self.model_window_chars = model_window_chars
        self.safety_margin_percent = safety_margin_percent
        self.min_preserved_context = min_preserved_context
        self._prompt_chars = 0
        self._output_chars = 0
        self._iteration_count = 0
        self._compacted = False
        self._chars_compacted = 0

    @classmethod
    def from_config(cls, config: "ContextConfig") -> "ContextTracker":
        return cls(
            limit=config.context_limit(),
            model_window_chars=config.model_window_chars,
            safety_margin_percent=config.safety_margin_percent,
            min_preserved_context=config.min_preserved_context,
        )

    def add_iteration(self, prompt_chars: int, output_chars: int) -> None:
        self._prompt_chars += prompt_chars
        self._output_chars += output_chars
        self._iteration_count += 1

    def total_context_used(self) -> int:
        return self._prompt_chars + self._output_chars

    def effective_limit(self) -> int:
        return self.limit.effective_limit(self.model_window_chars)

    def compaction_threshold(self) -> int:
        """Usage at which compaction kicks in: the limit minus the safety margin."""
        limit = self.effective_limit()
        margin = int(limit * self.safety_margin_percent / 100)
        return limit - margin

    def should_compact(self) -> bool:
        """True once there are at least two iterations and usage reached the threshold."""
        if self._iteration_count < 2:
            return False
        return self.total_context_used() >= self.compaction_threshold()

    def usage_percentage(self) -> float:
        limit = self.effective_limit()
        if limit == 0:
            return 100.0
        return self.total_context_used() / limit * 100

    def apply_compaction(self, summary_chars: int, iterations_compacted: int) -> None:
        """Replace the accumulated history with a summary of summary_chars."""
        previous = self.total_context_used()
        self._chars_compacted += max(previous - summary_chars, 0)
        self._prompt_chars = summary_chars
        self._output_chars = 0
        self._iteration_count = max(self._iteration_count - iterations_compacted, 1)
        self._compacted = True
        logger.info(
            "context_compacted",
            previous_chars=previous,
            summary_chars=summary_chars,
            iterations_compacted=iterations_compacted,
            chars_saved=self._chars_compacted,
        )

    def has_compacted(self) -> bool:
        return self._compacted

    def chars_saved(self) -> int:
        return self._chars_compacted

    def iteration_count(self) -> int:
        return self._iteration_count

    def remaining_budget(self) -> int:
        return max(self.effective_limit() - self.total_context_used(), 0)

    def has_budget_for(self, estimated_chars: int) -> bool:
        """True if a prompt of this size still leaves the preserved minimum free."""
        return self.remaining_budget() > estimated_chars + self.min_preserved_context

    def status_summary(self) -> str:
        summary = (
            f"Context: {self.total_context_used():,}/{self.effective_limit():,} chars "
            f"({self.usage_percentage():.1f}%), {self._iteration_count} iterations"
        )
        if self._compacted:
            summary += f", {self._chars_compacted:,} chars compacted"
        return summary
