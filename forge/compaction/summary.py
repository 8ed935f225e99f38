"""Structured iteration history and the summary that replaces it on compaction."""

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class IterationContext:
    """What a single iteration did, kept until it is compacted.

    Attributes:
        iteration: 1-based iteration number within the phase.
        summary: Short description of the iteration's work.
        files_modified: Paths modified, without duplicates.
        files_added: Paths created, without duplicates.
        promise_found: Whether the iteration emitted the promise.
        progress_percent: Self-reported progress, if any.
        errors: Open blockers reported by the iteration.
        pivots: Changes of approach reported by the iteration.
        timestamp: When the iteration was recorded.
    """

    iteration: int
    summary: str = ""
    files_modified: list[str] = field(default_factory=list)
    files_added: list[str] = field(default_factory=list)
    promise_found: bool = False
    progress_percent: int | None = None
    errors: list[str] = field(default_factory=list)
    pivots: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def add_modified_file(self, path: str) -> None:
        if path not in self.files_modified:
            self.files_modified.append(path)

    def add_new_file(self, path: str) -> None:
        if path not in self.files_added:
            self.files_added.append(path)


def _extend_unique(target: list[str], values: list[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)


@dataclass
class CompactionSummary:
    """Summary that stands in for a run of compacted iterations.

    Build it with from_iterations(); summary_text is the markdown injected
    into the next prompt.
    """

    phase_number: str
    phase_name: str
    promise: str
    iterations_summarized: int = 0
    original_chars: int = 0
    summary_chars: int = 0
    progress_percent: int | None = None
    accomplishments: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    files_added: list[str] = field(default_factory=list)
    current_blockers: list[str] = field(default_factory=list)
    pivots_made: list[str] = field(default_factory=list)
    summary_text: str = ""
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_iterations(
        cls,
        phase_number: str,
        phase_name: str,
        promise: str,
        iterations: list[IterationContext],
        original_chars: int,
    ) -> "CompactionSummary":
        """Fold a run of iterations into one summary.

        Files and pivots are merged without duplicates; progress and
        blockers come from the latest iteration that reported them.
        """
        summary = cls(
            phase_number=phase_number,
            phase_name=phase_name,
            promise=promise,
            iterations_summarized=len(iterations),
            original_chars=original_chars,
        )

        for ctx in iterations:
            if ctx.summary:
                summary.accomplishments.append(f"Iteration {ctx.iteration}: {ctx.summary}")
            _extend_unique(summary.files_modified, ctx.files_modified)
            _extend_unique(summary.files_added, ctx.files_added)
            _extend_unique(summary.pivots_made, ctx.pivots)
            if ctx.progress_percent is not None:
                summary.progress_percent = ctx.progress_percent
            if ctx.errors:
                summary.current_blockers = list(ctx.errors)

        summary.summary_text = summary._render()
        summary.summary_chars = len(summary.summary_text)
        return summary

    def _render(self) -> str:
        lines = [
            "## CONTEXT COMPACTION",
            "",
            "Previous iterations have been summarized to preserve context. "
            f"{self.iterations_summarized} iteration(s) were compacted.",
            "",
        ]

        if self.progress_percent is not None:
            lines += [f"**Current Progress:** {self.progress_percent}%", ""]

        if self.accomplishments:
            lines += ["### What Has Been Done", ""]
            lines += [f"- {item}" for item in self.accomplishments]
            lines.append("")

        if self.files_added or self.files_modified:
            lines += ["### Files Changed", ""]
            if self.files_added:
                lines.append("**Added:**")
                lines += [f"- {path}" for path in self.files_added]
            if self.files_modified:
                lines.append("**Modified:**")
                lines += [f"- {path}" for path in self.files_modified]
            lines.append("")

        if self.pivots_made:
            lines += ["### Strategy Changes", ""]
            lines += [f"- {pivot}" for pivot in self.pivots_made]
            lines.append("")

        if self.current_blockers:
            lines += ["### Current Issues", ""]
            lines += [f"- {blocker}" for blocker in self.current_blockers]
            lines.append("")

        lines.append(f"**Continue working on:** Phase {self.phase_number} - {self.phase_name}")
        lines.append(f"**Goal:** Output <promise>{self.promise}</promise> when complete.")
        return "\n".join(lines) + "\n\n"

    def compression_ratio(self) -> float:
        if self.original_chars == 0:
            return 1.0
        return 1.0 - self.summary_chars / self.original_chars

    def status(self) -> str:
        return (
            f"Compacted {self.iterations_summarized} iterations: "
            f"{self.original_chars} -> {self.summary_chars} chars "
            f"({self.compression_ratio() * 100:.1f}% reduction)"
        )
