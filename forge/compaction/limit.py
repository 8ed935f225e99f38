"""Context limit values: a percentage of the model window or an absolute size."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from forge.errors import ContextLimitError

DEFAULT_MODEL_WINDOW_CHARS = 800_000
MIN_PRESERVED_CONTEXT = 50_000
COMPACTION_SAFETY_MARGIN_PERCENT = 10.0


class ContextLimit(BaseModel):
    """How much of the model's context window a phase may fill.

    Attributes:
        kind: "percentage" of the model window, or "absolute" characters.
        value: The percentage (0 < value <= 100) or the character count.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["percentage", "absolute"]
    value: float

    @classmethod
    def percentage(cls, percent: float) -> "ContextLimit":
        return cls(kind="percentage", value=percent)

    @classmethod
    def absolute(cls, chars: int) -> "ContextLimit":
        return cls(kind="absolute", value=chars)

    def effective_limit(self, model_window_chars: int) -> int:
        """Resolve the limit to a character count for the given window."""
        if self.kind == "percentage":
            return int(model_window_chars * self.value / 100)
        return int(self.value)

    def __str__(self) -> str:
        if self.kind == "percentage":
            return f"{self.value:g}%"
        return f"{int(self.value)} chars"


def parse_context_limit(raw: str) -> ContextLimit:
    """Parse "80%" or "120000" into a ContextLimit.

    Raises:
        ContextLimitError: If the string is empty, not a number, a percentage
            outside (0, 100], or a zero absolute size.
    """
    text = raw.strip()
    if not text:
        raise ContextLimitError("Context limit cannot be empty")

    if text.endswith("%"):
        number = text[:-1].strip()
        try:
            percent = float(number)
        except ValueError:
            raise ContextLimitError(f"Invalid percentage: {number}") from None
        if percent <= 0 or percent > 100:
            raise ContextLimitError(f"Percentage must be between 0 and 100, got {percent:g}")
        return ContextLimit.percentage(percent)

    try:
        chars = int(text)
    except ValueError:
        raise ContextLimitError(f"Invalid context limit: {text}") from None
    if chars <= 0:
        raise ContextLimitError("Absolute limit must be greater than 0")
    return ContextLimit.absolute(chars)
