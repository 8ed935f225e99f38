"""Orchestrator configuration using Pydantic Settings.

This module provides centralized configuration for the Forge decision core.
Every knob can be overridden via environment variables (prefixed ``FORGE_``,
nested sections separated by ``__``) or a .env file, for example
``FORGE_DAG__FAIL_FAST=true`` or ``FORGE_CONTEXT__LIMIT=60%``.
"""

import logging
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from forge.compaction.limit import ContextLimit, parse_context_limit
from forge.models.phase import PermissionMode, Phase

DEFAULT_COMPLEXITY_KEYWORDS: list[str] = [
    "complex",
    "multiple",
    "several",
    "needs decomposition",
    "too large",
    "split",
    "parallel",
]


class DagConfig(BaseModel):
    """Scheduling policy for the phase DAG.

    Attributes:
        max_parallel: Maximum number of phases running at once.
        fail_fast: If True, a failed phase immediately skips every
            transitive dependent.
    """

    max_parallel: int = Field(default=4, ge=1)
    fail_fast: bool = False


class DecompositionConfig(BaseModel):
    """Thresholds that decide when and how a phase is split into sub-phases.

    Attributes:
        enabled: Master switch; when off every trigger check returns no trigger.
        budget_threshold_percent: Share of the budget that may be used before
            low progress counts as a mismatch.
        progress_threshold_percent: Progress below which the budget trigger fires.
        allow_explicit_request: Honour explicit decomposition requests from the agent.
        detect_complexity_signals: Scan blocker descriptions for complexity keywords.
        complexity_keywords: Case-insensitive substrings that signal complexity.
        min_tasks: Smallest accepted plan.
        max_tasks: Largest accepted plan.
        budget_buffer_percent: Share of the remaining budget held back from plans.
    """

    enabled: bool = True
    budget_threshold_percent: int = Field(default=50, ge=0, le=100)
    progress_threshold_percent: int = Field(default=30, ge=0, le=100)
    allow_explicit_request: bool = True
    detect_complexity_signals: bool = True
    complexity_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLEXITY_KEYWORDS)
    )
    min_tasks: int = Field(default=1, ge=1)
    max_tasks: int = Field(default=10, ge=1)
    budget_buffer_percent: int = Field(default=10, ge=0, le=100)

    def is_complexity_keyword(self, text: str) -> bool:
        """Return True if text contains any complexity keyword (case-insensitive)."""
        lowered = text.lower()
        return any(keyword.lower() in lowered for keyword in self.complexity_keywords)

    def available_budget(self, remaining: int) -> int:
        """Budget a plan may use once the safety buffer is held back."""
        buffer = remaining * self.budget_buffer_percent // 100
        return max(remaining - buffer, 0)

    def for_phase(self, phase: Phase) -> "DecompositionConfig":
        """Return the config to apply to a phase.

        Readonly phases never decompose, so they get a disabled copy.
        """
        if phase.permission_mode == PermissionMode.READONLY and self.enabled:
            return self.model_copy(update={"enabled": False})
        return self


class SubPhaseConfig(BaseModel):
    """Limits applied to every sub-phase spawn.

    Attributes:
        max_sub_phases: Maximum number of sub-phases per parent.
        min_parent_budget_reserve: Iterations the parent always keeps for itself.
    """

    max_sub_phases: int = Field(default=10, ge=0)
    min_parent_budget_reserve: int = Field(default=1, ge=0)


class ContextConfig(BaseModel):
    """Context window accounting for a phase.

    Attributes:
        limit: Percentage of the model window ("80%") or an absolute
            character count ("120000").
        model_window_chars: Size of the model's context window in characters.
        safety_margin_percent: Share of the limit reserved before compaction.
        min_preserved_context: Characters that must stay free after any prompt.
    """

    limit: str = "80%"
    model_window_chars: int = Field(default=800_000, gt=0)
    safety_margin_percent: float = Field(default=10.0, ge=0.0, le=100.0)
    min_preserved_context: int = Field(default=50_000, ge=0)

    @field_validator("limit", mode="before")
    @classmethod
    def check_limit(cls, v: Any) -> str:
        """Reject limit strings that parse_context_limit cannot read."""
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str):
            raise ValueError(f"Context limit must be a string, got {type(v).__name__}")
        parse_context_limit(v)
        return v.strip()

    def context_limit(self) -> ContextLimit:
        """Return the parsed limit."""
        return parse_context_limit(self.limit)


class Settings(BaseSettings):
    """Orchestrator settings loaded from environment variables.

    Attributes:
        dag: Scheduling policy.
        decomposition: Decomposition trigger and plan limits.
        subphase: Sub-phase spawn limits.
        context: Context window accounting.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    dag: DagConfig = Field(default_factory=DagConfig)
    decomposition: DecompositionConfig = Field(default_factory=DecompositionConfig)
    subphase: SubPhaseConfig = Field(default_factory=SubPhaseConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)

    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_prefix="FORGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the orchestrator.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
