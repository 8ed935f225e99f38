"""Runtime status of a phase in the scheduler.

Each status carries the data that belongs to it, so a Running phase always
has a start time and a Failed phase always has an error.
"""

import time
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Status(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return False

    @property
    def is_success(self) -> bool:
        return False


class Pending(_Status):
    kind: Literal["pending"] = "pending"


class Ready(_Status):
    kind: Literal["ready"] = "ready"


class Running(_Status):
    kind: Literal["running"] = "running"
    started_at: float = Field(default_factory=time.time)


class Completed(_Status):
    kind: Literal["completed"] = "completed"
    iterations: int = 0

    @property
    def is_terminal(self) -> bool:
        return True

    @property
    def is_success(self) -> bool:
        return True


class Failed(_Status):
    kind: Literal["failed"] = "failed"
    error: str

    @property
    def is_terminal(self) -> bool:
        return True


class Skipped(_Status):
    kind: Literal["skipped"] = "skipped"

    @property
    def is_terminal(self) -> bool:
        return True


PhaseStatus = Annotated[
    Pending | Ready | Running | Completed | Failed | Skipped,
    Field(discriminator="kind"),
]
