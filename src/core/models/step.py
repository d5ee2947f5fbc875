"""
Step models — catalog definitions and per-run outcomes.

A ``StepDefinition`` is a fixed catalog entry: identity, order,
criticality and declared dependencies.  Whether a step is enabled or
locked lives in the Configuration, not here.

A ``StepOutcome`` is the terminal status a step reports for one run.
Status is set directly by the step handler as a ``StepStatus`` value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepStatus(str, Enum):
    """Terminal status of a step in one run."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    SKIPPED = "skipped"


class StepDefinition(BaseModel):
    """One discrete, independently enablable maintenance operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    order: int
    label: str
    description: str = ""
    critical: bool = False
    depends_on: frozenset[str] = Field(default_factory=frozenset)
    default_enabled: bool = True
    tool: str | None = None         # binary the step needs
    tool_package: str | None = None  # apt package providing it


class StepOutcome(BaseModel):
    """Terminal outcome of one step in one run."""

    step_id: str
    status: StepStatus
    message: str = ""
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    details: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (StepStatus.SUCCESS, StepStatus.WARNING)

    @classmethod
    def success(cls, step_id: str, message: str = "", **kwargs) -> StepOutcome:
        return cls(step_id=step_id, status=StepStatus.SUCCESS, message=message, **kwargs)

    @classmethod
    def error(cls, step_id: str, message: str = "", **kwargs) -> StepOutcome:
        return cls(step_id=step_id, status=StepStatus.ERROR, message=message, **kwargs)

    @classmethod
    def warning(cls, step_id: str, message: str = "", **kwargs) -> StepOutcome:
        return cls(step_id=step_id, status=StepStatus.WARNING, message=message, **kwargs)

    @classmethod
    def skipped(cls, step_id: str, message: str = "", **kwargs) -> StepOutcome:
        return cls(step_id=step_id, status=StepStatus.SKIPPED, message=message, **kwargs)
