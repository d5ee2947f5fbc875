"""
Action and Receipt models — the command execution contract.

Actions represent external commands a step wants to run (apt, dpkg,
timeshift, ...).  Receipts represent results.  Adapters take Actions and
return Receipts; they never raise.  Every step outcome is derived from
receipts, never from parsing display strings.
"""

from __future__ import annotations

import shlex
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """An external command requested by a step.

    ``mutating`` marks commands that change package or filesystem state.
    Dry-run mode logs mutating actions instead of executing them;
    read-only probes (``apt list``, ``dpkg -l``, simulations) still run.
    """

    id: str                         # unique action identifier
    argv: list[str]                 # command, never passed through a shell
    adapter: str = "shell"          # which adapter handles this
    step_id: str = ""               # catalog step that issued it
    mutating: bool = True
    timeout: int = 1800             # seconds
    env: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def command_line(self) -> str:
        """Human-readable, shell-quoted rendering of ``argv``."""
        return shlex.join(self.argv)


class Receipt(BaseModel):
    """Result of an adapter execution.

    Receipts capture the full outcome of an action.  The adapter
    NEVER raises exceptions — failures are captured here.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    return_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def dry_run(self) -> bool:
        """Whether the action was only logged (dry-run)."""
        return bool(self.metadata.get("dry_run"))

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
