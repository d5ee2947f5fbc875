"""
Run history ledger — append-only NDJSON, one entry per run.

Complements the per-run text logs: those are pruned to the most recent
few, the ledger keeps a compact record of every run (state, abort
cause, per-status step counts, space freed, reboot flag).
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "runs.ndjson"


class AuditEntry(BaseModel):
    """A single run history entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    profile: str = ""
    dry_run: bool = False
    unattended: bool = False

    # Results
    state: str = ""                 # success, aborted
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_warned: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    duration_ms: int = 0

    # Abort details (if any)
    abort_cause: str = ""
    remediation: str = ""

    space_freed_mb: int = 0
    reboot_needed: bool = False

    # Per-step statuses, keyed by step id
    outcomes: dict[str, str] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only run ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None, log_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif log_dir is not None:
            self._path = Path(log_dir) / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry.  A ledger that cannot be written is logged, not fatal."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run history entry written: %s", entry.run_id)
        except OSError as e:
            logger.error("Failed to write run history entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first.  Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, SchemaError) as e:
                        logger.warning("Skipping corrupt history entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run history: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
