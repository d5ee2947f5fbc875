"""
Configuration model — persisted user preferences for a maintenance run.

The on-disk file is plain YAML parsed with ``yaml.safe_load`` and then
validated here.  ``extra="forbid"`` makes the schema an allow-list:
unknown keys are rejected instead of silently carried as trusted state.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROFILE_NAMES = ("server", "desktop", "developer", "minimal", "custom")

ProfileName = Literal["server", "desktop", "developer", "minimal", "custom"]


class Settings(BaseModel):
    """Tunable thresholds and paths."""

    model_config = ConfigDict(extra="forbid")

    keep_kernels: int = Field(default=3, ge=1)
    min_free_root_gb: int = Field(default=5, ge=0)
    min_free_boot_mb: int = Field(default=200, ge=0)
    max_removals_allowed: int = Field(default=0, ge=0)
    apt_clean_mode: Literal["autoclean", "clean"] = "autoclean"
    journal_days: int = Field(default=7, ge=1)
    ask_snapshot: bool = True
    retention: int = Field(default=5, ge=1)

    log_dir: str = "/var/log/sysmaint"
    backup_dir: str = "/var/backups/sysmaint"
    lock_file: str = "/var/run/sysmaint.lock"


class Configuration(BaseModel):
    """Step/notifier states plus profile, locale and theme selection.

    ``steps`` maps step id → enabled, ``locks`` maps step id → locked.
    Missing entries fall back to catalog defaults (unlocked).
    """

    model_config = ConfigDict(extra="forbid")

    profile: ProfileName = "custom"
    language: str = Field(default="en", pattern=r"^[a-z]{2}$")
    theme: str = Field(default="default", pattern=r"^[A-Za-z0-9_-]{1,32}$")

    steps: dict[str, bool] = Field(default_factory=dict)
    locks: dict[str, bool] = Field(default_factory=dict)

    notifiers: dict[str, bool] = Field(default_factory=dict)
    notifier_locks: dict[str, bool] = Field(default_factory=dict)

    settings: Settings = Field(default_factory=Settings)

    @field_validator("steps", "locks")
    @classmethod
    def _known_steps(cls, value: dict[str, bool]) -> dict[str, bool]:
        from src.core.config.catalog import STEP_IDS

        unknown = sorted(set(value) - set(STEP_IDS))
        if unknown:
            raise ValueError(f"unknown step id(s): {', '.join(unknown)}")
        return value

    @field_validator("notifiers", "notifier_locks")
    @classmethod
    def _notifier_codes(cls, value: dict[str, bool]) -> dict[str, bool]:
        for code in value:
            if not code.isidentifier():
                raise ValueError(f"invalid notifier code: {code!r}")
        return value

    # ── Accessors ────────────────────────────────────────────────

    def is_enabled(self, step_id: str) -> bool:
        """Whether a step is enabled (catalog default when unset)."""
        if step_id in self.steps:
            return self.steps[step_id]
        from src.core.config.catalog import get_step

        return get_step(step_id).default_enabled

    def is_locked(self, step_id: str) -> bool:
        return self.locks.get(step_id, False)

    def enabled_steps(self) -> list[str]:
        """Enabled step ids in catalog order."""
        from src.core.config.catalog import STEP_IDS

        return [sid for sid in STEP_IDS if self.is_enabled(sid)]
