"""
Step registry — enabled/locked state of the catalog for one Configuration.

All interactive mutation goes through here so the lock invariant holds
in one place: a locked step's enabled value is never changed by
toggling, select-all, or profile application.  Only a direct edit of
the configuration file can change it.
"""

from __future__ import annotations

import logging

from src.core.config.catalog import PROFILES, STEP_CATALOG, STEP_IDS, get_step
from src.core.errors import LockedStepError, ValidationError
from src.core.models.config import Configuration

logger = logging.getLogger(__name__)


class StepRegistry:
    """Mutable view over a Configuration's step states."""

    def __init__(self, config: Configuration):
        self._config = config
        # Materialize defaults so every catalog step has an explicit value
        for step in STEP_CATALOG:
            self._config.steps.setdefault(step.id, step.default_enabled)

    @property
    def config(self) -> Configuration:
        return self._config

    def is_enabled(self, step_id: str) -> bool:
        get_step(step_id)
        return self._config.is_enabled(step_id)

    def is_locked(self, step_id: str) -> bool:
        get_step(step_id)
        return self._config.is_locked(step_id)

    def enabled_steps(self) -> list[str]:
        return self._config.enabled_steps()

    # ── Mutation ─────────────────────────────────────────────────

    def apply(self, step_id: str, enabled: bool) -> None:
        """Set one step's enabled state.

        Raises:
            LockedStepError: The step is locked.
            KeyError: Unknown step id.
        """
        get_step(step_id)
        if self._config.is_locked(step_id):
            raise LockedStepError(step_id)
        self._config.steps[step_id] = enabled
        logger.debug("Step %s → %s", step_id, "on" if enabled else "off")

    def toggle(self, step_id: str) -> bool:
        """Flip one step.  Returns the new value."""
        new_value = not self.is_enabled(step_id)
        self.apply(step_id, new_value)
        return new_value

    def select_all(self, enable: bool) -> list[str]:
        """Enable or disable every unlocked step.

        Locked steps keep their current value even though the caller
        asked for "all".

        Returns:
            Ids of the locked steps that were left untouched.
        """
        preserved: list[str] = []
        for step_id in STEP_IDS:
            if self._config.is_locked(step_id):
                preserved.append(step_id)
                continue
            self._config.steps[step_id] = enable
        if preserved:
            logger.info("select-all left locked steps unchanged: %s", ", ".join(preserved))
        return preserved

    def toggle_all(self) -> bool:
        """Editor shortcut: enable all unless every unlocked step is already on.

        Returns:
            The value that was applied.
        """
        unlocked = [sid for sid in STEP_IDS if not self._config.is_locked(sid)]
        enable = not all(self._config.is_enabled(sid) for sid in unlocked)
        self.select_all(enable)
        return enable

    def apply_profile(self, name: str) -> None:
        """Replace step states with a named profile bundle.

        ``custom`` keeps the configuration as loaded.  Locked steps
        keep their current value.
        """
        if name == "custom":
            self._config.profile = "custom"
            return
        try:
            bundle = PROFILES[name]
        except KeyError:
            available = ", ".join([*PROFILES, "custom"])
            raise ValueError(f"Unknown profile '{name}'. Available: {available}") from None

        for step_id, enabled in bundle.items():
            if self._config.is_locked(step_id):
                continue
            self._config.steps[step_id] = enabled
        self._config.profile = name  # type: ignore[assignment]
        logger.info("Profile applied: %s", name)

    def set_lock(self, step_id: str, locked: bool) -> None:
        """Lock or unlock a step (configuration-edit path only)."""
        get_step(step_id)
        self._config.locks[step_id] = locked

    # ── Validation ───────────────────────────────────────────────

    def validate(self) -> None:
        """Enforce declared cross-step dependencies.

        A violation blocks the run; nothing is auto-fixed.

        Raises:
            ValidationError: One or more dependencies are not satisfied.
        """
        violations: list[str] = []
        missing: set[str] = set()
        for step in STEP_CATALOG:
            if not self._config.is_enabled(step.id):
                continue
            for dep in sorted(step.depends_on):
                if not self._config.is_enabled(dep):
                    missing.add(dep)
                    violations.append(
                        f"'{step.id}' is enabled but requires '{dep}', which is disabled"
                    )
        if violations:
            raise ValidationError(
                violations,
                remediation=(
                    f"enable {', '.join(sorted(missing))} "
                    "or disable the steps that depend on it"
                ),
            )

    def warnings(self) -> list[str]:
        """Soft advisories that do not block the run."""
        result: list[str] = []
        if self._config.is_enabled("cleanup_kernels") and not self._config.is_enabled("snapshot"):
            result.append("Kernel cleanup without a system snapshot may be risky")
        if self._config.is_enabled("upgrade_system") and not (
            self._config.is_enabled("snapshot") or self._config.is_enabled("backup_tar")
        ):
            result.append("Upgrading without a snapshot or configuration backup")
        return result


def validate(config: Configuration) -> None:
    """Module-level shortcut for ``StepRegistry(config).validate()``."""
    StepRegistry(config).validate()
