"""
Error taxonomy — every failure the orchestrator can surface.

Fatal errors flow through the pipeline's single abort path, which logs
the cause, releases the lock and exits non-zero.  Each error carries an
optional ``remediation`` string telling the operator what to do next.
"""

from __future__ import annotations


class MaintenanceError(Exception):
    """Base class for all orchestrator errors."""

    remediation: str = ""

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "remediation": self.remediation,
        }


class ConfigError(MaintenanceError):
    """Configuration file is unreadable, unsafe, or fails schema validation."""

    remediation = "fix or delete the configuration file"


class ValidationError(MaintenanceError):
    """Illegal step combination — fatal, raised before the run starts."""

    remediation = "enable the required steps or disable the dependent ones"

    def __init__(self, violations: list[str], remediation: str | None = None):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations), remediation)


class LockedStepError(MaintenanceError):
    """Attempt to toggle a step whose state is locked."""

    remediation = "edit the configuration file to change a locked step"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' is locked and cannot be toggled")


class ConcurrencyError(MaintenanceError):
    """Another live process holds the maintenance (or package-manager) lock."""

    remediation = "wait for the other run to finish or remove stale lock"

    def __init__(
        self,
        message: str,
        holder_pid: int | None = None,
        remediation: str | None = None,
    ):
        self.holder_pid = holder_pid
        super().__init__(message, remediation)


class DiskSpaceError(MaintenanceError):
    """Free space on the root filesystem is below the fatal threshold."""

    remediation = "increase free space on / and restart the run"


class RiskAbort(MaintenanceError):
    """Mass-removal heuristic triggered and was not overridden."""

    remediation = "review 'apt full-upgrade -s' output and upgrade manually"


class SnapshotFailure(MaintenanceError):
    """The safety snapshot tool failed."""

    remediation = "check the snapshot tool configuration (timeshift --list)"


class StepExecutionError(MaintenanceError):
    """An external tool invocation failed for a critical step."""

    def __init__(self, step_id: str, message: str, remediation: str | None = None):
        self.step_id = step_id
        super().__init__(message, remediation)
