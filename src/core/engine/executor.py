"""
Engine executor — the maintenance pipeline state machine.

    IDLE → VALIDATING → LOCK_ACQUIRED → PREFLIGHTED → RUNNING
         → SUMMARIZING → SUCCESS | ABORTED

Every fatal error, whatever state it is raised in, goes through one
abort path: log the cause and remediation, record ABORTED, release the
lock.  The lock is held in a ``with`` block, so it is also released on
Ctrl-C, SIGTERM and SIGHUP.

Steps run strictly one after another in catalog order.  A non-critical
step that fails is recorded and the run continues; a critical one
aborts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from src.core.config.catalog import get_step
from src.core.config.registry import StepRegistry
from src.core.engine.context import RunContext
from src.core.engine.steps import HANDLERS, StepHandler
from src.core.errors import MaintenanceError, StepExecutionError
from src.core.models.step import StepDefinition, StepOutcome, StepStatus
from src.core.observability.logging_config import success
from src.core.persistence.audit import AuditEntry, AuditWriter
from src.core.services.disk_space import DiskSpaceMonitor, SpaceFreed, space_freed
from src.core.services.lock_manager import LockManager

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    LOCK_ACQUIRED = "lock_acquired"
    PREFLIGHTED = "preflighted"
    RUNNING = "running"
    SUMMARIZING = "summarizing"
    SUCCESS = "success"
    ABORTED = "aborted"


@dataclass
class RunSummary:
    """Result of one pipeline run."""

    run_id: str = ""
    state: PipelineState = PipelineState.IDLE
    dry_run: bool = False
    unattended: bool = False
    profile: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)
    abort_cause: str = ""
    abort_type: str = ""
    remediation: str = ""
    failed_step: str = ""
    duration_ms: int = 0
    freed: SpaceFreed = field(default_factory=SpaceFreed)
    reboot_needed: bool = False
    reboot_reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.SUCCESS

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "unattended": self.unattended,
            "profile": self.profile,
            "abort_cause": self.abort_cause,
            "abort_type": self.abort_type,
            "remediation": self.remediation,
            "failed_step": self.failed_step,
            "duration_ms": self.duration_ms,
            "space_freed_mb": {
                "root": self.freed.root_mb,
                "boot": self.freed.boot_mb,
                "total": self.freed.total_mb,
            },
            "reboot_needed": self.reboot_needed,
            "reboot_reasons": self.reboot_reasons,
            "warnings": self.warnings,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }

    def audit_entry(self) -> AuditEntry:
        return AuditEntry(
            run_id=self.run_id,
            profile=self.profile,
            dry_run=self.dry_run,
            unattended=self.unattended,
            state=self.state.value,
            steps_total=len(self.outcomes),
            steps_succeeded=self.count(StepStatus.SUCCESS),
            steps_warned=self.count(StepStatus.WARNING),
            steps_failed=self.count(StepStatus.ERROR),
            steps_skipped=self.count(StepStatus.SKIPPED),
            duration_ms=self.duration_ms,
            abort_cause=self.abort_cause,
            remediation=self.remediation,
            space_freed_mb=self.freed.total_mb,
            reboot_needed=self.reboot_needed,
            outcomes={o.step_id: o.status.value for o in self.outcomes},
        )


class ExecutionPipeline:
    """Run the enabled catalog steps for one RunContext."""

    def __init__(
        self,
        ctx: RunContext,
        lock_manager: LockManager,
        disk_monitor: DiskSpaceMonitor | None = None,
        audit: AuditWriter | None = None,
        handlers: dict[str, StepHandler] | None = None,
    ):
        self._ctx = ctx
        self._lock = lock_manager
        self._disk = disk_monitor or DiskSpaceMonitor()
        self._audit = audit
        self._handlers = handlers if handlers is not None else HANDLERS
        self._state = PipelineState.IDLE
        self._history: list[PipelineState] = [PipelineState.IDLE]

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def history(self) -> list[PipelineState]:
        """Every state entered, in order."""
        return list(self._history)

    def _enter(self, state: PipelineState) -> None:
        logger.debug("Pipeline: %s → %s", self._state.value, state.value)
        self._state = state
        self._history.append(state)

    # ── Run ──────────────────────────────────────────────────────

    def run(self) -> RunSummary:
        """Execute the pipeline to a terminal state.  Never raises
        ``MaintenanceError``; aborts are reported in the summary."""
        if self._state is not PipelineState.IDLE:
            raise RuntimeError("pipeline already ran")

        ctx = self._ctx
        summary = RunSummary(
            run_id=ctx.run_id,
            dry_run=ctx.dry_run,
            unattended=ctx.unattended,
            profile=ctx.config.profile,
        )
        start = time.monotonic()
        if ctx.dry_run:
            logger.info("Dry-run: mutating commands are logged, not executed")

        try:
            self._enter(PipelineState.VALIDATING)
            registry = StepRegistry(ctx.config)
            registry.validate()
            for warning in registry.warnings():
                logger.warning(warning)
                summary.warnings.append(warning)

            with self._lock.hold():
                self._enter(PipelineState.LOCK_ACQUIRED)

                settings = ctx.settings
                ctx.disk_before = self._disk.check_preflight(
                    settings.min_free_root_gb, settings.min_free_boot_mb,
                )
                summary.warnings.extend(ctx.disk_before.warnings)
                self._enter(PipelineState.PREFLIGHTED)

                self._enter(PipelineState.RUNNING)
                for step_id in ctx.config.enabled_steps():
                    self._run_step(get_step(step_id))

                self._enter(PipelineState.SUMMARIZING)
                self._summarize(summary)
        except MaintenanceError as e:
            self._abort(summary, e)
        except (KeyboardInterrupt, SystemExit):
            self._abort(summary, MaintenanceError(
                "Interrupted", remediation="re-run to complete the remaining steps",
            ))
            self._finish(summary, start)
            raise

        return self._finish(summary, start)

    def _finish(self, summary: RunSummary, start: float) -> RunSummary:
        ctx = self._ctx
        summary.outcomes = list(ctx.outcomes)
        summary.reboot_needed = ctx.reboot_needed
        summary.reboot_reasons = list(ctx.reboot_reasons)
        summary.duration_ms = int((time.monotonic() - start) * 1000)

        if self._state is PipelineState.SUMMARIZING:
            self._enter(PipelineState.SUCCESS)
            success(logger, "Maintenance completed (%s)", ctx.run_id)
        summary.state = self._state

        if self._audit is not None:
            self._audit.write(summary.audit_entry())
        return summary

    def _run_step(self, step: StepDefinition) -> None:
        ctx = self._ctx
        handler = self._handlers.get(step.id)
        logger.info("── %s ──", step.label)

        if handler is None:
            ctx.record(StepOutcome.skipped(step.id, "no handler"))
            return

        started = datetime.now(UTC).isoformat()
        try:
            outcome = handler(ctx, step)
        except StepExecutionError as e:
            if step.critical:
                ctx.record(StepOutcome.error(step.id, e.message, started_at=started))
                raise
            logger.error("%s: %s", step.label, e.message)
            outcome = StepOutcome.error(step.id, e.message)
        except MaintenanceError as e:
            ctx.record(StepOutcome.error(step.id, e.message, started_at=started))
            raise

        outcome.started_at = started
        ctx.record(outcome)
        logger.debug("%s → %s", step.id, outcome.status.value)

    def _summarize(self, summary: RunSummary) -> None:
        ctx = self._ctx
        if ctx.disk_before is None:
            return
        try:
            after = self._disk.snapshot()
        except OSError as e:
            logger.warning("Cannot measure freed space: %s", e)
            return
        summary.freed = space_freed(ctx.disk_before, after)
        if summary.freed.total_mb:
            logger.info("Space freed: %d MB", summary.freed.total_mb)

    def _abort(self, summary: RunSummary, error: MaintenanceError) -> None:
        """The single abort path.  The lock is already released by ``hold``."""
        summary.abort_cause = error.message
        summary.abort_type = error.__class__.__name__
        summary.remediation = error.remediation
        summary.failed_step = getattr(error, "step_id", "")
        logger.error("Aborted: %s", error.message)
        if error.remediation:
            logger.error("Remediation: %s", error.remediation)
        self._enter(PipelineState.ABORTED)
