"""
Run context — everything one maintenance run shares, passed explicitly.

There are no module-level singletons: the pipeline builds one
``RunContext`` per run and hands it to every step handler.  Handlers
read configuration from it, issue commands through it, and record
session facts on it (upgrade performed, reboot needed).

The configuration held here is a private deep copy taken when the run
starts, so edits to the caller's object cannot change a running
pipeline.
"""

from __future__ import annotations

import itertools
import logging
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import click

from src.adapters.registry import AdapterRegistry
from src.core.models.action import Action, Receipt
from src.core.models.config import Configuration
from src.core.models.step import StepOutcome
from src.core.services.backup import APT_CONFIG_PATHS
from src.core.services.disk_space import DiskSnapshot
from src.core.services.reboot import REBOOT_REQUIRED_FILE

logger = logging.getLogger(__name__)


# ── Operator prompts ────────────────────────────────────────────


class Prompter:
    """Operator interaction.  The base class answers for nobody.

    Unattended runs use it directly: every question is declined and
    every token request gets an empty answer, so each gate fails closed.
    """

    interactive = False

    def confirm(self, question: str, default: bool = False) -> bool:
        logger.info("%s → no (unattended)", question)
        return False

    def ask(self, question: str) -> str:
        logger.info("%s → (no answer, unattended)", question)
        return ""

    def pause(self, message: str) -> None:
        """Show a message the operator should acknowledge."""


class ClickPrompter(Prompter):
    """Terminal prompts through click."""

    interactive = True

    def confirm(self, question: str, default: bool = False) -> bool:
        return click.confirm(question, default=default)

    def ask(self, question: str) -> str:
        return click.prompt(question, default="", show_default=False)

    def pause(self, message: str) -> None:
        click.pause(message)


# ── System paths ────────────────────────────────────────────────


@dataclass(frozen=True)
class SystemPaths:
    """Host files the steps inspect.  Overridden in tests."""

    reboot_required: Path = Path(REBOOT_REQUIRED_FILE)
    timeshift_config: Path = Path("/etc/timeshift/timeshift.json")
    os_release: Path = Path("/etc/os-release")
    dev_dir: Path = Path("/dev")
    apt_sources: tuple[Path, ...] = APT_CONFIG_PATHS


# ── Context ─────────────────────────────────────────────────────


@dataclass
class RunContext:
    """State threaded through one pipeline run."""

    config: Configuration
    registry: AdapterRegistry
    prompter: Prompter = field(default_factory=Prompter)
    unattended: bool = False
    dry_run: bool = False
    no_backup: bool = False
    run_id: str = field(default_factory=lambda: f"run-{uuid.uuid4().hex[:8]}")
    paths: SystemPaths = field(default_factory=SystemPaths)
    which: Callable[[str], str | None] = shutil.which

    # Session facts, filled in while steps run
    disk_before: DiskSnapshot | None = None
    upgrade_performed: bool = False
    reboot_needed: bool = False
    reboot_reasons: list[str] = field(default_factory=list)
    outcomes: list[StepOutcome] = field(default_factory=list)

    _counter: itertools.count = field(default_factory=itertools.count, repr=False)

    def __post_init__(self) -> None:
        self.config = self.config.model_copy(deep=True)

    @property
    def settings(self):
        return self.config.settings

    def has_tool(self, name: str) -> bool:
        return self.which(name) is not None

    def run(
        self,
        step_id: str,
        argv: list[str],
        mutating: bool = True,
        timeout: int = 1800,
        env: dict[str, str] | None = None,
    ) -> Receipt:
        """Build an Action for ``argv`` and execute it through the registry."""
        action = Action(
            id=f"{step_id}:{argv[0]}:{next(self._counter)}",
            argv=argv,
            step_id=step_id,
            mutating=mutating,
            timeout=timeout,
            env=env or {},
        )
        receipt = self.registry.execute_action(action)
        if receipt.failed:
            logger.warning("%s failed: %s", action.command_line, receipt.error)
        return receipt

    def probe(self, step_id: str, argv: list[str], timeout: int = 300) -> Receipt:
        """Run a read-only command; it executes even in dry-run mode."""
        return self.run(step_id, argv, mutating=False, timeout=timeout)

    def record(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def outcome_for(self, step_id: str) -> StepOutcome | None:
        for outcome in self.outcomes:
            if outcome.step_id == step_id:
                return outcome
        return None
