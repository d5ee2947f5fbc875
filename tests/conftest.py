"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from src.adapters import AdapterRegistry, MockAdapter
from src.core.config.loader import default_configuration
from src.core.engine.context import RunContext, SystemPaths
from src.core.models.config import Configuration


@pytest.fixture
def system_paths(tmp_path: Path) -> SystemPaths:
    """Host files redirected into a temp directory."""
    etc = tmp_path / "etc"
    (etc / "apt" / "sources.list.d").mkdir(parents=True)
    (etc / "apt" / "sources.list").write_text("deb http://deb.debian.org/debian bookworm main\n")
    (etc / "os-release").write_text('ID=debian\nPRETTY_NAME="Debian GNU/Linux 12"\n')
    (etc / "timeshift.json").write_text('{"backup_device_uuid" : "1234-abcd"}\n')
    (tmp_path / "dev").mkdir()
    return SystemPaths(
        reboot_required=tmp_path / "run" / "reboot-required",
        timeshift_config=etc / "timeshift.json",
        os_release=etc / "os-release",
        dev_dir=tmp_path / "dev",
        apt_sources=(etc / "apt" / "sources.list", etc / "apt" / "sources.list.d"),
    )


@pytest.fixture
def config(tmp_path: Path) -> Configuration:
    """Default configuration with every path under the temp directory."""
    cfg = default_configuration()
    cfg.settings.min_free_root_gb = 0
    cfg.settings.min_free_boot_mb = 0
    cfg.settings.log_dir = str(tmp_path / "log")
    cfg.settings.backup_dir = str(tmp_path / "backups")
    cfg.settings.lock_file = str(tmp_path / "run" / "sysmaint.lock")
    return cfg


@pytest.fixture
def mock() -> MockAdapter:
    return MockAdapter()


def _registry(mock: MockAdapter, dry_run: bool = False) -> AdapterRegistry:
    registry = AdapterRegistry(dry_run=dry_run)
    registry.set_mock_mode(True, mock)
    return registry


@pytest.fixture
def make_context(config, mock, system_paths):
    """Factory for a RunContext wired to the mock adapter.

    Every tool is reported as installed unless listed in ``missing``.
    """

    def _make(dry_run=False, unattended=True, prompter=None, missing=(), **kwargs):
        ctx_kwargs = dict(
            config=kwargs.pop("cfg", config),
            registry=_registry(mock, dry_run=dry_run),
            unattended=unattended,
            dry_run=dry_run,
            paths=system_paths,
            which=lambda name: None if name in missing else f"/usr/bin/{name}",
        )
        if prompter is not None:
            ctx_kwargs["prompter"] = prompter
        ctx_kwargs.update(kwargs)
        return RunContext(**ctx_kwargs)

    return _make


class ScriptedPrompter:
    """Interactive prompter answering from fixed lists."""

    interactive = True

    def __init__(self, confirms=(), answers=()):
        self._confirms = list(confirms)
        self._answers = list(answers)
        self.questions: list[str] = []

    def confirm(self, question: str, default: bool = False) -> bool:
        self.questions.append(question)
        return self._confirms.pop(0) if self._confirms else default

    def ask(self, question: str) -> str:
        self.questions.append(question)
        return self._answers.pop(0) if self._answers else ""

    def pause(self, message: str) -> None:
        self.questions.append(message)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A sysmaint.yml with every path under the temp directory."""
    path = tmp_path / "sysmaint.yml"
    path.write_text(textwrap.dedent(f"""\
        profile: custom
        steps:
          snapshot: false
          check_firmware: false
          check_smart: false
        settings:
          min_free_root_gb: 0
          min_free_boot_mb: 0
          log_dir: {tmp_path / "log"}
          backup_dir: {tmp_path / "backups"}
          lock_file: {tmp_path / "run" / "sysmaint.lock"}
    """))
    return path


@pytest.fixture
def scripted():
    """The ScriptedPrompter class, for tests that answer prompts."""
    return ScriptedPrompter
