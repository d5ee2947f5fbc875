"""
Tests for logging configuration.
"""

import logging
from pathlib import Path

import pytest

from src.core.observability.logging_config import SUCCESS, parse_level, setup_logging, success


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParseLevel:
    @pytest.mark.parametrize("name,expected", [
        ("DEBUG", logging.DEBUG),
        ("info", logging.INFO),
        ("WARN", logging.WARNING),
        ("warning", logging.WARNING),
        ("SUCCESS", SUCCESS),
        ("ERROR", logging.ERROR),
    ])
    def test_names(self, name, expected):
        assert parse_level(name) == expected

    def test_unknown_falls_back(self):
        assert parse_level("LOUD") == logging.INFO
        assert parse_level(None, default=logging.ERROR) == logging.ERROR


class TestLevels:
    def test_success_between_info_and_warning(self):
        assert logging.INFO < SUCCESS < logging.WARNING
        assert logging.getLevelName(SUCCESS) == "SUCCESS"

    def test_warning_renamed(self):
        assert logging.getLevelName(logging.WARNING) == "WARN"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging(level="ERROR")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].level == logging.ERROR

    def test_file_output(self, tmp_path: Path):
        log_file = tmp_path / "extra.log"
        setup_logging(level="ERROR", log_file=str(log_file), log_file_level="DEBUG")
        log = logging.getLogger("sysmaint.test.setup")
        success(log, "Repositories updated")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "[SUCCESS] Repositories updated" in log_file.read_text()

    def test_idempotent(self):
        setup_logging(level="INFO")
        setup_logging(level="INFO")
        assert len(logging.getLogger().handlers) == 1
