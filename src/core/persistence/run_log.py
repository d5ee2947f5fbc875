"""
Run log — one leveled text file per run, retention-bounded.

``RunLog`` attaches a file handler to the root logger for the duration
of a run, so every module's log records land in
``<log_dir>/sys-update-YYYYMMDD_HHMMSS.log``.  Older files beyond the
retention count are pruned when the log opens.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

from src.core.observability.logging_config import DATEFMT_RUN_LOG, FMT_RUN_LOG
from src.core.persistence.retention import prune_old_files

logger = logging.getLogger(__name__)

RUN_LOG_PREFIX = "sys-update-"
RUN_LOG_PATTERN = f"{RUN_LOG_PREFIX}*.log"


def run_log_name(when: datetime | None = None) -> str:
    stamp = (when or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{RUN_LOG_PREFIX}{stamp}.log"


class RunLog:
    """Per-run log file attached to the root logger.

    Usage::

        with RunLog(log_dir, keep=5) as run_log:
            ...   # everything logged here also goes to run_log.path
    """

    def __init__(
        self,
        log_dir: Path,
        keep: int = 5,
        level: int = logging.INFO,
        when: datetime | None = None,
    ):
        self._dir = Path(log_dir)
        self._keep = keep
        self._level = level
        self._path = self._dir / run_log_name(when)
        self._handler: logging.FileHandler | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def active(self) -> bool:
        return self._handler is not None

    def open(self) -> None:
        """Create the file, attach the handler and prune old logs.

        A log directory that cannot be created leaves the run without a
        file log; console logging continues.
        """
        if self._handler is not None:
            return
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(self._path, encoding="utf-8")
        except OSError as e:
            logger.warning("Run log disabled, cannot write %s: %s", self._path, e)
            return

        try:
            os.chmod(self._path, 0o640)
        except OSError as e:
            logger.debug("Cannot chmod %s: %s", self._path, e)
        handler.setLevel(self._level)
        handler.setFormatter(logging.Formatter(FMT_RUN_LOG, datefmt=DATEFMT_RUN_LOG))

        root = logging.getLogger()
        root.addHandler(handler)
        if root.level > self._level:
            root.setLevel(self._level)
        self._handler = handler

        pruned = prune_old_files(self._dir, RUN_LOG_PATTERN, self._keep)
        if pruned:
            logger.debug("Pruned %d old run log(s)", len(pruned))

    def close(self) -> None:
        if self._handler is None:
            return
        logging.getLogger().removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> RunLog:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
