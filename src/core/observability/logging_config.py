"""
Logging configuration — central setup for all entrypoints.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  SYSMAINT_LOG_LEVEL env var  >  INFO (default)

Optional extra file output via SYSMAINT_LOG_FILE / SYSMAINT_LOG_FILE_LEVEL.
The per-run log file is attached separately by ``RunLog``.

Run logs use four levels: INFO, WARN, ERROR and SUCCESS.  SUCCESS is a
custom level between INFO and WARNING; WARNING is renamed WARN.
"""

from __future__ import annotations

import logging
import sys

SUCCESS = 25

logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")

# ── Format strings ──────────────────────────────────────────────

# Default console output: message only
_FMT_MINIMAL = "%(message)s"

# DEBUG level: full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# Run log and file output: leveled, timestamped
FMT_RUN_LOG = "[%(asctime)s] [%(levelname)s] %(message)s"
DATEFMT_RUN_LOG = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def success(logger: logging.Logger, msg: str, *args) -> None:
    """Log ``msg`` at the SUCCESS level."""
    logger.log(SUCCESS, msg, *args)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, SUCCESS, WARN(ING), ERROR).
        log_file: Optional path to an extra log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
        quiet_third_party: If True, keep noisy third-party loggers at WARNING
            unless we're at DEBUG level.
    """
    numeric_level = parse_level(level)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(FMT_RUN_LOG, datefmt=DATEFMT_RUN_LOG))
        root.addHandler(fh)

    root.setLevel(effective_level)

    # ── Third-party noise control ───────────────────────────────
    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def parse_level(level: str | None, default: int = logging.INFO) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return default
    name = level.upper()
    if name == "WARN":
        return logging.WARNING
    if name == "SUCCESS":
        return SUCCESS
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return default
    return numeric
