"""
Retention — keep only the most recent N files matching a pattern.

Used for run logs and backup artifacts.  Newest is decided by mtime,
ties broken by name (timestamps are embedded in the file names).
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def prune_old_files(directory: Path, pattern: str, keep: int) -> list[Path]:
    """Delete all but the ``keep`` newest files matching ``pattern``.

    Returns:
        Paths that were removed.
    """
    if keep < 1 or not directory.is_dir():
        return []

    files = [p for p in directory.glob(pattern) if p.is_file() and not p.is_symlink()]
    files.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    removed: list[Path] = []
    for old in files[keep:]:
        try:
            old.unlink()
            removed.append(old)
        except OSError as e:
            logger.warning("Could not remove %s: %s", old, e)
    if removed:
        logger.debug("Pruned %d old file(s) matching %s in %s", len(removed), pattern, directory)
    return removed
