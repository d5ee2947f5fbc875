"""
Disk space monitor — preflight thresholds and before/after accounting.

Runs before any destructive step.  Root below the fatal threshold
aborts the run; /boot below its threshold is only a warning (old
kernels there are exactly what the run may clean up).  Never retried:
the operator frees space and restarts.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NamedTuple

from src.core.errors import DiskSpaceError

logger = logging.getLogger(__name__)

_GB = 1024 ** 3
_MB = 1024 ** 2


class Usage(NamedTuple):
    total: int
    used: int
    free: int


UsageProbe = Callable[[str], Usage]


def _disk_usage(path: str) -> Usage:
    total, used, free = shutil.disk_usage(path)
    return Usage(total, used, free)


@dataclass
class DiskSnapshot:
    """Used/free bytes per mount at one point in time."""

    root_used: int
    root_free: int
    boot_used: int | None = None
    boot_free: int | None = None
    warnings: tuple[str, ...] = ()

    @property
    def root_free_gb(self) -> float:
        return self.root_free / _GB

    @property
    def boot_free_mb(self) -> float | None:
        return None if self.boot_free is None else self.boot_free / _MB

    def to_dict(self) -> dict:
        return {
            "root_used": self.root_used,
            "root_free": self.root_free,
            "boot_used": self.boot_used,
            "boot_free": self.boot_free,
            "warnings": list(self.warnings),
        }


@dataclass
class SpaceFreed:
    root_mb: int = 0
    boot_mb: int = 0

    @property
    def total_mb(self) -> int:
        return self.root_mb + self.boot_mb


class DiskSpaceMonitor:
    """Read free/used space on / and (if separately mounted) /boot."""

    def __init__(
        self,
        root: str = "/",
        boot: str = "/boot",
        probe: UsageProbe | None = None,
        is_mount: Callable[[str], bool] | None = None,
    ):
        self._root = root
        self._boot = boot
        self._probe = probe or _disk_usage
        self._is_mount = is_mount or os.path.ismount

    def _boot_usage(self) -> Usage | None:
        if not Path(self._boot).exists() or not self._is_mount(self._boot):
            return None
        try:
            return self._probe(self._boot)
        except OSError as e:
            logger.debug("Cannot read %s usage: %s", self._boot, e)
            return None

    def snapshot(self) -> DiskSnapshot:
        """Current usage without threshold checks."""
        root = self._probe(self._root)
        boot = self._boot_usage()
        return DiskSnapshot(
            root_used=root.used,
            root_free=root.free,
            boot_used=boot.used if boot else None,
            boot_free=boot.free if boot else None,
        )

    def check_preflight(self, min_root_gb: int, min_boot_mb: int) -> DiskSnapshot:
        """Verify free space before any destructive step.

        Raises:
            DiskSpaceError: Free space on root is below ``min_root_gb``.
        """
        snap = self.snapshot()
        logger.info("Free space on %s: %.1f GB", self._root, snap.root_free_gb)

        if snap.root_free < min_root_gb * _GB:
            raise DiskSpaceError(
                f"Insufficient free space on {self._root}: "
                f"{snap.root_free_gb:.1f} GB available, {min_root_gb} GB required",
                remediation=(
                    f"increase free space on {self._root} to at least {min_root_gb} GB "
                    "(e.g. 'apt clean', remove large files) and restart the run"
                ),
            )

        warnings: list[str] = []
        boot_mb = snap.boot_free_mb
        if boot_mb is not None:
            logger.info("Free space on %s: %d MB", self._boot, int(boot_mb))
            if snap.boot_free < min_boot_mb * _MB:
                msg = (
                    f"Low free space on {self._boot}: {int(boot_mb)} MB "
                    f"(recommended {min_boot_mb} MB); kernel cleanup can help"
                )
                logger.warning(msg)
                warnings.append(msg)

        snap.warnings = tuple(warnings)
        return snap


def space_freed(before: DiskSnapshot, after: DiskSnapshot) -> SpaceFreed:
    """Space released between two snapshots, clamped at zero per mount."""
    root_mb = max(0, (before.root_used - after.root_used) // _MB)
    boot_mb = 0
    if before.boot_used is not None and after.boot_used is not None:
        boot_mb = max(0, (before.boot_used - after.boot_used) // _MB)
    return SpaceFreed(root_mb=int(root_mb), boot_mb=int(boot_mb))
