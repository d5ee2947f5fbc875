"""
Backup artifacts — APT configuration archive and package selection list.

One ``backup_<ts>.tar.gz`` plus one ``packages_<ts>.list`` per run, each
kind retention-bounded to the most recent N.
"""

from __future__ import annotations

import logging
import os
import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from src.core.persistence.retention import prune_old_files

logger = logging.getLogger(__name__)

APT_CONFIG_PATHS = (
    Path("/etc/apt/sources.list"),
    Path("/etc/apt/sources.list.d"),
    Path("/etc/apt/trusted.gpg.d"),
)

ARCHIVE_PATTERN = "backup_*.tar.gz"
PACKAGE_LIST_PATTERN = "packages_*.list"


@dataclass
class BackupResult:
    archive: Path
    package_list: Path | None
    members: int
    pruned: list[Path]


def backup_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def create_backup(
    backup_dir: Path,
    package_selections: str | None,
    sources: tuple[Path, ...] = APT_CONFIG_PATHS,
    keep: int = 5,
    timestamp: str | None = None,
) -> BackupResult:
    """Write the archive and package list, then apply retention.

    Missing source paths are skipped.  Raises OSError/tarfile.TarError
    when the archive itself cannot be written.
    """
    ts = timestamp or backup_timestamp()
    backup_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(backup_dir, 0o700)

    archive = backup_dir / f"backup_{ts}.tar.gz"
    members = 0
    with tarfile.open(archive, "w:gz") as tar:
        for src in sources:
            if not src.exists():
                logger.debug("Backup source missing, skipping: %s", src)
                continue
            tar.add(str(src), arcname=str(src).lstrip("/"))
            members += 1
    os.chmod(archive, 0o600)
    logger.info("Backup archive created: %s (%d source paths)", archive, members)

    package_list: Path | None = None
    if package_selections is not None:
        package_list = backup_dir / f"packages_{ts}.list"
        package_list.write_text(package_selections, encoding="utf-8")
        os.chmod(package_list, 0o600)

    pruned = prune_old_files(backup_dir, ARCHIVE_PATTERN, keep)
    pruned += prune_old_files(backup_dir, PACKAGE_LIST_PATTERN, keep)

    return BackupResult(
        archive=archive,
        package_list=package_list,
        members=members,
        pruned=pruned,
    )
