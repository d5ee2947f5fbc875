"""
Lock manager — at most one maintenance run per system.

The lock is a single file holding the owner's PID.  Exclusivity comes
from ``fcntl.flock`` on that file, so acquisition is atomic (no
check-then-create window) and the kernel drops the lock when the
holder dies.  The PID inside is what the operator sees and what is
used to detect and reclaim stale files.

Usage:

    manager = LockManager(Path("/var/run/sysmaint.lock"))
    with manager.hold() as token:
        ...   # released on return, exception, SIGTERM or Ctrl-C
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import signal
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterator

from src.core.errors import ConcurrencyError

logger = logging.getLogger(__name__)

# Package-manager lock files checked after our own lock is held
PACKAGE_MANAGER_LOCKS = (
    Path("/var/lib/dpkg/lock-frontend"),
    Path("/var/lib/dpkg/lock"),
    Path("/var/lib/apt/lists/lock"),
)

_MAX_ATTEMPTS = 3


def pid_alive(pid: int) -> bool:
    """Whether a process with this PID exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


@dataclass
class LockToken:
    """Proof of ownership returned by ``acquire``."""

    path: Path
    pid: int
    acquired_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    _fd: int | None = field(default=None, repr=False)

    @property
    def held(self) -> bool:
        return self._fd is not None


class LockManager:
    """Acquire and release the system-wide maintenance lock."""

    def __init__(
        self,
        path: Path,
        package_locks: tuple[Path, ...] = (),
    ):
        self._path = path
        self._package_locks = package_locks

    @property
    def path(self) -> Path:
        return self._path

    def read_holder(self) -> int | None:
        """PID recorded in the lock file, or None."""
        try:
            raw = self._path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            return int(raw.split()[0]) if raw else None
        except ValueError:
            return None

    def acquire(self) -> LockToken:
        """Take the lock or fail immediately.

        Raises:
            ConcurrencyError: A live process holds the lock, or a
                package-manager lock is busy.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(_MAX_ATTEMPTS):
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as e:
                os.close(fd)
                if e.errno not in (errno.EAGAIN, errno.EACCES, errno.EWOULDBLOCK):
                    raise
                holder = self.read_holder()
                raise ConcurrencyError(
                    f"Another maintenance run is in progress (PID: {holder or 'unknown'})",
                    holder_pid=holder,
                    remediation=(
                        "wait for it to finish; if that process is gone, "
                        f"remove stale lock {self._path}"
                    ),
                ) from None

            # The file may have been unlinked by a releasing holder between
            # our open() and flock(); then we locked an orphaned inode.
            try:
                same_file = os.fstat(fd).st_ino == os.stat(self._path).st_ino
            except FileNotFoundError:
                same_file = False
            if not same_file:
                os.close(fd)
                continue

            previous = self.read_holder()
            if previous is not None and previous != os.getpid():
                if pid_alive(previous):
                    # A live recorded owner wins even without the flock
                    os.close(fd)
                    raise ConcurrencyError(
                        f"Lock file names a running process (PID: {previous})",
                        holder_pid=previous,
                        remediation=(
                            f"check PID {previous}; if it is not a maintenance run, "
                            f"remove {self._path}"
                        ),
                    )
                logger.warning(
                    "Reclaiming stale lock %s (previous PID %s is gone)",
                    self._path, previous,
                )

            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
            os.fsync(fd)

            token = LockToken(path=self._path, pid=os.getpid(), _fd=fd)
            logger.debug("Lock acquired: %s (pid=%d)", self._path, token.pid)

            try:
                self._check_package_manager()
            except ConcurrencyError:
                self.release(token)
                raise
            return token

        raise ConcurrencyError(
            f"Could not acquire {self._path}: lock file kept changing",
            remediation=f"remove stale lock {self._path} and retry",
        )

    def release(self, token: LockToken) -> None:
        """Drop the lock.  Safe to call more than once."""
        fd = token._fd
        if fd is None:
            return
        token._fd = None
        try:
            if self.read_holder() == token.pid:
                self._path.unlink(missing_ok=True)
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        logger.debug("Lock released: %s", self._path)

    @contextmanager
    def hold(self) -> Iterator[LockToken]:
        """Hold the lock for the duration of a ``with`` block.

        SIGTERM and SIGHUP are turned into ``SystemExit`` while the
        lock is held so the release in ``finally`` runs for them too.
        """
        token = self.acquire()
        previous = _install_exit_signals()
        try:
            yield token
        finally:
            self.release(token)
            _restore_signals(previous)

    def _check_package_manager(self) -> None:
        for lock_path in self._package_locks:
            if not lock_path.exists():
                continue
            try:
                fd = os.open(lock_path, os.O_RDONLY)
            except OSError:
                continue
            try:
                try:
                    fcntl.lockf(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
                except OSError:
                    raise ConcurrencyError(
                        f"Package manager is busy ({lock_path} is locked)",
                        remediation=(
                            "resolve package-manager lock: close Synaptic/Discover "
                            "or wait for unattended-upgrades to finish"
                        ),
                    ) from None
                fcntl.lockf(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)


# ── Signal handling ─────────────────────────────────────────────


def _exit_on_signal(signum: int, _frame) -> None:
    logger.warning("Received %s — aborting", signal.Signals(signum).name)
    raise SystemExit(128 + signum)


def _install_exit_signals() -> dict[int, object]:
    previous: dict[int, object] = {}
    for sig in (signal.SIGTERM, signal.SIGHUP):
        try:
            previous[sig] = signal.signal(sig, _exit_on_signal)
        except ValueError:
            # Not in the main thread; the default action still kills us
            # and the kernel drops the flock.
            break
    return previous


def _restore_signals(previous: dict[int, object]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)  # type: ignore[arg-type]
