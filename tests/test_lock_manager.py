"""
Tests for the maintenance lock — exclusivity, stale reclaim, release.
"""

import fcntl
import os
import time
from pathlib import Path

import pytest

from src.core.errors import ConcurrencyError
from src.core.services.lock_manager import LockManager, pid_alive


class TestLockManager:
    def test_acquire_writes_pid(self, tmp_path: Path):
        manager = LockManager(tmp_path / "sysmaint.lock")
        token = manager.acquire()
        try:
            assert token.held
            assert manager.read_holder() == os.getpid()
        finally:
            manager.release(token)

    def test_creates_parent_directory(self, tmp_path: Path):
        manager = LockManager(tmp_path / "run" / "deep" / "sysmaint.lock")
        token = manager.acquire()
        manager.release(token)
        assert (tmp_path / "run" / "deep").is_dir()

    def test_second_acquire_fails_with_holder(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        first = LockManager(path)
        token = first.acquire()
        try:
            with pytest.raises(ConcurrencyError) as exc:
                LockManager(path).acquire()
            assert exc.value.holder_pid == os.getpid()
            assert str(os.getpid()) in exc.value.message
            assert "stale lock" in exc.value.remediation
        finally:
            first.release(token)

    def test_release_removes_file(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        manager = LockManager(path)
        manager.release(manager.acquire())
        assert not path.exists()

    def test_release_is_idempotent(self, tmp_path: Path):
        manager = LockManager(tmp_path / "sysmaint.lock")
        token = manager.acquire()
        manager.release(token)
        manager.release(token)
        assert not token.held

    def test_reacquire_after_release(self, tmp_path: Path):
        manager = LockManager(tmp_path / "sysmaint.lock")
        manager.release(manager.acquire())
        token = manager.acquire()
        assert token.held
        manager.release(token)

    def test_stale_file_reclaimed(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        # Left behind by a process that died without cleanup
        path.write_text("999999999\n")
        manager = LockManager(path)
        token = manager.acquire()
        try:
            assert manager.read_holder() == os.getpid()
        finally:
            manager.release(token)

    def test_live_recorded_pid_refused(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        # The parent process is alive but holds no flock on the file
        path.write_text(f"{os.getppid()}\n")
        with pytest.raises(ConcurrencyError) as exc:
            LockManager(path).acquire()
        assert exc.value.holder_pid == os.getppid()
        assert path.read_text() == f"{os.getppid()}\n"

        # The refused attempt did not keep the flock
        fd = os.open(path, os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        finally:
            os.close(fd)

    def test_garbage_file_reclaimed(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        path.write_text("not-a-pid")
        manager = LockManager(path)
        assert manager.read_holder() is None
        manager.release(manager.acquire())

    def test_hold_releases_on_exception(self, tmp_path: Path):
        path = tmp_path / "sysmaint.lock"
        manager = LockManager(path)
        with pytest.raises(RuntimeError):
            with manager.hold():
                assert path.exists()
                raise RuntimeError("step blew up")
        assert not path.exists()
        manager.release(manager.acquire())

    def test_busy_package_manager_lock(self, tmp_path: Path):
        dpkg_lock = tmp_path / "lock-frontend"
        dpkg_lock.write_text("")
        manager = LockManager(tmp_path / "sysmaint.lock", package_locks=(dpkg_lock,))

        pid = os.fork()
        if pid == 0:
            # Child holds the dpkg lock until killed
            fd = os.open(dpkg_lock, os.O_RDWR)
            fcntl.lockf(fd, fcntl.LOCK_EX)
            time.sleep(30)
            os._exit(0)

        try:
            # Wait until the child has the lock
            for _ in range(100):
                try:
                    check_fd = os.open(dpkg_lock, os.O_RDWR)
                    try:
                        fcntl.lockf(check_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                        fcntl.lockf(check_fd, fcntl.LOCK_UN)
                    finally:
                        os.close(check_fd)
                    time.sleep(0.05)
                except OSError:
                    break

            with pytest.raises(ConcurrencyError, match="Package manager is busy"):
                manager.acquire()
            # Our own lock was released again
            assert not (tmp_path / "sysmaint.lock").exists()
        finally:
            os.kill(pid, 9)
            os.waitpid(pid, 0)

    def test_free_package_manager_lock(self, tmp_path: Path):
        dpkg_lock = tmp_path / "lock-frontend"
        dpkg_lock.write_text("")
        manager = LockManager(tmp_path / "sysmaint.lock", package_locks=(dpkg_lock,))
        manager.release(manager.acquire())


class TestPidAlive:
    def test_self(self):
        assert pid_alive(os.getpid())

    def test_invalid(self):
        assert not pid_alive(0)
        assert not pid_alive(-1)
