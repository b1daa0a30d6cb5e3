"""Tests for bibvault.filelock: the whole-library advisory lock."""

from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path

import pytest

from bibvault.filelock import LockTimeout, file_lock
from bibvault.paths import lock_path


@contextmanager
def held_elsewhere(lock_file: Path, pid: int = 4242):
    """Hold flock on *lock_file* through a separate descriptor, as process *pid*."""
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    blocker = open(lock_file, "w")
    fcntl.flock(blocker, fcntl.LOCK_EX | fcntl.LOCK_NB)
    blocker.write(str(pid))
    blocker.flush()
    try:
        yield
    finally:
        fcntl.flock(blocker, fcntl.LOCK_UN)
        blocker.close()


def test_lock_file_sits_next_to_target(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    with file_lock(target):
        assert (tmp_path / ".migration.lock").exists()
    assert not target.exists()


def test_creates_missing_library_dir(tmp_path: Path) -> None:
    """A library folder that doesn't exist yet can still be locked."""
    target = lock_path(tmp_path / "new" / "library")
    with file_lock(target):
        pass
    assert (tmp_path / "new" / "library" / ".migration.lock").exists()


def test_released_on_exception(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    with pytest.raises(RuntimeError):
        with file_lock(target):
            raise RuntimeError("migration blew up")

    with file_lock(target, timeout=0):
        pass


def test_timeout_when_held(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    with held_elsewhere(tmp_path / ".migration.lock"):
        with pytest.raises(LockTimeout, match="Library is busy") as info:
            with file_lock(target, timeout=0.1, timeout_msg="cleanup"):
                pass  # pragma: no cover
    assert "(cleanup)" in str(info.value)
    assert "process 4242" in str(info.value)


def test_timeout_zero_is_single_attempt(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    with held_elsewhere(tmp_path / ".migration.lock"):
        with pytest.raises(LockTimeout):
            with file_lock(target, timeout=0):
                pass  # pragma: no cover


def test_lock_timeout_is_oserror(tmp_path: Path) -> None:
    """Callers catching OSError around filesystem work also see lock timeouts."""
    assert issubclass(LockTimeout, OSError)


def test_acquired_after_release(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    with held_elsewhere(tmp_path / ".migration.lock"):
        pass
    with file_lock(target, timeout=0.5):
        (tmp_path / "marker").write_text("done")
    assert (tmp_path / "marker").read_text() == "done"


def test_holder_pid_written_while_held(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    lock_file = tmp_path / ".migration.lock"
    with file_lock(target):
        assert lock_file.read_text() == str(os.getpid())
    assert lock_file.read_text() == ""


def test_waiting_does_not_erase_holder_pid(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    lock_file = tmp_path / ".migration.lock"
    with held_elsewhere(lock_file, pid=99):
        with pytest.raises(LockTimeout, match="process 99"):
            with file_lock(target, timeout=0):
                pass  # pragma: no cover
        assert lock_file.read_text() == "99"


def test_unknown_holder(tmp_path: Path) -> None:
    target = lock_path(tmp_path)
    lock_file = tmp_path / ".migration.lock"
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    blocker = open(lock_file, "w")
    fcntl.flock(blocker, fcntl.LOCK_EX | fcntl.LOCK_NB)
    try:
        with pytest.raises(LockTimeout, match="another process"):
            with file_lock(target, timeout=0):
                pass  # pragma: no cover
    finally:
        fcntl.flock(blocker, fcntl.LOCK_UN)
        blocker.close()
