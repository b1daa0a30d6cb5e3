"""Cross-process advisory lock for whole-library operations.

Migration, orphan cleanup and relinking each rewrite the shared library
tree. Two processes doing that at once could race two renames into the
same blob path, so those passes run under an exclusive ``flock`` on a
``.lock`` file next to the protected path.

The holder writes its pid into the lock file, so a caller that times out
can say which process has the library. The pid is advisory only: the
flock itself is what excludes, and it is released when the block exits
or the holding process dies.

NOT reentrant: nesting ``file_lock()`` on the same path in one thread
deadlocks until the timeout fires.
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

# Migration of a large library can take minutes; a second caller should
# give up quickly rather than wait it out.
DEFAULT_LOCK_TIMEOUT = 30.0

_POLL_INTERVAL = 0.05


class LockTimeout(OSError):
    """Raised when a file lock cannot be acquired within the timeout."""


def _holder_pid(fd: IO[str]) -> int | None:
    fd.seek(0)
    text = fd.read().strip()
    return int(text) if text.isdigit() else None


def _busy_message(lock_path: Path, timeout: float, timeout_msg: str, holder: int | None) -> str:
    detail = f" ({timeout_msg})" if timeout_msg else ""
    who = f"process {holder}" if holder is not None else "another process"
    return (
        f"Library is busy: could not lock {lock_path} within {timeout:.1f}s{detail}. "
        f"The lock is held by {who}, probably migrating or cleaning this library; "
        f"try again when it finishes."
    )


@contextmanager
def file_lock(
    path: Path,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
    timeout_msg: str = "",
) -> Iterator[None]:
    """Hold an exclusive flock on ``<path>.lock`` for the duration of the block.

    Args:
        path: The resource being protected (lock file is ``<path>.lock``).
        timeout: Maximum seconds to wait (0 = one non-blocking attempt).
        timeout_msg: Extra context included in the error on timeout.

    Raises:
        LockTimeout: If the lock is not acquired within *timeout* seconds.
            The message names the holder's pid when it is known.
    """
    lock_path = path.with_name(path.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # "a+" so waiting does not truncate the holder's pid
    fd = open(lock_path, "a+")  # noqa: SIM115
    acquired = False
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                acquired = True
                break
            except OSError as exc:
                if exc.errno not in (errno.EWOULDBLOCK, errno.EAGAIN):
                    raise
                if time.monotonic() >= deadline:
                    msg = _busy_message(lock_path, timeout, timeout_msg, _holder_pid(fd))
                    logger.warning(msg)
                    raise LockTimeout(msg) from exc
                time.sleep(_POLL_INTERVAL)
        fd.seek(0)
        fd.truncate()
        fd.write(str(os.getpid()))
        fd.flush()
        logger.debug("Lock acquired on %s by pid %d", lock_path, os.getpid())
        yield
    finally:
        if acquired:
            fd.truncate(0)
            fd.flush()
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Lock released on %s", lock_path)
        fd.close()
