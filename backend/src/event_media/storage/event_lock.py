"""File-based locking for per-event work.

Indexing, thumbnail repair and reaping all write into one event's namespace.
This module serializes them per event slug so a reap never races an indexing
pass writing into the namespace it is deleting.

The lock is an exclusive ``flock`` on ``<locks_dir>/<slug>.lock``. The kernel
drops it when the holder's descriptor closes, including when the process is
killed, so a lock file left behind by a crashed job never blocks the next one.
The file carries the holder's PID for diagnostics only.
"""

import fcntl
import os
import re
import time
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Optional

from ..errors import LockTimeout

logger = logging.getLogger(__name__)


class EventLock:
    """Advisory lock on one event slug.

    Attributes:
        lock_path: Path to the lock file
        timeout: Maximum time to wait for lock acquisition (seconds)
        poll_interval: Time between lock acquisition attempts (seconds)
    """

    def __init__(
        self,
        lock_path: Path,
        timeout: float = 30.0,
        poll_interval: float = 0.1
    ):
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock_fd: Optional[int] = None

    def _try_lock(self) -> Optional[int]:
        """One non-blocking attempt; returns the locked descriptor or None."""
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return None

        # A releasing holder unlinks the file; a lock on the old inode guards nothing
        try:
            current = os.stat(str(self.lock_path))
        except FileNotFoundError:
            os.close(fd)
            return None
        if current.st_ino != os.fstat(fd).st_ino:
            os.close(fd)
            return None
        return fd

    def acquire(self) -> bool:
        """Acquire the lock.

        Returns:
            True if lock acquired successfully

        Raises:
            LockTimeout: If lock cannot be acquired within timeout
        """
        start_time = time.monotonic()
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            fd = self._try_lock()
            if fd is not None:
                break
            if time.monotonic() - start_time >= self.timeout:
                raise LockTimeout(
                    f"Could not acquire lock {self.lock_path} "
                    f"within {self.timeout} seconds"
                )
            time.sleep(self.poll_interval)

        previous = os.read(fd, 32).decode('ascii', errors='replace').strip()
        if previous:
            logger.info(f"Taking over {self.lock_path} left behind by pid {previous}")
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, str(os.getpid()).encode())

        self._lock_fd = fd
        logger.debug(f"Lock acquired: {self.lock_path}")
        return True

    def release(self):
        """Release the lock and remove the lock file."""
        if self._lock_fd is None:
            return
        fd, self._lock_fd = self._lock_fd, None

        # Unlink while still holding the lock so waiters re-open a fresh file
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock file already gone: {self.lock_path}")
        except OSError as e:
            logger.warning(f"Error removing lock file: {e}")

        try:
            os.close(fd)
            logger.debug(f"Lock released: {self.lock_path}")
        except OSError as e:
            logger.warning(f"Error closing lock file descriptor: {e}")

    @property
    def held(self) -> bool:
        """True if this instance holds the lock."""
        return self._lock_fd is not None

    def is_locked(self) -> bool:
        """True if a live holder has the lock; a leftover file alone does not count."""
        if self.held:
            return True
        try:
            fd = os.open(str(self.lock_path), os.O_RDONLY)
        except FileNotFoundError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        finally:
            os.close(fd)
        return False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        """String representation."""
        status = "locked" if self.is_locked() else "unlocked"
        return f"EventLock({self.lock_path}, status={status})"


def lock_path_for(locks_dir: Path, slug: str) -> Path:
    """Lock file used for an event slug."""
    safe = re.sub(r'[^\w.-]', '_', slug)
    return Path(locks_dir) / f"{safe}.lock"


@contextmanager
def event_lock(
    locks_dir: Path,
    slug: str,
    timeout: float = 30.0,
    poll_interval: float = 0.1
):
    """Context manager serializing work on one event.

    Usage:
        with event_lock(locks_dir, "carrera-2025"):
            # Safe to index, repair or reap the event
            pass

    Raises:
        LockTimeout: If lock cannot be acquired
    """
    lock = EventLock(lock_path_for(locks_dir, slug), timeout=timeout, poll_interval=poll_interval)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()
