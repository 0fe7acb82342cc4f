"""Per-destination mutual exclusion."""

import fcntl
import os
from pathlib import Path
from typing import Optional, TextIO

from shared.logger import get_logger

from .exceptions import LockContention

logger = get_logger(__name__)


class TargetLock:
    """
    Exclusive, non-blocking lock on a destination root.

    Used as a context manager. The lock is an ``flock`` on a file under the
    root, so the kernel drops it if the process dies without cleanup.

    Attributes:
        path: Lock file path
    """

    def __init__(self, path: Path):
        self.path = path
        self._handle: Optional[TextIO] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockContention: If another process holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.seek(0)
            owner = handle.read().strip() or "unknown"
            handle.close()
            raise LockContention(f"Another run holds {self.path} (pid: {owner})")
        except BaseException:
            handle.close()
            raise

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.truncate(0)
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> "TargetLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
