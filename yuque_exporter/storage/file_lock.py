"""Per-path exclusive locks backed by :mod:`filelock`."""

import hashlib
import logging
import time
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from ..errors import LockTimeoutError

logger = logging.getLogger('yuque_exporter.storage.lock')
logging.getLogger('filelock').setLevel(logging.WARNING)


class PathLock:
    """
    Exclusive lock scoped to one storage path.

    The lock file lives in a dedicated directory and is named after a hash of
    the target path, so locking never creates files next to the data. Locks
    are held by the kernel (``flock``/``msvcrt``), so a crashed holder never
    leaves a stale lock behind; ``stale_timeout`` bounds how long a live
    holder may keep others waiting before acquisition gives up.

    Acquisition is attempted ``retries + 1`` times with exponential backoff
    between ``min_backoff`` and ``max_backoff`` seconds.
    """

    def __init__(
        self,
        lock_dir: Path,
        target: Path,
        stale_timeout: float = 10.0,
        retries: int = 5,
        min_backoff: float = 0.1,
        max_backoff: float = 2.0
    ):
        self.target = Path(target)
        self.stale_timeout = stale_timeout
        self.retries = retries
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff

        digest = hashlib.sha1(str(self.target.resolve()).encode('utf-8')).hexdigest()
        lock_dir = Path(lock_dir)
        lock_dir.mkdir(parents=True, exist_ok=True)
        self.lock_path = lock_dir / f"{digest}.lock"
        self._lock = FileLock(str(self.lock_path))

    def acquire(self) -> None:
        """
        Acquire the lock or raise LockTimeoutError once the retries are spent.
        """
        deadline = time.monotonic() + self.stale_timeout
        attempts = self.retries + 1

        for attempt in range(attempts):
            remaining = max(deadline - time.monotonic(), 0.0)
            slice_timeout = max(remaining / (attempts - attempt), 0.05)
            try:
                self._lock.acquire(timeout=slice_timeout)
                logger.debug(f"Lock acquired: {self.target}")
                return
            except Timeout:
                if attempt == attempts - 1:
                    break
                delay = min(self.min_backoff * (2 ** attempt), self.max_backoff)
                logger.debug(
                    f"Lock busy for {self.target} (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.2f}s"
                )
                time.sleep(delay)

        logger.error(f"Failed to acquire lock after {attempts} attempts: {self.target}")
        raise LockTimeoutError(f"Could not lock {self.target} within {self.stale_timeout:g}s")

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()
            logger.debug(f"Lock released: {self.target}")

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    def __enter__(self) -> 'PathLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        self.release()
        return None


__all__ = ['PathLock']
