"""Advisory file locking for the learning store snapshot.

Several engine processes may share one snapshot file. Writers take an
exclusive lock file next to it (created with O_EXCL), retry with exponential
backoff while another writer holds it, and break locks older than the
staleness timeout left behind by crashed processes.
"""

import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hoparb.errors import HoparbError

logger = logging.getLogger(__name__)


class LockTimeoutError(HoparbError):
    """Raised when a lock cannot be acquired within the retry budget."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="LOCK_TIMEOUT", **kwargs)


class LockBusyError(Exception):
    """Lock file exists and is fresh. Internal retry signal."""


class FileLock:
    """Context manager holding an exclusive lock file.

    Example:
        with FileLock("data/arbitrage-learning.json"):
            path.write_text(document)
    """

    def __init__(
        self,
        target: Union[str, Path],
        retries: int = 5,
        min_wait: float = 0.1,
        max_wait: float = 0.5,
        stale_after: float = 10.0,
    ):
        """Initialize the lock.

        Args:
            target: File being protected; the lock is "<target>.lock"
            retries: Retries after the first failed attempt
            min_wait: Minimum backoff between attempts (seconds)
            max_wait: Maximum backoff between attempts (seconds)
            stale_after: Age (seconds) after which an existing lock is broken
        """
        self.target = Path(target)
        self.lock_path = self.target.with_name(self.target.name + ".lock")
        self.retries = retries
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.stale_after = stale_after
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        """Acquire the lock, retrying with backoff.

        Raises:
            LockTimeoutError: Lock still held after all retries
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        retrying = Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(LockBusyError),
        )
        try:
            retrying(self._try_acquire)
        except RetryError as e:
            logger.warning(f"Lock timeout on {self.lock_path} after {self.retries} retries")
            raise LockTimeoutError(f"Could not acquire lock {self.lock_path}") from e
        logger.debug(f"Lock acquired: {self.lock_path}")

    def release(self) -> None:
        if self._fd is None:
            return
        os.close(self._fd)
        self._fd = None
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock file {self.lock_path} vanished before release")
        logger.debug(f"Lock released: {self.lock_path}")

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def _try_acquire(self) -> None:
        try:
            self._fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            os.write(self._fd, str(os.getpid()).encode())
            return
        except FileExistsError:
            pass

        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            # Released between our open and stat
            raise LockBusyError(str(self.lock_path))

        if age > self.stale_after:
            logger.warning(f"Breaking stale lock {self.lock_path} ({age:.1f}s old)")
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
        raise LockBusyError(str(self.lock_path))

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
