"""Persistence ports for the learning store snapshot."""

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from hoparb.errors import LearningPersistenceError
from hoparb.utils.locks import FileLock

logger = logging.getLogger(__name__)


class LearningPersistence(ABC):
    """Loads and saves one snapshot document."""

    @abstractmethod
    def load(self) -> Optional[dict[str, Any]]:
        """Return the stored document, or None if nothing was saved yet.

        Raises:
            LearningPersistenceError: Stored document is unreadable
        """
        pass

    @abstractmethod
    def save(self, document: dict[str, Any]) -> None:
        """Replace the stored document.

        Raises:
            LearningPersistenceError: Write failed
            LockTimeoutError: Another writer held the lock too long
        """
        pass


class InMemoryLearningPersistence(LearningPersistence):
    """Keeps the document in memory. Serializes through JSON like the file backend."""

    def __init__(self, document: Optional[dict[str, Any]] = None):
        self._raw: Optional[str] = json.dumps(document) if document is not None else None
        self.save_count = 0
        self.fail_saves = 0

    def load(self) -> Optional[dict[str, Any]]:
        if self._raw is None:
            return None
        return json.loads(self._raw)

    def save(self, document: dict[str, Any]) -> None:
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise LearningPersistenceError("Simulated write failure")
        self._raw = json.dumps(copy.deepcopy(document))
        self.save_count += 1


class JsonFileLearningPersistence(LearningPersistence):
    """JSON file guarded by an advisory lock file.

    Writes go to a temporary file that replaces the target atomically.
    """

    def __init__(
        self,
        path: Union[str, Path],
        retries: int = 5,
        min_wait: float = 0.1,
        max_wait: float = 0.5,
        stale_after: float = 10.0,
    ):
        self.path = Path(path)
        self.retries = retries
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.stale_after = stale_after

    def _lock(self) -> FileLock:
        return FileLock(
            self.path,
            retries=self.retries,
            min_wait=self.min_wait,
            max_wait=self.max_wait,
            stale_after=self.stale_after,
        )

    def load(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise LearningPersistenceError(f"Cannot read {self.path}: {e}") from e

    def save(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with self._lock():
            try:
                tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise LearningPersistenceError(f"Cannot write {self.path}: {e}") from e
        logger.debug(f"Learning data saved to {self.path}")
