"""
Versioned holder for the model the inference loop classifies against.

Both a finished training run and a finished artifact load may want to
install their model. Each operation reserves a version when it *starts*;
on completion the result is adopted only if no newer operation has already
installed its model. A stale completion is discarded instead of silently
replacing a newer model.
"""

import logging
import threading
from typing import Optional

from core.types import ModelArtifact

logger = logging.getLogger(__name__)


class ModelSlot:
    """Single current-model slot with monotonic version ordering."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_version = 0
        self._current: Optional[ModelArtifact] = None
        self._discarded = 0

    def reserve(self) -> int:
        """Hand out the version for an operation that is about to start."""
        with self._lock:
            self._next_version += 1
            return self._next_version

    def adopt(self, model, version: int, source: str = "train") -> bool:
        """Install ``model`` if ``version`` is newer than the current one.

        Returns:
            True if the model became current, False if it was discarded.
        """
        with self._lock:
            if self._current is not None and version <= self._current.version:
                self._discarded += 1
                logger.warning(
                    "Discarding stale %s result v%d (current is v%d from %s)",
                    source, version, self._current.version, self._current.source,
                )
                return False
            self._current = ModelArtifact(model, version, source)
        logger.info("Adopted model v%d from %s (labels=%s)",
                    version, source, list(model.labels))
        return True

    @property
    def current(self) -> Optional[ModelArtifact]:
        return self._current

    @property
    def version(self) -> int:
        current = self._current
        return current.version if current is not None else 0

    @property
    def discarded_count(self) -> int:
        return self._discarded

    def clear(self):
        with self._lock:
            self._current = None
