"""
Latest-observation slot shared by the landmark source and its readers.
"""

import threading
from typing import Optional

from core.types import LandmarkObservation


class LatestObservation:
    """Single-writer, multi-reader, last-write-wins slot.

    Writes replace the whole reference, so a reader always sees a complete
    old or new observation. The lock only guards the frame counter.
    """

    def __init__(self):
        self._observation: Optional[LandmarkObservation] = None
        self._frame_id = 0
        self._lock = threading.Lock()

    def write(self, observation: LandmarkObservation):
        with self._lock:
            self._observation = observation
            self._frame_id += 1

    def read(self) -> Optional[LandmarkObservation]:
        return self._observation

    def clear(self):
        with self._lock:
            self._observation = None

    @property
    def frame_id(self) -> int:
        return self._frame_id
