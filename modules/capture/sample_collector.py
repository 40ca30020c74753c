"""
Labelled sample collection for the training-data upload.

Records the first hand of the latest observation under a label and writes
the collected classes in the upload format read by DatasetBuilder.
"""

import os
import json
import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from core.cancellation import CancellationToken
from core.errors import ValidationError
from core.types import Dataset, GestureClass, Sample, NUM_LANDMARKS
from modules.capture.observation_slot import LatestObservation
from training.dataset import DatasetBuilder

logger = logging.getLogger(__name__)


class SampleCollector:
    """Accumulates samples per label from a LatestObservation slot."""

    def __init__(self, slot: LatestObservation, builder: Optional[DatasetBuilder] = None):
        self._slot = slot
        self._builder = builder or DatasetBuilder()
        self._samples = OrderedDict()   # label -> [Sample]
        self._last_frame_id = -1

    def add_sample(self, label: str, sample: Sample):
        if not label:
            raise ValidationError("Label must be a non-empty string")
        if len(sample) != NUM_LANDMARKS:
            raise ValidationError("Sample has %d landmarks, expected %d"
                                  % (len(sample), NUM_LANDMARKS))
        self._samples.setdefault(label, []).append(sample)

    def capture(self, label: str) -> bool:
        """Record the current primary hand under ``label``.

        Returns:
            False if there is no fresh observation with a hand.
        """
        observation = self._slot.read()
        if observation is None or not observation.has_hand:
            return False
        if self._slot.frame_id == self._last_frame_id:
            return False
        self._last_frame_id = self._slot.frame_id
        self.add_sample(label, observation.primary_hand)
        return True

    async def record(self, label: str, count: int, interval_ms: int = 200,
                     token: Optional[CancellationToken] = None) -> int:
        """Capture up to ``count`` samples, one every ``interval_ms``.

        Returns:
            Number of samples captured.
        """
        captured = 0
        while captured < count and not (token is not None and token.cancelled):
            if self.capture(label):
                captured += 1
                logger.info("Captured %s sample %d/%d", label, captured, count)
            await asyncio.sleep(interval_ms / 1000.0)
        return captured

    def counts(self) -> dict:
        return {label: len(samples) for label, samples in self._samples.items()}

    def to_dataset(self) -> Dataset:
        return Dataset([GestureClass(label, samples) for label, samples in self._samples.items()])

    def load(self, path: str):
        """Append the classes of an existing upload file."""
        dataset = self._builder.from_json(path)
        for gesture_class in dataset:
            for sample in gesture_class.samples:
                self.add_sample(gesture_class.label, sample)

    def save(self, path: str) -> str:
        """Write the collected samples as an upload JSON document."""
        if not self._samples:
            raise ValidationError("No samples collected")
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self._builder.to_document(self.to_dataset()), f)
        logger.info("Saved %d samples in %d classes to %s",
                    sum(self.counts().values()), len(self._samples), path)
        return path
