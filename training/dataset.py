"""
Dataset building for gesture landmark data.

Parses the training-data upload produced by the sample collector, and
flattens every (21, 3) sample into a 63-dim feature vector paired with its
label.

Upload format::

    {
        "open":   {"samples": [{"landmarks": [{"x": .., "y": .., "z": ..}, ... x21]}, ...]},
        "closed": {"samples": [...]}
    }

Class order and sample order are preserved exactly; shuffling is the
trainer's business.
"""

import os
import json
import math
import logging
from numbers import Real
from typing import List, Sequence, Tuple

import numpy as np

from core.errors import ValidationError
from core.types import (
    Dataset, GestureClass, Landmark, Sample, TrainingExample,
    NUM_LANDMARKS, FEATURE_DIM,
)

logger = logging.getLogger(__name__)


def flatten(sample: Sample) -> np.ndarray:
    """Flatten a sample to x0, y0, z0, x1, y1, z1, ... (63 floats)."""
    if len(sample) != NUM_LANDMARKS:
        raise ValidationError(
            "Sample has %d landmarks, expected %d" % (len(sample), NUM_LANDMARKS)
        )
    return np.asarray(sample.landmarks, dtype=np.float32).reshape(FEATURE_DIM)


def _coordinate(value, where: str) -> float:
    # bool is a Real subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError("%s: expected a number, got %r" % (where, value))
    value = float(value)
    if not math.isfinite(value):
        raise ValidationError("%s: coordinate is not finite" % where)
    return value


class DatasetBuilder:
    """Turns uploads into Datasets and Datasets into training examples."""

    # ------------------------------------------------------------------
    # Upload parsing
    # ------------------------------------------------------------------

    def from_json(self, source) -> Dataset:
        """Parse an upload from a file path or a JSON string.

        Raises:
            ValidationError: unreadable JSON or malformed structure.
        """
        if isinstance(source, (str, os.PathLike)) and os.path.isfile(source):
            with open(source, "r") as f:
                text = f.read()
            origin = str(source)
        else:
            text = source
            origin = "<string>"

        try:
            document = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ValidationError("Upload is not valid JSON (%s): %s" % (origin, e)) from e

        dataset = self.parse(document)
        logger.info("Loaded %d samples in %d classes from %s",
                    dataset.sample_count, len(dataset), origin)
        return dataset

    def parse(self, document) -> Dataset:
        """Validate an already-decoded upload document and build a Dataset.

        Nothing is kept from a document that fails validation.
        """
        if not isinstance(document, dict):
            raise ValidationError("Upload must be a JSON object mapping label -> class data")
        if not document:
            raise ValidationError("Upload contains no gesture classes")

        classes = []
        for label, class_data in document.items():
            if not isinstance(label, str) or not label:
                raise ValidationError("Class label must be a non-empty string, got %r" % (label,))
            if not isinstance(class_data, dict) or "samples" not in class_data:
                raise ValidationError("Class %r: missing 'samples' list" % label)
            raw_samples = class_data["samples"]
            if not isinstance(raw_samples, list) or not raw_samples:
                raise ValidationError("Class %r: 'samples' must be a non-empty list" % label)

            samples = [
                self._parse_sample(raw, "%s[%d]" % (label, i))
                for i, raw in enumerate(raw_samples)
            ]
            classes.append(GestureClass(label, samples))

        return Dataset(classes)

    def _parse_sample(self, raw, where: str) -> Sample:
        if not isinstance(raw, dict) or not isinstance(raw.get("landmarks"), list):
            raise ValidationError("%s: sample must be an object with a 'landmarks' list" % where)
        points = raw["landmarks"]
        if len(points) != NUM_LANDMARKS:
            raise ValidationError(
                "%s: expected %d landmarks, got %d" % (where, NUM_LANDMARKS, len(points))
            )

        landmarks = []
        for j, point in enumerate(points):
            if not isinstance(point, dict):
                raise ValidationError("%s.landmarks[%d]: expected {x, y, z}" % (where, j))
            try:
                landmarks.append(Landmark(
                    _coordinate(point["x"], "%s.landmarks[%d].x" % (where, j)),
                    _coordinate(point["y"], "%s.landmarks[%d].y" % (where, j)),
                    _coordinate(point["z"], "%s.landmarks[%d].z" % (where, j)),
                ))
            except KeyError as e:
                raise ValidationError(
                    "%s.landmarks[%d]: missing coordinate %s" % (where, j, e)
                ) from e
        return Sample(landmarks)

    @staticmethod
    def to_document(dataset: Dataset) -> dict:
        """Inverse of :meth:`parse`: Dataset -> upload document."""
        return {
            gesture_class.label: {
                "samples": [
                    {"landmarks": [{"x": lm.x, "y": lm.y, "z": lm.z} for lm in sample.landmarks]}
                    for sample in gesture_class.samples
                ]
            }
            for gesture_class in dataset
        }

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def format(self, dataset: Dataset) -> List[TrainingExample]:
        """Flatten every sample into a (features, label) pair.

        Classes are visited in insertion order, samples in insertion order.

        Raises:
            ValidationError: a sample does not have exactly 21 landmarks.
        """
        examples = []
        for gesture_class in dataset:
            for i, sample in enumerate(gesture_class.samples):
                try:
                    features = flatten(sample)
                except ValidationError as e:
                    raise ValidationError("Class %r sample %d: %s" % (gesture_class.label, i, e)) from e
                examples.append(TrainingExample(features, gesture_class.label))
        return examples

    @staticmethod
    def to_arrays(examples: Sequence[TrainingExample],
                  labels: Sequence[str]) -> Tuple[np.ndarray, np.ndarray]:
        """Stack examples into (X, y) arrays, y holding indices into ``labels``."""
        label_map = {name: idx for idx, name in enumerate(labels)}
        if not examples:
            return (np.zeros((0, FEATURE_DIM), dtype=np.float32),
                    np.zeros(0, dtype=np.int64))
        features = np.stack([ex.features for ex in examples]).astype(np.float32)
        targets = np.array([label_map[ex.label] for ex in examples], dtype=np.int64)
        return features, targets

    @staticmethod
    def class_counts(dataset: Dataset) -> dict:
        return {gesture_class.label: len(gesture_class) for gesture_class in dataset}
