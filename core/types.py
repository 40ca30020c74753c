"""
Shared domain types for the gesture trainer.

Centralizes the data model used by the dataset builder, trainer, artifact
store and inference loop so modules can exchange plain objects without
importing each other.
"""

import math
import time
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np


# =============================================================================
# Constants
# =============================================================================

NUM_LANDMARKS = 21
COORDS_PER_LANDMARK = 3
FEATURE_DIM = NUM_LANDMARKS * COORDS_PER_LANDMARK  # 63

# Losses are clamped to this floor before the log transform used for charts
LOSS_FLOOR = 1e-7


# =============================================================================
# Landmarks and samples
# =============================================================================

class Landmark(NamedTuple):
    """One normalized 3-D hand keypoint."""
    x: float
    y: float
    z: float


class Sample:
    """A single capture of hand landmarks (21 points, MediaPipe order)."""

    __slots__ = ("landmarks",)

    def __init__(self, landmarks: Sequence[Landmark]):
        self.landmarks = tuple(landmarks)

    def __len__(self):
        return len(self.landmarks)

    def __repr__(self):
        return "Sample(%d landmarks)" % len(self.landmarks)

    @classmethod
    def from_array(cls, array) -> "Sample":
        """Build a sample from an (N, 3) array-like."""
        return cls([Landmark(float(p[0]), float(p[1]), float(p[2])) for p in array])

    def to_numpy(self) -> np.ndarray:
        return np.asarray(self.landmarks, dtype=np.float32)


class GestureClass:
    """A label with its insertion-ordered samples."""

    __slots__ = ("label", "samples")

    def __init__(self, label: str, samples: Sequence[Sample] = ()):
        self.label = label
        self.samples = tuple(samples)

    def __len__(self):
        return len(self.samples)

    def __repr__(self):
        return "GestureClass(%r, %d samples)" % (self.label, len(self.samples))


class Dataset:
    """Ordered, read-only mapping of label -> GestureClass.

    Built once from an upload and never mutated afterwards; a training run
    can hold on to it without copying.
    """

    def __init__(self, classes: Sequence[GestureClass]):
        self._classes: Dict[str, GestureClass] = {}
        for gesture_class in classes:
            if gesture_class.label in self._classes:
                raise ValueError("Duplicate class label: %r" % gesture_class.label)
            self._classes[gesture_class.label] = gesture_class

    def __getitem__(self, label: str) -> GestureClass:
        return self._classes[label]

    def __contains__(self, label) -> bool:
        return label in self._classes

    def __iter__(self):
        return iter(self._classes.values())

    def __len__(self):
        return len(self._classes)

    def __repr__(self):
        return "Dataset(%d classes, %d samples)" % (len(self), self.sample_count)

    @property
    def labels(self) -> List[str]:
        return list(self._classes.keys())

    @property
    def sample_count(self) -> int:
        return sum(len(c) for c in self._classes.values())


class TrainingExample(NamedTuple):
    """Flattened (features, label) pair consumed by the trainer."""
    features: np.ndarray
    label: str


# =============================================================================
# Training session
# =============================================================================

class SessionStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TrainingSession:
    """Ephemeral progress record of one train() call."""

    def __init__(self):
        self.epoch = 0
        self.loss_history: List[float] = []
        self.status = SessionStatus.IDLE
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.error: Optional[BaseException] = None

    def begin(self):
        self.status = SessionStatus.RUNNING
        self.started_at = time.time()

    def record_epoch(self, epoch: int, loss: float):
        self.epoch = epoch
        self.loss_history.append(loss)

    def finish(self, status: SessionStatus, error: Optional[BaseException] = None):
        self.status = status
        self.error = error
        self.finished_at = time.time()

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return (self.finished_at or time.time()) - self.started_at

    def log_loss_history(self) -> List[float]:
        """Natural-log losses for charting; non-positive losses are clamped."""
        return [math.log(max(loss, LOSS_FLOOR)) for loss in self.loss_history]

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "epochs_trained": self.epoch,
            "loss_history": list(self.loss_history),
            "training_time_sec": self.elapsed,
            "error": str(self.error) if self.error else None,
        }


# =============================================================================
# Model artifact and inference state
# =============================================================================

class ModelArtifact:
    """A trained or loaded model tagged with the version it was adopted under.

    The wrapped model is never mutated once wrapped; retraining or loading
    produces a new artifact.
    """

    __slots__ = ("model", "version", "source", "created_at")

    def __init__(self, model, version: int, source: str = "train"):
        self.model = model
        self.version = version
        self.source = source
        self.created_at = time.time()

    @property
    def labels(self) -> List[str]:
        return list(self.model.labels)

    def __repr__(self):
        return "ModelArtifact(v%d, %s, labels=%s)" % (self.version, self.source, self.labels)


class InferenceState:
    """Mutable state owned by the inference loop."""

    __slots__ = ("enabled", "last_observed_label", "last_emitted_label")

    def __init__(self):
        self.enabled = False
        self.last_observed_label: Optional[str] = None
        self.last_emitted_label: Optional[str] = None

    def reset(self):
        self.last_observed_label = None
        self.last_emitted_label = None


class LandmarkObservation:
    """Per-frame detector output: zero or more hands of 21 landmarks each."""

    __slots__ = ("hands", "handedness", "timestamp")

    def __init__(self, hands: Sequence[Sequence[Landmark]] = (),
                 handedness: Sequence[str] = (), timestamp: Optional[float] = None):
        self.hands = [tuple(hand) for hand in hands]
        self.handedness = list(handedness)
        self.timestamp = time.time() if timestamp is None else timestamp

    @property
    def has_hand(self) -> bool:
        return len(self.hands) > 0

    @property
    def primary_hand(self) -> Optional[Sample]:
        if not self.hands:
            return None
        return Sample(self.hands[0])

    def __repr__(self):
        return "LandmarkObservation(hands=%d, t=%.3f)" % (len(self.hands), self.timestamp)
