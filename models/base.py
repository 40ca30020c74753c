"""Abstract base class for trainable gesture classifiers."""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

import numpy as np


class GestureModel(ABC):
    """Capability set shared by every classifier backend.

    The trainer, artifact store and inference loop only talk to this
    interface, so a new backend plugs in without touching them.
    """

    backend_name = "abstract"

    @property
    @abstractmethod
    def labels(self) -> List[str]:
        """Class labels in output order."""

    @property
    @abstractmethod
    def input_dim(self) -> int:
        ...

    @property
    def output_dim(self) -> int:
        return len(self.labels)

    @abstractmethod
    def fit_normalization(self, features: np.ndarray) -> np.ndarray:
        """Compute input scaling over the whole training set.

        Args:
            features: (n, input_dim) raw features.

        Returns:
            The same features, normalized.
        """

    @abstractmethod
    def set_learning_rate(self, learning_rate: float):
        ...

    @abstractmethod
    def train_batch(self, features: np.ndarray, targets: np.ndarray) -> float:
        """Run one optimisation step on already-normalized features.

        Returns:
            The batch loss (non-negative).
        """

    @abstractmethod
    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        """Class probabilities for raw (un-normalized) features, shape (n, output_dim)."""

    def predict(self, features: np.ndarray) -> List[Tuple[str, float]]:
        """Classify one feature vector.

        Returns:
            (label, confidence) pairs in the model's label order.
        """
        probs = self.predict_proba(np.asarray(features, dtype=np.float32).reshape(1, -1))[0]
        return [(label, float(p)) for label, p in zip(self.labels, probs)]

    @abstractmethod
    def topology(self) -> dict:
        """JSON-serialisable description of the network structure."""

    @abstractmethod
    def metadata(self) -> dict:
        """JSON-serialisable record of dims, labels and normalization."""

    @abstractmethod
    def parameter_shapes(self) -> List[Tuple[str, Tuple[int, ...]]]:
        """Ordered (name, shape) of every persisted parameter."""

    @abstractmethod
    def get_parameters(self) -> List[np.ndarray]:
        """Parameter arrays in :meth:`parameter_shapes` order."""

    @abstractmethod
    def set_parameters(self, arrays: Sequence[np.ndarray]):
        ...


def top_prediction(results: Sequence[Tuple[str, float]]) -> Tuple[str, float]:
    """Highest-confidence entry; the first one wins a tie."""
    best = None
    for label, confidence in results:
        if best is None or confidence > best[1]:
            best = (label, confidence)
    if best is None:
        raise ValueError("Empty classification result")
    return best
