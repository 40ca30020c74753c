"""
Shared fixtures: synthetic hand landmarks and training uploads.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import Sample, LandmarkObservation


def create_mock_landmarks(center: float, seed: int = 0, spread: float = 0.03) -> list:
    """
    Create 21 mock landmarks scattered around ``center``.

    Two classes built around centers far apart are trivially separable,
    which keeps the training tests fast and deterministic.
    """
    rng = np.random.default_rng(seed)
    points = center + rng.uniform(-spread, spread, size=(21, 3))
    return [{"x": float(p[0]), "y": float(p[1]), "z": float(p[2])} for p in points]


def create_upload(samples_per_class: int = 5, centers=None) -> dict:
    """Training-data upload document with one class per entry in ``centers``."""
    centers = centers or {"open": 0.2, "closed": 0.8}
    upload = {}
    for class_idx, (label, center) in enumerate(centers.items()):
        upload[label] = {"samples": [
            {"landmarks": create_mock_landmarks(center, seed=100 * class_idx + i)}
            for i in range(samples_per_class)
        ]}
    return upload


def to_sample(landmarks: list) -> Sample:
    return Sample.from_array([(p["x"], p["y"], p["z"]) for p in landmarks])


class FakeSource:
    """Stands in for the latest-observation slot."""

    def __init__(self, observation=None):
        self.observation = observation
        self.reads = 0

    def read(self):
        self.reads += 1
        return self.observation

    def show(self, center: float, seed: int = 999):
        hand = to_sample(create_mock_landmarks(center, seed=seed)).landmarks
        self.observation = LandmarkObservation([hand], ["Right"])

    def hide(self):
        self.observation = LandmarkObservation([], [])


@pytest.fixture
def upload():
    return create_upload()


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def mock_landmarks():
    return create_mock_landmarks
