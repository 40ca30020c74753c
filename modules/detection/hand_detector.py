"""
MediaPipe hand detection wrapper producing LandmarkObservations.
"""

import time
import logging
import numpy as np
import mediapipe as mp

from core.types import Landmark, LandmarkObservation

logger = logging.getLogger(__name__)


class HandDetector:
    """MediaPipe Hands wrapper: RGB frame -> LandmarkObservation."""

    def __init__(self, config: dict):
        self._model_complexity = config.get("model_complexity", 0)
        self._max_hands = config.get("max_num_hands", 2)
        self._min_detect_conf = config.get("min_detection_confidence", 0.5)
        self._min_track_conf = config.get("min_tracking_confidence", 0.5)

        self._mp_hands = mp.solutions.hands
        self._hands = None
        self._initialized = False

    def initialize(self):
        """Initialize MediaPipe Hands in video (tracking) mode."""
        self._hands = self._mp_hands.Hands(
            static_image_mode=False,
            model_complexity=self._model_complexity,
            max_num_hands=self._max_hands,
            min_detection_confidence=self._min_detect_conf,
            min_tracking_confidence=self._min_track_conf,
        )
        self._initialized = True
        logger.info(
            "MediaPipe Hands initialized (complexity=%d, max_hands=%d, "
            "detect_conf=%.2f, track_conf=%.2f)",
            self._model_complexity, self._max_hands,
            self._min_detect_conf, self._min_track_conf,
        )

    def detect(self, rgb_frame: np.ndarray):
        """Run hand detection on an RGB frame.

        Returns:
            MediaPipe results object
        """
        if not self._initialized:
            self.initialize()

        # Non-writable frames are passed by reference
        rgb_frame.flags.writeable = False
        results = self._hands.process(rgb_frame)
        rgb_frame.flags.writeable = True
        return results

    def observe(self, rgb_frame: np.ndarray, timestamp: float = None) -> LandmarkObservation:
        """Detect hands and convert them to a LandmarkObservation."""
        timestamp = time.time() if timestamp is None else timestamp
        return self.to_observation(self.detect(rgb_frame), timestamp)

    @staticmethod
    def to_observation(results, timestamp: float = None) -> LandmarkObservation:
        hands, handedness = [], []
        if results is not None and results.multi_hand_landmarks:
            for hand_landmarks in results.multi_hand_landmarks:
                hands.append([Landmark(lm.x, lm.y, lm.z) for lm in hand_landmarks.landmark])
            for classification in (results.multi_handedness or []):
                handedness.append(classification.classification[0].label)
        return LandmarkObservation(hands, handedness, timestamp)

    def close(self):
        """Release MediaPipe resources."""
        if self._hands:
            self._hands.close()
            self._hands = None
            self._initialized = False
            logger.info("MediaPipe Hands closed")

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, *args):
        self.close()
