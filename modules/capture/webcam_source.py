"""
Webcam landmark source: camera frames -> MediaPipe -> latest-observation slot.

The frame-driven producer half of the system. Capture and detection are
blocking calls, so each frame is processed in the default executor and the
event loop stays free for training and inference in between.

Events emitted on the owner's bus:
    webcamEnabled                          camera opened, frames flowing
    prediction(observation, timestamp)     every processed frame
    error(error, category="camera")        capture or detection failure
"""

import time
import asyncio
import logging
from typing import Optional

import cv2

from core.cancellation import CancellationToken
from core.events import EventBus, Events
from core.types import LandmarkObservation
from modules.capture.observation_slot import LatestObservation
from modules.detection.hand_detector import HandDetector

logger = logging.getLogger(__name__)


class WebcamLandmarkSource:
    """Owns the camera and the detector; writes observations into a slot."""

    def __init__(self, config: dict, detector: HandDetector,
                 slot: LatestObservation, event_bus: EventBus):
        self._device_id = config.get("device_id", 0)
        self._width = config.get("width", 640)
        self._height = config.get("height", 480)
        self._flip_h = config.get("flip_horizontal", True)
        self._warmup_frames = config.get("warmup_frames", 5)

        self._detector = detector
        self._slot = slot
        self._bus = event_bus
        self._cap = None
        self._frames = 0
        self._last_frame_time = -1.0

    @property
    def frames_processed(self) -> int:
        return self._frames

    def open(self) -> bool:
        """Open the camera; False if the device is unavailable."""
        self._cap = cv2.VideoCapture(self._device_id)
        if not self._cap.isOpened():
            logger.error("Failed to open camera %d", self._device_id)
            self._cap = None
            return False

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        actual_w = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("Camera opened: %dx%d (requested %dx%d)",
                    actual_w, actual_h, self._width, self._height)

        for _ in range(self._warmup_frames):
            self._cap.read()

        self._detector.initialize()
        return True

    def close(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._detector.close()
        logger.info("Camera stopped after %d frames", self._frames)

    def process_frame(self) -> Optional[LandmarkObservation]:
        """Grab one frame and detect hands (blocking)."""
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        if self._flip_h:
            frame = cv2.flip(frame, 1)

        timestamp = time.time()
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return self._detector.observe(rgb, timestamp)

    async def run(self, token: CancellationToken):
        """Producer loop; returns when ``token`` is cancelled or capture fails."""
        loop = asyncio.get_running_loop()

        opened = await loop.run_in_executor(None, self.open)
        if not opened:
            error = RuntimeError("Camera %d could not be opened" % self._device_id)
            self._bus.emit(Events.ERROR, error=error, category="camera")
            return

        self._bus.emit(Events.WEBCAM_ENABLED)
        try:
            while not token.cancelled:
                observation = await loop.run_in_executor(None, self.process_frame)
                if observation is None:
                    await asyncio.sleep(0.01)
                    continue
                # Same timestamp twice means the camera handed back a stale frame
                if observation.timestamp == self._last_frame_time:
                    continue
                self._last_frame_time = observation.timestamp
                self._frames += 1
                self._slot.write(observation)
                self._bus.emit(Events.PREDICTION, observation=observation,
                               timestamp=observation.timestamp)
        except Exception as e:
            logger.error("Landmark source failed: %s", e)
            self._bus.emit(Events.ERROR, error=e, category="camera")
        finally:
            await loop.run_in_executor(None, self.close)
