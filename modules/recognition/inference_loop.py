"""
Real-time gesture inference loop.

A cooperative asyncio loop with two states, STOPPED (initial) and RUNNING.
Every ``interval_ms`` it reads the most recent landmark observation,
classifies the first detected hand against the current model, and emits:

    label_observed(label, confidence)         every tick with a hand
    label_changed(previous, label, confidence) only when the top label differs
                                               from the last emitted one

Ticks without a current model, or without a hand, do nothing.
``stop()`` is idempotent; once it returns no new tick begins.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Tuple

from core.cancellation import CancellationToken
from core.events import EventBus, Events
from core.model_slot import ModelSlot
from core.types import InferenceState
from models.base import top_prediction
from modules.utils.logger import log_timing
from training.dataset import flatten

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 125


class LoopState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class InferenceLoop:
    """Classifies live observations and debounces label changes.

    Usage::

        loop = InferenceLoop(slot, models, bus, interval_ms=125)
        loop.start()          # inside a running event loop
        ...
        loop.stop()
    """

    def __init__(self, source, models: ModelSlot, event_bus: EventBus,
                 interval_ms: int = DEFAULT_INTERVAL_MS):
        """
        Args:
            source: object with ``read() -> LandmarkObservation | None``
            models: slot holding the current model (read-only here)
            event_bus: bus owned by the caller; receives label events
            interval_ms: tick cadence
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive, got %r" % (interval_ms,))
        self._source = source
        self._models = models
        self._bus = event_bus
        self._interval = interval_ms / 1000.0

        self._state = LoopState.STOPPED
        self._inference = InferenceState()
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._tick_count = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is LoopState.RUNNING

    @property
    def inference_state(self) -> InferenceState:
        return self._inference

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def interval_ms(self) -> float:
        return self._interval * 1000.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """STOPPED -> RUNNING. Must be called from inside a running event loop.

        Returns:
            False if the loop was already running.
        """
        if self._state is LoopState.RUNNING:
            return False

        self._state = LoopState.RUNNING
        self._inference.reset()
        self._inference.enabled = True
        self._token = CancellationToken()
        self._task = asyncio.get_running_loop().create_task(self._run(self._token))
        logger.info("Inference loop started (interval=%.0fms)", self.interval_ms)
        self._bus.emit(Events.INFERENCE_STARTED)
        return True

    def stop(self):
        """RUNNING -> STOPPED. Safe to call any number of times."""
        if self._state is LoopState.STOPPED:
            return
        self._state = LoopState.STOPPED
        self._inference.enabled = False
        if self._token is not None:
            self._token.cancel("stop() called")
        # Only the pending sleep is interrupted; a tick never awaits
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("Inference loop stopped after %d ticks", self._tick_count)
        self._bus.emit(Events.INFERENCE_STOPPED)

    def toggle(self) -> bool:
        """Start if stopped, stop if running. Returns the new running state."""
        if self.is_running:
            self.stop()
        else:
            self.start()
        return self.is_running

    async def wait_closed(self):
        """Wait until the background task has fully exited."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, token: CancellationToken):
        try:
            while not token.cancelled:
                try:
                    self.tick()
                except Exception as e:
                    logger.error("Inference tick failed: %s", e)
                    self._bus.emit(Events.ERROR, error=e, category="inference")
                if token.cancelled:
                    break
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            logger.debug("Inference task cancelled")

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    @log_timing
    def tick(self) -> Optional[Tuple[str, float]]:
        """Classify the latest observation once.

        Returns:
            (label, confidence) of the top prediction, or None if the tick
            was a no-op (no model, no observation or no hand).
        """
        self._tick_count += 1

        artifact = self._models.current
        if artifact is None:
            return None

        observation = self._source.read()
        if observation is None or not observation.has_hand:
            return None

        features = flatten(observation.primary_hand)
        label, confidence = top_prediction(artifact.model.predict(features))

        self._inference.last_observed_label = label
        self._bus.emit(Events.LABEL_OBSERVED, label=label, confidence=confidence)

        previous = self._inference.last_emitted_label
        if label != previous:
            self._inference.last_emitted_label = label
            self._bus.emit(Events.LABEL_CHANGED, previous=previous, label=label,
                           confidence=confidence)

        return label, confidence

    def run_ticks(self, count: int) -> list:
        """Run ``count`` ticks back to back without the event loop."""
        return [self.tick() for _ in range(count)]
