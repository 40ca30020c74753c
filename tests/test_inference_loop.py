"""
Tests for the Real-Time Inference Loop
======================================
"""

import asyncio

import pytest

from core.errors import ValidationError
from core.events import EventBus, Events
from core.model_slot import ModelSlot
from core.types import Landmark, LandmarkObservation
from models.base import top_prediction
from modules.recognition.inference_loop import InferenceLoop, LoopState


class ThresholdModel:
    """Predicts 'closed' when the mean coordinate is above 0.5, else 'open'."""

    labels = ["open", "closed"]

    def __init__(self):
        self.calls = 0

    def predict(self, features):
        self.calls += 1
        closed = float(sum(features)) / len(features) > 0.5
        return [("open", 0.1 if closed else 0.9), ("closed", 0.9 if closed else 0.1)]


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    recorded = {"observed": [], "changed": [], "errors": []}
    bus.subscribe(Events.LABEL_OBSERVED,
                  lambda label, confidence: recorded["observed"].append(label))
    bus.subscribe(Events.LABEL_CHANGED,
                  lambda previous, label, confidence: recorded["changed"].append((previous, label)))
    bus.subscribe(Events.ERROR,
                  lambda error, category: recorded["errors"].append(category))
    return recorded


@pytest.fixture
def models():
    slot = ModelSlot()
    slot.adopt(ThresholdModel(), slot.reserve())
    return slot


class TestTick:
    """Test suite for a single classification step."""

    def test_no_model_is_noop(self, fake_source, bus, events):
        fake_source.show(0.2)
        loop = InferenceLoop(fake_source, ModelSlot(), bus)

        assert loop.tick() is None
        assert events["observed"] == []
        assert fake_source.reads == 0

    def test_no_hand_is_noop(self, fake_source, models, bus, events):
        fake_source.hide()
        loop = InferenceLoop(fake_source, models, bus)

        assert loop.tick() is None
        assert events["observed"] == []

    def test_no_observation_is_noop(self, fake_source, models, bus, events):
        loop = InferenceLoop(fake_source, models, bus)

        assert loop.tick() is None
        assert loop.tick_count == 1

    def test_debounces_label_changes(self, fake_source, models, bus, events):
        loop = InferenceLoop(fake_source, models, bus)

        for center in (0.2, 0.2, 0.8, 0.8, 0.2):
            fake_source.show(center)
            loop.tick()

        assert events["observed"] == ["open", "open", "closed", "closed", "open"]
        assert events["changed"] == [(None, "open"), ("open", "closed"), ("closed", "open")]
        assert loop.inference_state.last_emitted_label == "open"

    def test_returns_top_prediction(self, fake_source, models, bus):
        fake_source.show(0.8)
        loop = InferenceLoop(fake_source, models, bus)

        label, confidence = loop.tick()
        assert label == "closed"
        assert confidence == pytest.approx(0.9)

    def test_uses_first_hand_only(self, models, bus, events, fake_source):
        fake_source.show(0.8)
        closed_hand = fake_source.observation.hands[0]
        open_hand = [Landmark(0.1, 0.1, 0.1)] * 21
        fake_source.observation = LandmarkObservation([closed_hand, open_hand], ["Left", "Right"])

        InferenceLoop(fake_source, models, bus).tick()
        assert events["observed"] == ["closed"]

    def test_short_hand_raises(self, models, bus, fake_source):
        fake_source.observation = LandmarkObservation([[Landmark(0.5, 0.5, 0.5)] * 5])

        with pytest.raises(ValidationError):
            InferenceLoop(fake_source, models, bus).tick()

    def test_run_ticks(self, fake_source, models, bus, events):
        fake_source.show(0.8)
        loop = InferenceLoop(fake_source, models, bus)

        results = loop.run_ticks(3)

        assert [label for label, _ in results] == ["closed"] * 3
        assert events["changed"] == [(None, "closed")]
        assert loop.tick_count == 3

    def test_invalid_interval(self, fake_source, models, bus):
        with pytest.raises(ValueError):
            InferenceLoop(fake_source, models, bus, interval_ms=0)


class TestLoopLifecycle:
    """Test suite for start/stop behaviour on a running event loop."""

    def test_runs_until_stopped(self, fake_source, models, bus, events):
        fake_source.show(0.2)

        async def scenario():
            loop = InferenceLoop(fake_source, models, bus, interval_ms=5)
            assert loop.start()
            assert not loop.start()
            await asyncio.sleep(0.06)
            loop.stop()
            ticks = loop.tick_count
            await loop.wait_closed()
            await asyncio.sleep(0.03)
            return loop, ticks

        loop, ticks_at_stop = asyncio.run(scenario())

        assert ticks_at_stop >= 2
        assert loop.tick_count == ticks_at_stop
        assert loop.state is LoopState.STOPPED
        # A steady label is announced once
        assert events["changed"] == [(None, "open")]

    def test_stop_is_idempotent(self, fake_source, models, bus):
        async def scenario():
            loop = InferenceLoop(fake_source, models, bus, interval_ms=5)
            loop.stop()
            loop.start()
            loop.stop()
            loop.stop()
            await loop.wait_closed()
            return loop

        loop = asyncio.run(scenario())
        assert not loop.is_running
        assert not loop.inference_state.enabled

    def test_restart_resets_debounce(self, fake_source, models, bus, events):
        fake_source.show(0.2)

        async def scenario():
            loop = InferenceLoop(fake_source, models, bus, interval_ms=5)
            loop.start()
            await asyncio.sleep(0.02)
            loop.stop()
            await loop.wait_closed()
            assert loop.toggle()
            await asyncio.sleep(0.02)
            loop.stop()
            await loop.wait_closed()

        asyncio.run(scenario())
        assert events["changed"] == [(None, "open"), (None, "open")]

    def test_tick_errors_are_reported(self, fake_source, models, bus, events):
        fake_source.observation = LandmarkObservation([[Landmark(0.5, 0.5, 0.5)] * 5])

        async def scenario():
            loop = InferenceLoop(fake_source, models, bus, interval_ms=5)
            loop.start()
            await asyncio.sleep(0.02)
            loop.stop()
            await loop.wait_closed()

        asyncio.run(scenario())
        assert events["errors"]
        assert set(events["errors"]) == {"inference"}

    def test_model_swap_mid_run(self, fake_source, bus, events):
        class AlwaysPoint:
            labels = ["point"]

            def predict(self, features):
                return [("point", 1.0)]

        slot = ModelSlot()
        slot.adopt(ThresholdModel(), slot.reserve())
        fake_source.show(0.2)
        loop = InferenceLoop(fake_source, slot, bus)

        loop.tick()
        slot.adopt(AlwaysPoint(), slot.reserve())
        loop.tick()

        assert events["changed"] == [(None, "open"), ("open", "point")]


def test_top_prediction_empty():
    with pytest.raises(ValueError):
        top_prediction([])


def test_started_without_model_stays_silent(fake_source, bus, events):
    fake_source.show(0.2)

    async def scenario():
        loop = InferenceLoop(fake_source, ModelSlot(), bus, interval_ms=5)
        loop.start()
        await asyncio.sleep(0.03)
        loop.stop()
        await loop.wait_closed()
        return loop

    loop = asyncio.run(scenario())
    assert loop.tick_count >= 2
    assert events == {"observed": [], "changed": [], "errors": []}
