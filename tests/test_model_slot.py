"""
Tests for the Versioned Model Slot
==================================
"""

import pytest

from core.model_slot import ModelSlot


class StubModel:
    def __init__(self, name):
        self.labels = [name]


class TestModelSlot:
    """Test suite for last-started-wins adoption."""

    @pytest.fixture
    def slot(self):
        return ModelSlot()

    def test_starts_empty(self, slot):
        assert slot.current is None
        assert slot.version == 0

    def test_reserve_is_monotonic(self, slot):
        assert [slot.reserve() for _ in range(3)] == [1, 2, 3]

    def test_adopt(self, slot):
        model = StubModel("a")
        assert slot.adopt(model, slot.reserve(), source="train")
        assert slot.current.model is model
        assert slot.current.source == "train"
        assert slot.current.labels == ["a"]

    def test_newer_operation_wins_even_if_it_finishes_first(self, slot):
        train_version = slot.reserve()   # long training run starts
        load_version = slot.reserve()    # load starts later, finishes first

        assert slot.adopt(StubModel("loaded"), load_version, source="load")
        assert not slot.adopt(StubModel("trained"), train_version, source="train")

        assert slot.current.labels == ["loaded"]
        assert slot.discarded_count == 1

    def test_in_order_completion_replaces(self, slot):
        first = slot.reserve()
        second = slot.reserve()

        assert slot.adopt(StubModel("first"), first)
        assert slot.adopt(StubModel("second"), second)
        assert slot.version == second

    def test_clear(self, slot):
        slot.adopt(StubModel("a"), slot.reserve())
        slot.clear()
        assert slot.current is None
