# tests/test_history.py
from __future__ import annotations

import pytest

from heatshield.core.history import ExecutionRecord, HistoryBuffer

pytestmark = pytest.mark.unit


def _rec(x: float, ts: int = 0) -> ExecutionRecord:
    return ExecutionRecord(parameters={"x": x}, timestamp=ts)


class TestHistoryBuffer:
    def test_fifo_eviction_past_capacity(self):
        buf = HistoryBuffer(3)
        for i in range(5):
            buf.append(_rec(float(i), ts=i))

        assert len(buf) == 3
        assert [r.parameters["x"] for r in buf.view()] == [2.0, 3.0, 4.0]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryBuffer(0)


class TestHistoryView:
    def test_tail_and_negative_index(self):
        buf = HistoryBuffer(10)
        for i in range(6):
            buf.append(_rec(float(i)))
        view = buf.view()

        tail = view.tail(3)
        assert len(tail) == 3
        assert tail[0].parameters["x"] == 3.0
        assert tail[-1].parameters["x"] == 5.0
        with pytest.raises(IndexError):
            tail[3]

    def test_tail_longer_than_view_returns_everything(self):
        buf = HistoryBuffer(10)
        for i in range(2):
            buf.append(_rec(float(i)))
        assert len(buf.view().tail(50)) == 2

    def test_series_is_oldest_first(self):
        buf = HistoryBuffer(10)
        for v in (0.1, 0.2, 0.3):
            buf.append(_rec(v))
        assert buf.view().series("x").tolist() == pytest.approx([0.1, 0.2, 0.3])

    def test_view_is_pinned_to_length_at_creation(self):
        buf = HistoryBuffer(10)
        buf.append(_rec(1.0))
        view = buf.view()
        buf.append(_rec(2.0))
        assert len(view) == 1


class TestExecutionRecord:
    def test_parameters_are_frozen_floats(self):
        rec = ExecutionRecord(parameters={"x": 1}, timestamp=5)
        assert rec.parameters["x"] == 1.0
        assert isinstance(rec.parameters["x"], float)
        with pytest.raises(TypeError):
            rec.parameters["x"] = 2.0  # type: ignore[index]

    def test_caller_mapping_mutation_does_not_leak(self):
        raw = {"x": 1.0}
        rec = ExecutionRecord(parameters=raw, timestamp=5)
        raw["x"] = 9.0
        assert rec.parameters["x"] == 1.0
