# tests/test_engine.py
from __future__ import annotations

import math
from typing import List

import pytest

from heatshield.core.artifacts import ShieldStateV1
from heatshield.core.errors import PersistenceError
from heatshield.core.events import Notifier, ShieldEvent
from heatshield.core.feedback import Outcome
from heatshield.core.params import DetectorRoles
from heatshield.core.persistence import JsonFileStore

pytestmark = pytest.mark.unit


class _BrokenStore:
    """Raises plain OS errors instead of PersistenceError."""

    def load(self):
        raise OSError("disk unreadable")

    def save(self, state) -> None:
        raise OSError("disk full")


class _FailingStore:
    def __init__(self) -> None:
        self.saves = 0

    def load(self):
        raise PersistenceError("disk on fire")

    def save(self, state) -> None:
        self.saves += 1
        raise PersistenceError("disk on fire")


@pytest.fixture
def x_engine(make_space, make_engine):
    """Single-parameter engine with no role-bound detectors."""

    def _make(**kw):
        return make_engine(space=make_space({"x": (2.0, 3.0)}), roles=DetectorRoles(), **kw)

    return _make


def _feed(engine, values):
    return [engine.analyze({"parameters": {"x": v}, "timestamp": 1_000 + i}) for i, v in enumerate(values)]


class TestAnalyzeGate:
    def test_steady_stream_is_normal(self, make_engine, steady_params):
        engine = make_engine()
        for i in range(25):
            result = engine.analyze({"parameters": steady_params, "timestamp": i})
            assert result.valid is True
            assert result.kind == "normal"
            assert result.warning is False
        assert engine.history_length == 25
        m = engine.get_metrics()
        assert m["total_executions"] == 25
        assert m["early_warnings"] == 0

    def test_out_of_range_is_immediate(self, make_engine, steady_params):
        engine = make_engine()
        result = engine.analyze({"parameters": {**steady_params, "ai_cognitive": 3.5}})
        assert result.valid is False
        assert result.kind == "immediate"
        assert result.warning is False
        assert result.field == "ai_cognitive"
        assert result.value == pytest.approx(3.5)
        assert result.range == (2.0, 3.0)
        assert "outside safe range" in result.reason
        assert engine.history_length == 0
        assert engine.get_metrics()["total_executions"] == 1

    @pytest.mark.parametrize(
        "execution",
        [
            None,
            42,
            {"parameters": None},
            {"parameters": {"x": "abc"}},
            {"parameters": {"x": float("nan")}},
            {"parameters": {"x": 2.5, "y": 1.0}},
            {"parameters": {}},
            {"parameters": {"x": 2.5}, "timestamp": "soon"},
            {"parameters": {"x": 10**400}},
            {"parameters": {"x": 2.5}, "timestamp": float("inf")},
            {"parameters": {"x": 2.5}, "result": 10**400},
        ],
    )
    def test_garbage_never_raises(self, x_engine, execution):
        engine = x_engine()
        result = engine.analyze(execution)
        assert result.valid is False
        assert result.kind == "immediate"
        assert engine.history_length == 0

    def test_accepts_execution_records(self, x_engine):
        from heatshield.core.history import ExecutionRecord

        engine = x_engine()
        result = engine.analyze(ExecutionRecord(parameters={"x": 2.5}, timestamp=5))
        assert result.valid is True
        assert engine.history_length == 1

    def test_history_is_bounded(self, x_engine):
        engine = x_engine(history_window=3)
        _feed(engine, [2.5] * 10)
        assert engine.history_length == 3


class TestAnalyzeScoring:
    def test_trend_toward_bound_warns(self, x_engine):
        engine = x_engine()
        events: List[ShieldEvent] = []
        engine.notifier.subscribe(events.append)

        results = _feed(engine, [round(2.70 + 0.06 * i, 2) for i in range(6)])

        informational = results[4]
        assert informational.kind == "informational"
        assert informational.warning is False
        assert informational.pattern == "increasing_x"
        assert informational.risk == pytest.approx(0.5)

        warned = results[5]
        assert warned.kind == "predictive"
        assert warned.warning is True
        assert warned.pattern == "increasing_x"
        assert warned.source == "ensemble"
        assert warned.risk == pytest.approx(1.0)
        assert warned.mitigation == "alert"
        assert warned.adjusted_risk == pytest.approx((1 - 0.1 * 0.7) * 0.85)
        assert warned.time_to_violation == 0.0

        assert [e.kind for e in events] == ["early_warning"]
        assert events[0].payload["pattern"] == "increasing_x"
        m = engine.get_metrics()
        assert m["early_warnings"] == 1
        assert m["predicted_violations"] == 1
        assert m["mitigations_applied"] == 0

    def test_proximity_buffering_near_target_boundary(self, make_engine, steady_params):
        engine = make_engine()
        result = engine.analyze({"parameters": {**steady_params, "ai_cognitive": 2.8}})
        assert result.valid is True
        assert result.buffered is True
        assert result.buffer_adjustment == pytest.approx(0.025)
        assert engine.get_metrics()["buffer_events"] == 1

    def test_last_analysis_tracks_latest(self, x_engine):
        engine = x_engine()
        assert engine.last_analysis is None
        r = engine.analyze({"parameters": {"x": 2.5}})
        assert engine.last_analysis is r

    def test_tight_velocity_oscillation_is_reported(self, make_engine, steady_params):
        engine = make_engine()
        results = [
            engine.analyze({"parameters": {**steady_params, "velocity": v}, "timestamp": i})
            for i, v in enumerate([1.0, 1.1] * 10)
        ]
        last = results[-1]
        assert last.kind == "informational"
        assert last.pattern == "velocity_oscillation"
        assert last.category == "oscillation"
        assert last.mitigation == "adjust"
        assert last.risk == pytest.approx(0.6)


class TestFeedback:
    def test_missed_violation_learns_pattern_that_then_warns(self, x_engine):
        engine = x_engine()
        events: List[ShieldEvent] = []
        engine.notifier.subscribe(events.append)

        _feed(engine, [2.5] * 5)
        assert engine.record_outcome(True) is Outcome.MISSED_VIOLATION
        assert len(engine.patterns) == 1
        assert [e.kind for e in events] == ["pattern_learned"]

        result = engine.analyze({"parameters": {"x": 2.5}})
        assert result.warning is True
        assert result.source == "pattern"
        assert result.pattern in engine.patterns
        assert result.category == "unclassified"

        m = engine.get_metrics()
        assert m["missed_violations"] == 1
        assert m["adaptive_adjustments"] == 1

    def test_true_positive_reinforces(self, x_engine):
        engine = x_engine()
        _feed(engine, [2.5] * 5)
        engine.record_outcome(True)
        result = engine.analyze({"parameters": {"x": 2.5}})

        assert engine.record_outcome(True, result) is Outcome.TRUE_POSITIVE
        pattern = engine.patterns.get(result.pattern)
        assert pattern.occurrences == 2
        assert pattern.match_threshold == pytest.approx(0.75)

    def test_repeated_false_positives_prune(self, x_engine):
        engine = x_engine()
        events: List[ShieldEvent] = []
        engine.notifier.subscribe(events.append)

        _feed(engine, [2.5] * 5)
        engine.record_outcome(True)
        result = engine.analyze({"parameters": {"x": 2.5}})
        assert result.warning is True

        outcomes = [engine.record_outcome(False) for _ in range(3)]
        assert outcomes == [Outcome.FALSE_POSITIVE] * 3
        assert len(engine.patterns) == 0
        assert events[-1].kind == "pattern_pruned"
        assert events[-1].payload["patternId"] == result.pattern
        assert engine.get_metrics()["false_positives"] == 3

    def test_quiet_stream_without_violation_is_true_negative(self, x_engine):
        engine = x_engine()
        engine.analyze({"parameters": {"x": 2.5}})
        assert engine.record_outcome(False) is Outcome.TRUE_NEGATIVE
        assert engine.get_metrics()["true_negatives"] == 1

    def test_outcome_without_any_analysis(self, x_engine):
        engine = x_engine()
        assert engine.record_outcome(True) is Outcome.MISSED_VIOLATION
        assert len(engine.patterns) == 0

    def test_sensitivity_rises_after_many_false_positives(self, x_engine, warning_analysis):
        engine = x_engine()
        events: List[ShieldEvent] = []
        engine.notifier.subscribe(events.append)
        for _ in range(6):
            engine.record_outcome(True, warning_analysis())
        for _ in range(4):
            engine.record_outcome(False, warning_analysis())

        assert engine.sensitivity_threshold == pytest.approx(0.80)
        assert events[-1].kind == "sensitivity_adjusted"
        assert events[-1].payload["direction"] == "raised"
        m = engine.get_metrics()
        assert m["false_positive_rate"] == pytest.approx(0.4)
        assert m["adaptive_adjustments"] == 1

    def test_four_false_alarms_then_a_hit_keep_sensitivity(self, x_engine, warning_analysis):
        engine = x_engine()
        for _ in range(4):
            assert engine.record_outcome(False, warning_analysis()) is Outcome.FALSE_POSITIVE
        assert engine.record_outcome(True, warning_analysis()) is Outcome.TRUE_POSITIVE

        assert engine.sensitivity_threshold == pytest.approx(0.75)
        m = engine.get_metrics()
        assert (m["false_positives"], m["true_positives"]) == (4, 1)
        assert m["adaptive_adjustments"] == 0

class TestPersistence:
    def test_store_failures_are_not_fatal(self, x_engine, caplog):
        store = _FailingStore()
        engine = x_engine(store=store)
        _feed(engine, [2.5] * 5)
        engine.record_outcome(True)

        assert len(engine.patterns) == 1
        assert store.saves == 1
        assert engine.save() is False
        assert "Could not persist" in caplog.text

    def test_arbitrary_store_errors_are_not_fatal(self, x_engine, caplog):
        engine = x_engine(store=_BrokenStore())
        _feed(engine, [2.5] * 5)
        assert engine.record_outcome(True) is Outcome.MISSED_VIOLATION
        assert len(engine.patterns) == 1
        assert engine.save() is False
        assert engine.load() is False
        assert "continuing in memory" in caplog.text
        assert "starting fresh" in caplog.text

    def test_round_trip_through_json_file(self, tmp_path, x_engine):
        path = tmp_path / "state.json"
        first = x_engine(store=JsonFileStore(path))
        _feed(first, [2.5] * 5)
        first.record_outcome(True)
        assert path.is_file()

        second = x_engine(store=JsonFileStore(path))
        assert len(second.patterns) == 1
        assert second.get_metrics()["missed_violations"] == 1
        result = second.analyze({"parameters": {"x": 2.5}})
        # Fresh history: a single record cannot fill a signature.
        assert result.warning is False

    def test_stored_sensitivity_overrides_configured(self, tmp_path, x_engine):
        path = tmp_path / "state.json"
        first = x_engine(store=JsonFileStore(path))
        state = first.snapshot_state().model_copy(
            update={"settings": first.snapshot_state().settings.model_copy(update={"sensitivity_threshold": 0.85})}
        )
        JsonFileStore(path).save(state)

        second = x_engine(store=JsonFileStore(path))
        assert second.sensitivity_threshold == pytest.approx(0.85)

    def test_patterns_from_other_space_are_skipped(self, tmp_path, make_space, make_engine):
        path = tmp_path / "state.json"
        first = make_engine(space=make_space({"x": (2.0, 3.0)}), roles=DetectorRoles(), store=JsonFileStore(path))
        for i in range(5):
            first.analyze({"parameters": {"x": 2.5}, "timestamp": i})
        first.record_outcome(True)

        other = make_engine(space=make_space({"x": (0.0, 10.0)}), roles=DetectorRoles(), store=JsonFileStore(path))
        assert len(other.patterns) == 0
        assert other.get_metrics()["missed_violations"] == 1

    def test_snapshot_is_a_valid_state(self, x_engine):
        engine = x_engine()
        snap = engine.snapshot_state()
        assert isinstance(snap, ShieldStateV1)
        assert snap.settings.sensitivity_threshold == pytest.approx(0.75)
        assert len(snap.space_hash) == 16

    def test_corrupt_state_starts_fresh(self, tmp_path, x_engine):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        engine = x_engine(store=JsonFileStore(path))
        assert len(engine.patterns) == 0
        assert engine.load() is False


class TestNotifier:
    def test_observer_failure_does_not_break_analysis(self, x_engine):
        notifier = Notifier()

        def boom(event):
            raise RuntimeError("observer down")

        notifier.subscribe(boom)
        engine = x_engine(notifier=notifier)
        results = _feed(engine, [round(2.70 + 0.06 * i, 2) for i in range(6)])
        assert results[-1].warning is True


def test_normal_result_has_no_time_to_violation(x_engine):
    result = x_engine().analyze({"parameters": {"x": 2.5}})
    assert result.kind == "normal"
    assert math.isinf(result.time_to_violation)
    assert result.model_dump(mode="json", by_alias=True)["timeToViolation"] is None
