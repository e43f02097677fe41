# tests/test_mitigation.py
from __future__ import annotations

import pytest

from heatshield.core.aggregator import aggregate
from heatshield.core.detectors import Category, Finding
from heatshield.core.mitigation import Strategy, proximity_buffer, select_mitigation
from heatshield.core.params import ParameterSpec

pytestmark = pytest.mark.unit


class TestSelectMitigation:
    @pytest.mark.parametrize(
        "category,strategy,reduction",
        [
            (Category.CORRELATION, Strategy.THROTTLE, 0.3),
            (Category.INTERACTION, Strategy.THROTTLE, 0.3),
            (Category.CONVERGENCE, Strategy.BUFFER, 0.4),
            (Category.ACCELERATION, Strategy.BUFFER, 0.4),
            (Category.OSCILLATION, Strategy.ADJUST, 0.25),
            (Category.COMPOUND, Strategy.COMPOUND, 0.5),
            (Category.UNCLASSIFIED, Strategy.ALERT, 0.1),
        ],
    )
    def test_category_table(self, category, strategy, reduction):
        plan = select_mitigation(Finding(risk=0.5, pattern="p", category=category), flexibility=0.7)
        assert plan is not None
        assert plan.strategy is strategy
        assert plan.risk == pytest.approx(0.5)
        assert plan.adjusted_risk == pytest.approx(0.5 * (1 - reduction * 0.7))

    def test_high_risk_gets_extra_discount(self):
        plan = select_mitigation(Finding(risk=0.9, pattern="p", category=Category.CONVERGENCE), flexibility=0.7)
        assert plan.adjusted_risk == pytest.approx(0.9 * (1 - 0.4 * 0.7) * 0.85)

    def test_nothing_to_mitigate(self):
        assert select_mitigation(None) is None
        assert select_mitigation(Finding(risk=0.0, pattern=None)) is None


class TestProximityBuffer:
    @pytest.fixture
    def spec(self):
        return ParameterSpec("ai_cognitive", 2.0, 3.0, margin=0.1)

    def test_inside_band_scales_linearly(self, spec):
        assert proximity_buffer(2.8, spec) == pytest.approx(0.025)

    def test_outside_band(self, spec):
        assert proximity_buffer(2.5, spec) is None

    def test_past_boundary_gets_full_adjustment(self, spec):
        assert proximity_buffer(2.95, spec) == pytest.approx(0.05)

    def test_lower_side(self, spec):
        assert proximity_buffer(2.2, spec, "lower") == pytest.approx(0.025)


class TestAggregate:
    def test_ensemble_warning_takes_precedence(self):
        v = aggregate([("ensemble", Finding(0.8, "e")), ("pattern", Finding(0.99, "p"))], 0.75)
        assert v.warning is True
        assert v.source == "ensemble"
        assert v.finding.pattern == "e"

    def test_pattern_warns_when_ensemble_is_below_threshold(self):
        v = aggregate([("ensemble", Finding(0.5, "e")), ("pattern", Finding(0.9, "p"))], 0.75)
        assert v.warning is True
        assert v.source == "pattern"

    def test_below_threshold_is_informational(self):
        v = aggregate([("ensemble", Finding(0.5, "e")), ("pattern", Finding(0.5, "p"))], 0.75)
        assert v.warning is False
        assert v.source == "ensemble"
        assert v.risk == pytest.approx(0.5)

    def test_no_candidates(self):
        v = aggregate([("ensemble", None), ("pattern", None)], 0.75)
        assert v.finding is None
        assert v.warning is False
        assert v.risk == 0.0
