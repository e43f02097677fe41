# heatshield/core/mitigation.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .detectors import Category, Finding
from .params import ParameterSpec

__all__ = [
    "Strategy",
    "STRATEGY_BY_CATEGORY",
    "REDUCTION_BY_STRATEGY",
    "MitigationPlan",
    "select_mitigation",
    "proximity_buffer",
]


class Strategy(Enum):
    THROTTLE = "throttle"
    BUFFER = "buffer"
    ADJUST = "adjust"
    COMPOUND = "compound"
    ALERT = "alert"


STRATEGY_BY_CATEGORY: Dict[Category, Strategy] = {
    Category.CORRELATION: Strategy.THROTTLE,
    Category.INTERACTION: Strategy.THROTTLE,
    Category.CONVERGENCE: Strategy.BUFFER,
    Category.ACCELERATION: Strategy.BUFFER,
    Category.OSCILLATION: Strategy.ADJUST,
    Category.COMPOUND: Strategy.COMPOUND,
    Category.UNCLASSIFIED: Strategy.ALERT,
}

# Fraction of risk each strategy removes at full flexibility.
REDUCTION_BY_STRATEGY: Dict[Strategy, float] = {
    Strategy.THROTTLE: 0.3,
    Strategy.BUFFER: 0.4,
    Strategy.ADJUST: 0.25,
    Strategy.COMPOUND: 0.5,
    Strategy.ALERT: 0.1,
}


@dataclass(frozen=True)
class MitigationPlan:
    strategy: Strategy
    risk: float
    adjusted_risk: float


def select_mitigation(
    finding: Optional[Finding],
    flexibility: float = 0.7,
    *,
    high_risk: float = 0.8,
    high_risk_factor: float = 0.85,
) -> Optional[MitigationPlan]:
    """Corrective strategy and discounted risk for a finding; None when there is nothing to mitigate.

    ``adjusted = risk * (1 - reduction * flexibility)``, with a further
    ``high_risk_factor`` applied when the raw risk exceeds ``high_risk``.
    """
    if finding is None or finding.risk <= 0.0:
        return None
    strategy = STRATEGY_BY_CATEGORY.get(finding.category, Strategy.ALERT)
    adjusted = finding.risk * (1.0 - REDUCTION_BY_STRATEGY[strategy] * flexibility)
    if finding.risk > high_risk:
        adjusted *= high_risk_factor
    return MitigationPlan(strategy=strategy, risk=finding.risk, adjusted_risk=max(0.0, min(finding.risk, adjusted)))


def proximity_buffer(
    value: float,
    spec: ParameterSpec,
    side: str = "upper",
    *,
    band_frac: float = 0.2,
    max_adjustment: float = 0.05,
) -> Optional[float]:
    """Buffer adjustment when ``value`` sits within the band inside its safety boundary.

    Scales linearly from ``max_adjustment`` at the boundary to 0 at the band edge.
    Values already on or past the boundary get the full adjustment.
    """
    boundary = spec.safety_boundary(side)
    distance = boundary - value if side == "upper" else value - boundary
    band = band_frac * spec.span
    if distance >= band:
        return None
    return max_adjustment * (1.0 - max(0.0, distance) / band)
