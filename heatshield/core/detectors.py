# heatshield/core/detectors.py
"""Hand-authored detectors over trailing windows of the execution history.

Each detector is a plain function ``(view, space, roles) -> Optional[Finding]``.
``DetectorEnsemble`` slices the history to each detector's own window, skips
detectors whose minimum window is not met, isolates failures, and folds the
results into one finding (or a compound one when two independent findings are
both high).

Thresholds below are empirically chosen constants.
Fractions marked ``_FRAC`` scale with the parameter's span so the same rules
apply to any configured range.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientHistoryError
from .history import HistoryView
from .params import DetectorRoles, ParameterSpace
from .stats import classify_trend, differences, ols_slope, oscillation_metric, pearson, time_to_boundary

logger = logging.getLogger(__name__)

__all__ = [
    "Category",
    "Finding",
    "DetectorSpec",
    "EnsembleReport",
    "DetectorEnsemble",
    "DEFAULT_DETECTORS",
    "detect_trend",
    "detect_correlation",
    "detect_divergence",
    "detect_oscillation",
    "detect_driver_oscillation",
    "detect_oscillation_growth",
    "detect_acceleration",
    "detect_interaction",
    "detect_convergence",
    "detect_resonance",
    "detect_amplification",
    "detect_flatline_lock",
    "compound_finding",
]

INF = math.inf

TREND_STABLE_FRAC = 0.001
TREND_MIN_RATE_FRAC = 0.05
TREND_MIN_RISK = 0.4

CORRELATION_MIN_R = 0.7
CORRELATION_MIN_RISK = 0.6
CORRELATION_MAX_RISK = 0.9
DIVERGENCE_MIN_R = 0.6
DIVERGENCE_MAX_SLOPE = -0.05

OSC_MIN_STRENGTH = 0.6
OSC_MIN_AMPLITUDE_FRAC = 0.15
OSC_MAX_RISK = 0.85
DRIVER_OSC_RISK = 0.6
DRIVER_OSC_TTV = 10.0
GROWTH_MIN_FRAC = 0.05
GROWTH_MAX_RISK = 0.88

ACCEL_MIN_FRAC = 0.001
ACCEL_MAX_RISK = 0.9

INTERACTION_MIN_SLOPE = 0.01
INTERACTION_MIN_LEVEL = 0.8
INTERACTION_MAX_RISK = 0.85

CONVERGENCE_BAND_FRAC = 0.3
CONVERGENCE_MAX_RISK = 0.9

RESONANCE_MIN_RISK = 0.5
RESONANCE_MAX_RISK = 0.9
AMPLIFICATION_MIN_RATE = 0.1
AMPLIFICATION_MIN_RISK = 0.6
AMPLIFICATION_MAX_RISK = 0.8
LOCK_MAX_SLOPE = 0.001


class Category(Enum):
    """Finding families; the mitigation selector keys on these."""

    CORRELATION = "correlation"
    INTERACTION = "interaction"
    CONVERGENCE = "convergence"
    ACCELERATION = "acceleration"
    OSCILLATION = "oscillation"
    COMPOUND = "compound"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class Finding:
    risk: float
    pattern: Optional[str]
    time_to_violation: float = INF
    reason: Optional[str] = None
    category: Category = Category.UNCLASSIFIED
    components: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "risk", float(min(1.0, max(0.0, self.risk))))


def _round(x: float) -> float:
    """Half-up rounding that passes infinities through."""
    if not math.isfinite(x):
        return INF
    return float(math.floor(x + 0.5))


# ---- Detectors ----


def detect_trend(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Per-parameter OLS trend toward the matching range bound."""
    best: Optional[Finding] = None
    for spec in space:
        y = view.series(spec.name)
        slope = ols_slope(y)
        direction = classify_trend(slope, TREND_STABLE_FRAC * spec.span)
        if direction == "stable" or abs(slope) <= TREND_MIN_RATE_FRAC * spec.span:
            continue
        current = float(y[-1])
        distance = spec.hi - current if direction == "increasing" else current - spec.lo
        steps = max(0.0, distance) / abs(slope)
        risk = min(1.0, 1.0 / (steps + 1.0))
        if risk <= TREND_MIN_RISK:
            continue
        if best is None or risk > best.risk:
            best = Finding(
                risk=risk,
                pattern=f"{direction}_{spec.name}",
                time_to_violation=_round(steps),
                reason=(
                    f"{spec.name} {direction} too rapidly ({slope:.4f}/execution), "
                    f"may leave its safe range in ~{int(_round(steps))} executions"
                ),
            )
    return best


def detect_correlation(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    if roles.correlation is None:
        return None
    a, b = roles.correlation
    xa, xb = view.series(a), view.series(b)
    r = pearson(xa, xb)
    if r <= CORRELATION_MIN_R:
        return None

    mean_a, mean_b = float(xa.mean()), float(xb.mean())
    level_a, level_b = roles.correlation_levels
    risk = r * (1.2 if mean_a > level_a else 0.8) * (1.2 if mean_b > level_b else 0.8)
    if risk <= CORRELATION_MIN_RISK:
        return None

    excess = mean_b - roles.correlation_baseline
    ttv = max(3.0, _round(10.0 * (space[a].hi - mean_a) / excess)) if excess > 0 else INF
    return Finding(
        risk=min(CORRELATION_MAX_RISK, risk),
        pattern=f"{a}_{b}_correlation",
        time_to_violation=ttv,
        reason=(
            f"Strong correlation between {a} ({mean_a:.2f}) and {b} ({mean_b:.2f}) "
            "may accelerate toward buffer violation"
        ),
        category=Category.CORRELATION,
    )


def detect_divergence(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    if roles.divergence is None:
        return None
    a, b, falling = roles.divergence
    r = pearson(view.series(a), view.series(b))
    slope = ols_slope(view.series(falling))
    if r > DIVERGENCE_MIN_R and slope < DIVERGENCE_MAX_SLOPE:
        return Finding(
            risk=0.75,
            pattern=f"{a}_{falling}_divergence",
            time_to_violation=7.0,
            reason=(
                f"Increasing {a}/{b} with decreasing {falling} may lead to "
                "unpredictable outcomes and potential buffer violations"
            ),
            category=Category.CORRELATION,
        )
    return None


def detect_oscillation(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Per-parameter direction reversals with a material amplitude."""
    best: Optional[Finding] = None
    for spec in space:
        osc = oscillation_metric(view.series(spec.name))
        amp_frac = osc.amplitude / spec.span
        if osc.strength <= OSC_MIN_STRENGTH or amp_frac <= OSC_MIN_AMPLITUDE_FRAC:
            continue
        risk = min(OSC_MAX_RISK, osc.strength * (1.0 + amp_frac))
        if best is None or risk > best.risk:
            best = Finding(
                risk=risk,
                pattern=f"{spec.name}_oscillation",
                time_to_violation=_round(8.0 / amp_frac),
                reason=(
                    f"Strong {spec.name} oscillations detected (strength: {osc.strength:.2f}, "
                    f"amplitude: {osc.amplitude:.2f}), may cross buffer boundary"
                ),
                category=Category.OSCILLATION,
            )
    return best


def detect_driver_oscillation(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Frequent reversals of the driver parameter, even when too small for :func:`detect_oscillation`."""
    if roles.driver_oscillation is None:
        return None
    spec = space[roles.driver_oscillation]
    osc = oscillation_metric(view.series(spec.name))
    if osc.strength <= roles.driver_oscillation_strength:
        return None
    if osc.amplitude / spec.span > OSC_MIN_AMPLITUDE_FRAC and osc.strength > OSC_MIN_STRENGTH:
        # Already reported by the per-parameter rule.
        return None
    return Finding(
        risk=DRIVER_OSC_RISK,
        pattern=f"{spec.name}_oscillation",
        time_to_violation=DRIVER_OSC_TTV,
        reason=f"Rapid {spec.name} oscillations (strength: {osc.strength:.2f}) may destabilize the formula",
        category=Category.OSCILLATION,
    )


def detect_oscillation_growth(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    if roles.target is None:
        return None
    spec = space[roles.target]
    y = view.series(spec.name)
    mid = y.size // 2
    early = oscillation_metric(y[:mid])
    late = oscillation_metric(y[mid:])
    growth_frac = (late.amplitude - early.amplitude) / spec.span
    if growth_frac <= GROWTH_MIN_FRAC or late.strength <= OSC_MIN_STRENGTH:
        return None
    return Finding(
        risk=min(GROWTH_MAX_RISK, 0.6 + growth_frac + late.strength * 0.2),
        pattern="growing_oscillations",
        time_to_violation=_round(6.0 / growth_frac),
        reason=(
            f"{spec.name} oscillation amplitude increasing ({growth_frac * spec.span:.3f}/segment), "
            "may cause parameter values to exceed safe bounds"
        ),
        category=Category.OSCILLATION,
    )


def detect_acceleration(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Mean second difference of the target toward its unsafe side."""
    if roles.target is None:
        return None
    spec = space[roles.target]
    side = roles.target_side
    y = view.series(spec.name)
    first, second = differences(y)
    accel = float(second.mean())
    toward = accel if side == "upper" else -accel
    if toward <= ACCEL_MIN_FRAC * spec.span:
        return None

    t = time_to_boundary(float(y[-1]), float(first[-1]), accel, spec.safety_boundary(side), side=side)
    ttv = max(2.0, _round(t)) if math.isfinite(t) else INF
    return Finding(
        risk=min(ACCEL_MAX_RISK, 0.6 + abs(accel) * 100.0 / spec.span),
        pattern=f"{spec.name}_acceleration",
        time_to_violation=ttv,
        reason=(
            f"{spec.name} is accelerating at {accel * 1000:.2f}e-3/step², "
            "may cross buffer boundary rapidly"
        ),
        category=Category.ACCELERATION,
    )


def detect_interaction(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Trend of the pointwise product of two parameters."""
    if roles.interaction is None:
        return None
    a, b = roles.interaction
    product = view.series(a) * view.series(b)
    slope = ols_slope(product)
    current = float(product[-1])
    if slope <= INTERACTION_MIN_SLOPE or current <= INTERACTION_MIN_LEVEL:
        return None
    return Finding(
        risk=min(INTERACTION_MAX_RISK, 0.5 + current * 0.2 + slope * 10.0),
        pattern=f"{a}_{b}_interaction",
        time_to_violation=_round(8.0 / (slope * current)),
        reason=(
            f"{a}-{b} interaction ({current:.2f}) increasing at rate {slope:.3f}, "
            "may amplify formula instability"
        ),
        category=Category.INTERACTION,
    )


def detect_convergence(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Distance of the target to its safety boundary, closing in."""
    if roles.target is None:
        return None
    spec = space[roles.target]
    side = roles.target_side
    boundary = spec.safety_boundary(side)
    y = view.series(spec.name)
    distances = boundary - y if side == "upper" else y - boundary
    trend = ols_slope(distances)
    current = float(distances[-1])
    band = CONVERGENCE_BAND_FRAC * spec.span
    if trend >= 0 or current >= band:
        return None
    return Finding(
        risk=min(CONVERGENCE_MAX_RISK, 0.5 + (band - current) / spec.span + abs(trend) / spec.span),
        pattern="buffer_boundary_convergence",
        time_to_violation=max(2.0, _round(current / abs(trend))),
        reason=(
            f"{spec.name} converging toward buffer boundary, "
            f"currently {current:.3f} away with negative trend of {trend:.4f}"
        ),
        category=Category.CONVERGENCE,
    )


def detect_resonance(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """Two parameters rising together."""
    if roles.resonance is None:
        return None
    a, b = roles.resonance
    ra, rb = ols_slope(view.series(a)), ols_slope(view.series(b))
    if classify_trend(ra, TREND_STABLE_FRAC) != "increasing" or classify_trend(rb, TREND_STABLE_FRAC) != "increasing":
        return None
    combined = ra * rb
    risk = min(RESONANCE_MAX_RISK, combined * 10.0)
    if risk <= RESONANCE_MIN_RISK:
        return None
    return Finding(
        risk=risk,
        pattern=f"{a}_{b}_resonance",
        time_to_violation=_round(5.0 / combined),
        reason=f"Resonance detected: {a} and {b} increasing together, may destabilize formula integrity",
        category=Category.INTERACTION,
    )


def detect_amplification(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """A fast-rising driver while the amplifier sits high."""
    if roles.amplification is None:
        return None
    driver, amplifier = roles.amplification
    rate = ols_slope(view.series(driver))
    if rate <= AMPLIFICATION_MIN_RATE or float(view.series(amplifier).mean()) <= roles.amplification_level:
        return None
    risk = min(AMPLIFICATION_MAX_RISK, rate * 2.0)
    if risk <= AMPLIFICATION_MIN_RISK:
        return None
    return Finding(
        risk=risk,
        pattern=f"{driver}_{amplifier}_amplification",
        time_to_violation=_round(3.0 / rate),
        reason=f"High {amplifier} amplifying {driver} increases, may exceed computational stability threshold",
        category=Category.CORRELATION,
    )


def detect_flatline_lock(view: HistoryView, space: ParameterSpace, roles: DetectorRoles) -> Optional[Finding]:
    """One parameter frozen while another runs hot."""
    if roles.lock is None:
        return None
    locked, agitator = roles.lock
    if abs(ols_slope(view.series(locked))) >= LOCK_MAX_SLOPE:
        return None
    if float(view.series(agitator).mean()) <= roles.lock_level:
        return None
    return Finding(
        risk=0.7,
        pattern=f"{locked}_{agitator}_lock",
        time_to_violation=5.0,
        reason=f"{locked} locked with high {agitator} values, may cause stagnation and violation",
    )


# ---- Ensemble ----

DetectorFn = Callable[[HistoryView, ParameterSpace, DetectorRoles], Optional[Finding]]


@dataclass(frozen=True)
class DetectorSpec:
    name: str
    fn: DetectorFn
    min_window: int
    window: int


DEFAULT_DETECTORS: Tuple[DetectorSpec, ...] = (
    DetectorSpec("trend", detect_trend, min_window=5, window=10),
    DetectorSpec("resonance", detect_resonance, min_window=10, window=10),
    DetectorSpec("amplification", detect_amplification, min_window=10, window=10),
    DetectorSpec("flatline_lock", detect_flatline_lock, min_window=10, window=10),
    DetectorSpec("correlation", detect_correlation, min_window=10, window=20),
    DetectorSpec("divergence", detect_divergence, min_window=10, window=20),
    DetectorSpec("oscillation", detect_oscillation, min_window=10, window=20),
    DetectorSpec("driver_oscillation", detect_driver_oscillation, min_window=10, window=20),
    DetectorSpec("convergence", detect_convergence, min_window=5, window=20),
    DetectorSpec("acceleration", detect_acceleration, min_window=10, window=20),
    DetectorSpec("interaction", detect_interaction, min_window=8, window=20),
    DetectorSpec("oscillation_growth", detect_oscillation_growth, min_window=15, window=20),
)


def compound_finding(first: Finding, second: Finding, *, amplification: float = 1.2, cap: float = 0.95) -> Finding:
    return Finding(
        risk=min(cap, first.risk * amplification),
        pattern="compound_risk",
        time_to_violation=min(first.time_to_violation, second.time_to_violation),
        reason=f"Multiple high-risk patterns detected: {first.pattern} and {second.pattern}",
        category=Category.COMPOUND,
        components=(str(first.pattern), str(second.pattern)),
    )


@dataclass(frozen=True)
class EnsembleReport:
    findings: Tuple[Finding, ...] = ()
    top: Optional[Finding] = None
    failed: Tuple[str, ...] = field(default_factory=tuple)


class DetectorEnsemble:
    def __init__(
        self,
        space: ParameterSpace,
        roles: DetectorRoles,
        *,
        detectors: Sequence[DetectorSpec] = DEFAULT_DETECTORS,
        compound_amplification: float = 1.2,
        compound_cap: float = 0.95,
        compound_primary_cutoff: float = 0.6,
        compound_secondary_cutoff: float = 0.5,
    ) -> None:
        roles.check_against(space)
        self.space = space
        self.roles = roles
        self.detectors = tuple(detectors)
        self.compound_amplification = float(compound_amplification)
        self.compound_cap = float(compound_cap)
        self.primary_cutoff = float(compound_primary_cutoff)
        self.secondary_cutoff = float(compound_secondary_cutoff)

    def run(self, view: HistoryView) -> EnsembleReport:
        findings: List[Finding] = []
        failed: List[str] = []
        for det in self.detectors:
            if len(view) < det.min_window:
                continue
            window = view.tail(det.window)
            try:
                found = det.fn(window, self.space, self.roles)
            except InsufficientHistoryError:
                continue
            except Exception:
                logger.debug("Detector %s failed; treating as no finding.", det.name, exc_info=True)
                failed.append(det.name)
                continue
            if found is not None and found.risk > 0.0 and np.isfinite(found.risk):
                findings.append(found)

        # Stable sort keeps detector order on equal risk.
        findings.sort(key=lambda f: f.risk, reverse=True)
        top: Optional[Finding] = findings[0] if findings else None
        if (
            len(findings) >= 2
            and findings[0].risk > self.primary_cutoff
            and findings[1].risk > self.secondary_cutoff
        ):
            top = compound_finding(
                findings[0],
                findings[1],
                amplification=self.compound_amplification,
                cap=self.compound_cap,
            )
        return EnsembleReport(findings=tuple(findings), top=top, failed=tuple(failed))
