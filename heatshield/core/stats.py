# heatshield/core/stats.py
#
# Title: Slopes, correlations, oscillation metrics and boundary-crossing times
# Summary: Small NumPy helpers over one trailing window of a parameter series.
# Invariants: inputs are finite 1-D arrays; too-short inputs raise
#             InsufficientHistoryError; degenerate variance yields 0, never NaN;
#             oscillation strength ∈ [0,1], amplitude ∈ [0, max−min].
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .errors import InsufficientHistoryError

__all__ = [
    "OscillationMetric",
    "ols_slope",
    "classify_trend",
    "pearson",
    "oscillation_metric",
    "differences",
    "time_to_boundary",
]


def _as_series(values: Sequence[float], need: int) -> np.ndarray:
    a = np.asarray(values, dtype=float).reshape(-1)
    if a.size < need:
        raise InsufficientHistoryError(need, int(a.size))
    return a


def ols_slope(values: Sequence[float]) -> float:
    """Ordinary least-squares slope of value vs. index."""
    y = _as_series(values, 2)
    x = np.arange(y.size, dtype=float)
    xc = x - x.mean()
    den = float(np.dot(xc, xc))
    return float(np.dot(xc, y - y.mean()) / den)


def classify_trend(slope: float, eps: float) -> str:
    if abs(slope) < eps:
        return "stable"
    return "increasing" if slope > 0 else "decreasing"


def pearson(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation over the common trailing length; 0.0 when either side is flat."""
    n = min(len(a), len(b))
    if n < 3:
        raise InsufficientHistoryError(3, n)
    x = np.asarray(a, dtype=float)[-n:]
    y = np.asarray(b, dtype=float)[-n:]
    dx = x - x.mean()
    dy = y - y.mean()
    den = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if den == 0.0:
        return 0.0
    return float(np.clip(np.dot(dx, dy) / den, -1.0, 1.0))


@dataclass(frozen=True)
class OscillationMetric:
    strength: float
    amplitude: float


def oscillation_metric(values: Sequence[float], min_points: int = 6) -> OscillationMetric:
    """Direction changes normalized by the maximum possible count (n-2), plus range.

    Flat steps keep the previous direction, so a plateau never counts as a reversal.
    Series shorter than ``min_points`` report no oscillation.
    """
    y = np.asarray(values, dtype=float).reshape(-1)
    if y.size < max(3, int(min_points)):
        return OscillationMetric(0.0, 0.0)

    changes = 0
    prev = 0
    for step in np.sign(np.diff(y)):
        cur = int(step) if step != 0 else prev
        if prev != 0 and cur != 0 and cur != prev:
            changes += 1
        prev = cur

    strength = changes / float(y.size - 2)
    amplitude = float(y.max() - y.min())
    return OscillationMetric(float(min(1.0, max(0.0, strength))), amplitude)


def differences(values: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """First and second discrete differences."""
    y = _as_series(values, 3)
    first = np.diff(y)
    return first, np.diff(first)


def time_to_boundary(
    x0: float,
    velocity: float,
    accel: float,
    boundary: float,
    *,
    side: str = "upper",
    accel_eps: float = 1e-12,
) -> float:
    """Steps until ``x0 + v·t + ½·a·t²`` reaches ``boundary``.

    Returns the smallest positive root of ``½·a·t² + v·t + (x0 − boundary) = 0``,
    the linear estimate ``(boundary − x0)/v`` when ``|a| <= accel_eps``, 0.0 when
    ``x0`` already sits at or past the boundary on ``side``, and ``inf`` when no
    positive finite root exists.
    """
    gap = boundary - x0
    if (side == "upper" and gap <= 0.0) or (side == "lower" and gap >= 0.0):
        return 0.0

    if abs(accel) <= accel_eps:
        if velocity == 0.0:
            return math.inf
        t = gap / velocity
        return t if t > 0.0 else math.inf

    a = accel / 2.0
    b = velocity
    c = x0 - boundary
    disc = b * b - 4.0 * a * c
    if disc < 0.0:
        return math.inf
    root = math.sqrt(disc)
    positive = [t for t in ((-b + root) / (2.0 * a), (-b - root) / (2.0 * a)) if t > 0.0]
    return min(positive) if positive else math.inf
