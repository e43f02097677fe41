# heatshield/core/feedback.py
"""Outcome classification, running counters and the sensitivity tuner."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Optional

from .artifacts import MetricsV1
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["Outcome", "classify_outcome", "Metrics", "Retune", "SensitivityTuner"]


class Outcome(Enum):
    TRUE_POSITIVE = "true_positive"
    FALSE_POSITIVE = "false_positive"
    MISSED_VIOLATION = "missed_violation"
    TRUE_NEGATIVE = "true_negative"


def classify_outcome(warned: bool, violation_occurred: bool) -> Outcome:
    if warned:
        return Outcome.TRUE_POSITIVE if violation_occurred else Outcome.FALSE_POSITIVE
    return Outcome.MISSED_VIOLATION if violation_occurred else Outcome.TRUE_NEGATIVE


@dataclass
class Metrics:
    total_executions: int = 0
    predicted_violations: int = 0
    early_warnings: int = 0
    true_positives: int = 0
    false_positives: int = 0
    missed_violations: int = 0
    true_negatives: int = 0
    adaptive_adjustments: int = 0
    deep_pattern_detections: int = 0
    mitigations_applied: int = 0
    buffer_events: int = 0

    def count(self, outcome: Outcome) -> None:
        if outcome is Outcome.TRUE_POSITIVE:
            self.true_positives += 1
        elif outcome is Outcome.FALSE_POSITIVE:
            self.false_positives += 1
        elif outcome is Outcome.MISSED_VIOLATION:
            self.missed_violations += 1
        else:
            self.true_negatives += 1

    @property
    def classified_predictions(self) -> int:
        return self.true_positives + self.false_positives

    @property
    def false_positive_rate(self) -> Optional[float]:
        n = self.classified_predictions
        return None if n == 0 else self.false_positives / n

    def to_model(self) -> MetricsV1:
        return MetricsV1(**asdict(self))

    @classmethod
    def from_model(cls, model: MetricsV1) -> "Metrics":
        return cls(**{f.name: int(getattr(model, f.name)) for f in fields(cls)})


@dataclass(frozen=True)
class Retune:
    old: float
    new: float
    false_positive_rate: float
    direction: str


class SensitivityTuner:
    """Moves the warning threshold from accumulated TP/FP/FN counts.

    Nothing happens until ``min_predictions`` warnings have been classified.
    Too many false positives raise the threshold; very few false positives
    combined with at least one missed violation lower it.
    """

    def __init__(
        self,
        threshold: float = 0.75,
        *,
        floor: float = 0.6,
        ceiling: float = 0.95,
        step: float = 0.05,
        min_predictions: int = 10,
        raise_above: float = 0.3,
        lower_below: float = 0.1,
    ) -> None:
        if not (0.0 <= floor < ceiling <= 1.0):
            raise ConfigurationError("sensitivity bounds must satisfy 0 <= floor < ceiling <= 1")
        if step <= 0.0:
            raise ConfigurationError("sensitivity step must be > 0")
        if int(min_predictions) < 1:
            raise ConfigurationError("min_predictions must be >= 1")
        self.floor = float(floor)
        self.ceiling = float(ceiling)
        self.step = float(step)
        self.min_predictions = int(min_predictions)
        self.raise_above = float(raise_above)
        self.lower_below = float(lower_below)
        self._threshold = self._clamp(threshold)

    def _clamp(self, value: float) -> float:
        return min(self.ceiling, max(self.floor, float(value)))

    @property
    def threshold(self) -> float:
        return self._threshold

    def set(self, value: float) -> None:
        self._threshold = self._clamp(value)

    def evaluate(self, metrics: Metrics) -> Optional[Retune]:
        if metrics.classified_predictions < self.min_predictions:
            return None
        fp_rate = metrics.false_positive_rate or 0.0
        old = self._threshold
        if fp_rate > self.raise_above:
            new, direction = self._clamp(old + self.step), "raised"
        elif fp_rate < self.lower_below and metrics.missed_violations > 0:
            new, direction = self._clamp(old - self.step), "lowered"
        else:
            return None
        if new == old:
            return None
        self._threshold = new
        logger.info("Sensitivity threshold %s %.2f -> %.2f (false positive rate %.2f).", direction, old, new, fp_rate)
        return Retune(old=old, new=new, false_positive_rate=fp_rate, direction=direction)
