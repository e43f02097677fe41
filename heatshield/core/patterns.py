# heatshield/core/patterns.py
"""Learned violation signatures and similarity matching.

A signature is the trailing run of parameter vectors that preceded a violation
the ensemble failed to predict. Each carries its own match threshold that
drifts with feedback: reinforcement lowers it (matches more easily), weakening
raises it, and a signature that keeps misfiring without support is pruned.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .artifacts import PatternSignatureV1
from .detectors import Category, Finding
from .errors import ConfigurationError
from .history import HistoryView, now_ms
from .params import ParameterSpace

logger = logging.getLogger(__name__)

__all__ = ["PatternSignature", "PatternMatch", "PatternMemory", "new_pattern_id"]


def new_pattern_id(ts_ms: Optional[int] = None) -> str:
    ts = now_ms() if ts_ms is None else int(ts_ms)
    return f"pattern_{ts}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class PatternSignature:
    id: str
    signature: Tuple[Mapping[str, float], ...]
    match_threshold: float
    occurrences: int = 1
    time_to_violation: float = 1.0
    reason: Optional[str] = None
    created_at: int = 0
    last_seen: int = 0

    def to_model(self) -> PatternSignatureV1:
        return PatternSignatureV1(
            id=self.id,
            signature=tuple(dict(v) for v in self.signature),
            match_threshold=self.match_threshold,
            occurrences=self.occurrences,
            time_to_violation=self.time_to_violation,
            reason=self.reason,
            created_at=self.created_at,
            last_seen=self.last_seen,
        )


@dataclass(frozen=True)
class PatternMatch:
    pattern: PatternSignature
    similarity: float

    @property
    def pattern_id(self) -> str:
        return self.pattern.id

    def to_finding(self) -> Finding:
        reason = self.pattern.reason or (
            f"Current execution matches learned violation pattern {self.pattern.id} "
            f"({self.similarity * 100:.0f}% similarity)"
        )
        return Finding(
            risk=self.similarity,
            pattern=self.pattern.id,
            time_to_violation=self.pattern.time_to_violation,
            reason=reason,
            category=Category.UNCLASSIFIED,
        )


class PatternMemory:
    """Mapping of pattern id to signature, plus the feedback rules that move thresholds."""

    def __init__(
        self,
        space: ParameterSpace,
        *,
        learning_rate: float = 0.05,
        initial_threshold: float = 0.8,
        threshold_floor: float = 0.6,
        threshold_ceiling: float = 0.95,
        prune_above: float = 0.94,
        prune_min_occurrences: int = 3,
        signature_length: int = 5,
    ) -> None:
        if not (0.0 <= threshold_floor < threshold_ceiling <= 1.0):
            raise ConfigurationError("pattern threshold bounds must satisfy 0 <= floor < ceiling <= 1")
        if not (threshold_floor <= initial_threshold <= threshold_ceiling):
            raise ConfigurationError("initial pattern threshold must lie within [floor, ceiling]")
        if int(signature_length) < 1:
            raise ConfigurationError("signature_length must be >= 1")
        self.space = space
        self.learning_rate = float(learning_rate)
        self.initial_threshold = float(initial_threshold)
        self.floor = float(threshold_floor)
        self.ceiling = float(threshold_ceiling)
        self.prune_above = float(prune_above)
        self.prune_min_occurrences = int(prune_min_occurrences)
        self.signature_length = int(signature_length)
        self._patterns: Dict[str, PatternSignature] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def __iter__(self) -> Iterator[PatternSignature]:
        return iter(list(self._patterns.values()))

    def get(self, pattern_id: str) -> Optional[PatternSignature]:
        return self._patterns.get(pattern_id)

    def clamp(self, threshold: float) -> float:
        return min(self.ceiling, max(self.floor, float(threshold)))

    # ---- Matching ----

    def similarity(self, signature: Sequence[Mapping[str, float]], window: Sequence[Mapping[str, float]]) -> float:
        """Mean over positions of the weighted per-field closeness ``max(0, 1 - |d|/tol)``."""
        if len(signature) != len(window) or not signature:
            return 0.0
        total_weight = sum(spec.weight for spec in self.space)
        per_position: List[float] = []
        for stored, current in zip(signature, window):
            acc = 0.0
            for spec in self.space:
                a, b = stored.get(spec.name), current.get(spec.name)
                if a is None or b is None:
                    continue
                acc += spec.weight * max(0.0, 1.0 - abs(float(a) - float(b)) / spec.tolerance)
            per_position.append(acc / total_weight)
        return float(sum(per_position) / len(per_position))

    def match(self, view: HistoryView) -> Optional[PatternMatch]:
        """Best signature whose similarity is strictly above its own threshold."""
        if not self._patterns or len(view) < self.signature_length:
            return None
        best: Optional[PatternMatch] = None
        cache: Dict[int, List[Mapping[str, float]]] = {}
        for pat in self._patterns.values():
            n = len(pat.signature)
            if n > len(view):
                continue
            window = cache.setdefault(n, view.tail(n).vectors())
            sim = self.similarity(pat.signature, window)
            if sim > pat.match_threshold and (best is None or sim > best.similarity):
                best = PatternMatch(pattern=pat, similarity=sim)
        return best

    # ---- Feedback rules ----

    def learn(self, view: HistoryView, *, reason: Optional[str] = None, ts_ms: Optional[int] = None) -> Optional[PatternSignature]:
        """Snapshot the trailing window as a new signature; None when history is too short."""
        if len(view) < self.signature_length:
            return None
        ts = now_ms() if ts_ms is None else int(ts_ms)
        pat = PatternSignature(
            id=new_pattern_id(ts),
            signature=tuple(dict(v) for v in view.tail(self.signature_length).vectors()),
            match_threshold=self.initial_threshold,
            occurrences=1,
            time_to_violation=1.0,
            reason=reason or "Matches a previously missed violation pattern",
            created_at=ts,
            last_seen=ts,
        )
        self._patterns[pat.id] = pat
        logger.info("Learned violation pattern %s (threshold %.2f).", pat.id, pat.match_threshold)
        return pat

    def reinforce(self, pattern_id: str, *, ts_ms: Optional[int] = None) -> Optional[PatternSignature]:
        pat = self._patterns.get(pattern_id)
        if pat is None:
            return None
        updated = replace(
            pat,
            occurrences=pat.occurrences + 1,
            match_threshold=max(self.floor, pat.match_threshold - self.learning_rate),
            last_seen=now_ms() if ts_ms is None else int(ts_ms),
        )
        self._patterns[pattern_id] = updated
        return updated

    def weaken(self, pattern_id: str, *, ts_ms: Optional[int] = None) -> Optional[str]:
        """Raise the threshold; returns "weakened", "pruned", or None for unknown ids."""
        pat = self._patterns.get(pattern_id)
        if pat is None:
            return None
        threshold = min(self.ceiling, pat.match_threshold + self.learning_rate)
        if threshold > self.prune_above and pat.occurrences < self.prune_min_occurrences:
            del self._patterns[pattern_id]
            logger.info("Pruned pattern %s after repeated false positives.", pattern_id)
            return "pruned"
        self._patterns[pattern_id] = replace(
            pat,
            match_threshold=threshold,
            last_seen=now_ms() if ts_ms is None else int(ts_ms),
        )
        return "weakened"

    # ---- Persistence ----

    def to_models(self) -> Dict[str, PatternSignatureV1]:
        return {pid: pat.to_model() for pid, pat in self._patterns.items()}

    def load_models(self, models: Mapping[str, PatternSignatureV1]) -> int:
        """Replace memory contents; thresholds are clamped, foreign signatures skipped."""
        loaded: Dict[str, PatternSignature] = {}
        names = set(self.space.names)
        for pid, m in models.items():
            if not m.signature or any(set(v.keys()) != names for v in m.signature):
                logger.warning("Skipping stored pattern %s: parameters do not match the configured space.", pid)
                continue
            if any(not math.isfinite(float(x)) for v in m.signature for x in v.values()):
                logger.warning("Skipping stored pattern %s: non-finite signature values.", pid)
                continue
            loaded[pid] = PatternSignature(
                id=m.id,
                signature=tuple(dict(v) for v in m.signature),
                match_threshold=self.clamp(m.match_threshold),
                occurrences=int(m.occurrences),
                time_to_violation=float(m.time_to_violation),
                reason=m.reason,
                created_at=int(m.created_at),
                last_seen=int(m.last_seen),
            )
        self._patterns = loaded
        return len(loaded)
