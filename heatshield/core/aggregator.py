# heatshield/core/aggregator.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .detectors import Finding

__all__ = ["Candidate", "Verdict", "aggregate"]

# (source, finding); source is "ensemble" or "pattern".
Candidate = Tuple[str, Optional[Finding]]


@dataclass(frozen=True)
class Verdict:
    finding: Optional[Finding]
    source: Optional[str]
    warning: bool

    @property
    def risk(self) -> float:
        return 0.0 if self.finding is None else self.finding.risk


def aggregate(candidates: Sequence[Candidate], threshold: float) -> Verdict:
    """
    Pick the finding to report from candidates given in precedence order.

    The first candidate whose risk clears ``threshold`` is surfaced as a warning.
    When none clears it, the highest-risk candidate is reported with
    ``warning=False``; earlier candidates win ties.
    """
    present = [(src, f) for src, f in candidates if f is not None and f.risk > 0.0]
    for src, f in present:
        if f.risk > threshold:
            return Verdict(finding=f, source=src, warning=True)

    best: Optional[Tuple[str, Finding]] = None
    for src, f in present:
        if best is None or f.risk > best[1].risk:
            best = (src, f)
    if best is None:
        return Verdict(finding=None, source=None, warning=False)
    return Verdict(finding=best[1], source=best[0], warning=False)
