# heatshield/core/params.py
from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError

__all__ = [
    "ParameterSpec",
    "ParameterSpace",
    "DetectorRoles",
    "default_space",
    "default_roles",
    "space_identity_hash",
]


def _validate_range(name: str, lo: Any, hi: Any) -> Tuple[float, float]:
    """Validate a closed range. Both ends must be finite floats with lo < hi."""
    try:
        lo_f, hi_f = float(lo), float(hi)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: range bounds must be numbers, got ({lo!r}, {hi!r})") from None
    if not (math.isfinite(lo_f) and math.isfinite(hi_f)):
        raise ConfigurationError(f"{name}: range bounds must be finite")
    if lo_f >= hi_f:
        raise ConfigurationError(f"{name}: range lower bound {lo_f} must be below upper bound {hi_f}")
    return lo_f, hi_f


@dataclass(frozen=True)
class ParameterSpec:
    """One named parameter of the execution vector.

    ``margin`` is the distance inside each range bound that counts as the safety
    boundary (0.1 below the cognitive ceiling in the default space).
    ``tolerance`` and ``weight`` drive pattern similarity.
    """

    name: str
    lo: float
    hi: float
    margin: float = 0.0
    tolerance: float = 0.3
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not str(self.name).strip():
            raise ConfigurationError("parameter name must be non-empty")
        lo, hi = _validate_range(self.name, self.lo, self.hi)
        object.__setattr__(self, "lo", lo)
        object.__setattr__(self, "hi", hi)
        if not (0.0 <= float(self.margin) < (hi - lo) / 2.0):
            raise ConfigurationError(f"{self.name}: margin must be in [0, span/2)")
        if not float(self.tolerance) > 0.0:
            raise ConfigurationError(f"{self.name}: similarity tolerance must be > 0")
        if not float(self.weight) > 0.0:
            raise ConfigurationError(f"{self.name}: similarity weight must be > 0")

    @property
    def span(self) -> float:
        return self.hi - self.lo

    @property
    def valid_range(self) -> Tuple[float, float]:
        return (self.lo, self.hi)

    def safety_boundary(self, side: str = "upper") -> float:
        return self.hi - self.margin if side == "upper" else self.lo + self.margin

    def contains(self, value: float) -> bool:
        return self.lo <= value <= self.hi


class ParameterSpace:
    """Closed, ordered set of parameters with their valid ranges."""

    def __init__(self, specs: Iterable[ParameterSpec]) -> None:
        ordered = tuple(specs)
        if not ordered:
            raise ConfigurationError("parameter space must declare at least one parameter")
        names = [s.name for s in ordered]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ConfigurationError(f"duplicate parameter name(s): {dupes}")
        self._specs: Tuple[ParameterSpec, ...] = ordered
        self._by_name: Dict[str, ParameterSpec] = {s.name: s for s in ordered}

    @classmethod
    def from_ranges(cls, ranges: Mapping[str, Sequence[float]], **overrides: Mapping[str, Any]) -> "ParameterSpace":
        """Build a space from ``{name: (lo, hi)}``; ``overrides`` maps a name to extra spec fields.

        Example:
            ParameterSpace.from_ranges({"x": (2.0, 3.0)}, x={"margin": 0.1})
        """
        specs = []
        for name, rng in ranges.items():
            try:
                lo, hi = rng
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name}: range must be a (lo, hi) pair") from None
            extra = dict(overrides.get(name, {}))
            specs.append(ParameterSpec(name=str(name), lo=lo, hi=hi, **extra))
        return cls(specs)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self._specs)

    def __getitem__(self, name: str) -> ParameterSpec:
        return self._by_name[name]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[ParameterSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)


@dataclass(frozen=True)
class DetectorRoles:
    """Which parameters each detector watches. ``None`` disables that detector."""

    target: Optional[str] = None
    target_side: str = "upper"

    # Correlation: pair, mean reference levels per member, baseline of the second member.
    correlation: Optional[Tuple[str, str]] = None
    correlation_levels: Tuple[float, float] = (2.5, 1.2)
    correlation_baseline: float = 1.0

    # Divergence: correlated pair plus a third parameter that must be falling.
    divergence: Optional[Tuple[str, str, str]] = None

    interaction: Optional[Tuple[str, str]] = None
    resonance: Optional[Tuple[str, str]] = None

    # Amplification: (driver, amplifier); fires when the amplifier's mean exceeds the level.
    amplification: Optional[Tuple[str, str]] = None
    amplification_level: float = 1.5

    # Driver oscillation: one parameter reversing direction often, whatever its amplitude.
    driver_oscillation: Optional[str] = None
    driver_oscillation_strength: float = 0.7

    # Flatline lock: (locked, agitator); fires when the agitator's mean exceeds the level.
    lock: Optional[Tuple[str, str]] = None
    lock_level: float = 0.8

    def __post_init__(self) -> None:
        if self.target_side not in ("upper", "lower"):
            raise ConfigurationError(f"target_side must be 'upper' or 'lower', got {self.target_side!r}")

    def referenced(self) -> Tuple[str, ...]:
        out = []
        if self.target is not None:
            out.append(self.target)
        if self.driver_oscillation is not None:
            out.append(self.driver_oscillation)
        for group in (
            self.correlation,
            self.divergence,
            self.interaction,
            self.resonance,
            self.amplification,
            self.lock,
        ):
            if group is not None:
                out.extend(group)
        return tuple(out)

    def check_against(self, space: ParameterSpace) -> None:
        unknown = sorted({n for n in self.referenced() if n not in space})
        if unknown:
            raise ConfigurationError(f"detector roles reference unknown parameter(s): {unknown}")


def default_space() -> ParameterSpace:
    """The six-parameter space of the cognitive-buffer formula."""
    return ParameterSpace(
        [
            ParameterSpec("ai_cognitive", 2.0, 3.0, margin=0.1, tolerance=0.2, weight=2.0),
            ParameterSpec("personality", 0.0, 1.0),
            ParameterSpec("intelligence", 0.5, 2.0),
            ParameterSpec("chaos", 0.0, 1.0),
            ParameterSpec("chaos_exponent", 1.0, 3.0),
            ParameterSpec("velocity", 0.5, 2.0),
        ]
    )


def default_roles() -> DetectorRoles:
    return DetectorRoles(
        target="ai_cognitive",
        correlation=("ai_cognitive", "velocity"),
        divergence=("chaos", "chaos_exponent", "intelligence"),
        interaction=("chaos", "velocity"),
        resonance=("chaos", "chaos_exponent"),
        amplification=("velocity", "intelligence"),
        driver_oscillation="velocity",
        lock=("personality", "chaos"),
    )


def space_identity_hash(space: ParameterSpace) -> str:
    """Stable 16-hex identity of a parameter space (names, ranges, similarity knobs).

    Persisted alongside learned patterns so signatures recorded under a
    different space are not matched against the current one.
    """
    payload = {"parameters": [[s.name, s.lo, s.hi, s.margin, s.tolerance, s.weight] for s in space]}
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
