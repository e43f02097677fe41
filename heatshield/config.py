# heatshield/config.py
from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from heatshield.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "HEATSHIELD_"

# Engine defaults; every key maps onto a ShieldSettings field.
DEFAULTS: Dict[str, Any] = {
    "history_window": 100,
    "sensitivity_threshold": 0.75,
    "threshold_floor": 0.6,
    "threshold_ceiling": 0.95,
    "threshold_step": 0.05,
    "min_predictions": 10,
    "fp_raise_above": 0.3,
    "fp_lower_below": 0.1,
    "learning_rate": 0.05,
    "flexibility": 0.7,
    "pattern_initial_threshold": 0.8,
    "pattern_floor": 0.6,
    "pattern_ceiling": 0.95,
    "pattern_prune_above": 0.94,
    "pattern_prune_min_occurrences": 3,
    "signature_length": 5,
    "compound_amplification": 1.2,
    "compound_cap": 0.95,
    "compound_primary_cutoff": 0.6,
    "compound_secondary_cutoff": 0.5,
    "high_risk": 0.8,
    "high_risk_factor": 0.85,
    "buffer_band_frac": 0.2,
    "buffer_max_adjustment": 0.05,
    # Optional paths; None keeps the engine in memory / unjournaled.
    "state_path": None,
    "event_journal": None,
}


def _coerce_env(v: str) -> Any:
    s = v.strip()
    try:
        if s.lower() in ("true", "false"):
            return s.lower() == "true"
        if s.isdigit() or (s.startswith("-") and s[1:].isdigit()):
            return int(s)
        return float(s)
    except ValueError:
        return s


def load_cfg(path: str | Path | None = None) -> Dict[str, Any]:
    """DEFAULTS, then a JSON file (``path`` or $HEATSHIELD_CFG), then HEATSHIELD_<KEY> env overrides."""
    cfg = dict(DEFAULTS)
    raw = path if path else os.getenv(f"{ENV_PREFIX}CFG", "")
    p = Path(raw) if raw else None
    if p is not None and p.is_file():
        try:
            loaded = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config file %s: %s", p, e)
        else:
            if isinstance(loaded, dict):
                cfg.update(loaded)
            else:
                logger.warning("Ignoring config file %s: top level must be a JSON object.", p)
    elif p is not None:
        logger.warning("Config file %s not found; using defaults.", p)

    for k in list(cfg.keys()):
        env = os.getenv(f"{ENV_PREFIX}{k.upper()}", None)
        if env is not None:
            cfg[k] = _coerce_env(env)
    return cfg


def _unit(name: str, v: float) -> None:
    if not (math.isfinite(v) and 0.0 <= v <= 1.0):
        raise ConfigurationError(f"{name} must lie in [0, 1], got {v}")


@dataclass(frozen=True)
class ShieldSettings:
    """Validated engine settings. Construct via ``from_mapping(load_cfg())`` or directly."""

    history_window: int = 100
    sensitivity_threshold: float = 0.75
    threshold_floor: float = 0.6
    threshold_ceiling: float = 0.95
    threshold_step: float = 0.05
    min_predictions: int = 10
    fp_raise_above: float = 0.3
    fp_lower_below: float = 0.1
    learning_rate: float = 0.05
    flexibility: float = 0.7
    pattern_initial_threshold: float = 0.8
    pattern_floor: float = 0.6
    pattern_ceiling: float = 0.95
    pattern_prune_above: float = 0.94
    pattern_prune_min_occurrences: int = 3
    signature_length: int = 5
    compound_amplification: float = 1.2
    compound_cap: float = 0.95
    compound_primary_cutoff: float = 0.6
    compound_secondary_cutoff: float = 0.5
    high_risk: float = 0.8
    high_risk_factor: float = 0.85
    buffer_band_frac: float = 0.2
    buffer_max_adjustment: float = 0.05
    state_path: Optional[str] = None
    event_journal: Optional[str] = None

    def __post_init__(self) -> None:
        for f in fields(self):
            v = getattr(self, f.name)
            if f.name in ("state_path", "event_journal"):
                if v is not None:
                    object.__setattr__(self, f.name, str(v))
                continue
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ConfigurationError(f"{f.name} must be a number, got {v!r}")
            if f.type in (int, "int"):
                if float(v) != int(v):
                    raise ConfigurationError(f"{f.name} must be an integer, got {v!r}")
                object.__setattr__(self, f.name, int(v))
            else:
                object.__setattr__(self, f.name, float(v))

        if self.history_window < 1:
            raise ConfigurationError("history_window must be >= 1")
        if self.signature_length < 1:
            raise ConfigurationError("signature_length must be >= 1")
        if self.min_predictions < 1:
            raise ConfigurationError("min_predictions must be >= 1")
        if self.pattern_prune_min_occurrences < 0:
            raise ConfigurationError("pattern_prune_min_occurrences must be >= 0")
        if not (math.isfinite(self.learning_rate) and 0.0 <= self.learning_rate <= 1.0):
            raise ConfigurationError(f"learning_rate must lie in [0, 1], got {self.learning_rate}")
        if not (0.1 <= self.flexibility <= 0.9):
            raise ConfigurationError(f"flexibility must lie in [0.1, 0.9], got {self.flexibility}")

        for name in (
            "sensitivity_threshold",
            "threshold_floor",
            "threshold_ceiling",
            "fp_raise_above",
            "fp_lower_below",
            "pattern_initial_threshold",
            "pattern_floor",
            "pattern_ceiling",
            "pattern_prune_above",
            "compound_cap",
            "compound_primary_cutoff",
            "compound_secondary_cutoff",
            "high_risk",
            "high_risk_factor",
            "buffer_band_frac",
            "buffer_max_adjustment",
        ):
            _unit(name, getattr(self, name))

        if not self.threshold_floor < self.threshold_ceiling:
            raise ConfigurationError("threshold_floor must be below threshold_ceiling")
        if not (self.threshold_floor <= self.sensitivity_threshold <= self.threshold_ceiling):
            raise ConfigurationError("sensitivity_threshold must lie within [threshold_floor, threshold_ceiling]")
        if not self.pattern_floor < self.pattern_ceiling:
            raise ConfigurationError("pattern_floor must be below pattern_ceiling")
        if not (self.pattern_floor <= self.pattern_initial_threshold <= self.pattern_ceiling):
            raise ConfigurationError("pattern_initial_threshold must lie within [pattern_floor, pattern_ceiling]")
        if not self.threshold_step > 0.0:
            raise ConfigurationError("threshold_step must be > 0")
        if not self.compound_amplification >= 1.0:
            raise ConfigurationError("compound_amplification must be >= 1")
        if not self.buffer_band_frac > 0.0:
            raise ConfigurationError("buffer_band_frac must be > 0")

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "ShieldSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in cfg.keys() if k not in known)
        if unknown:
            logger.warning("Ignoring unknown settings key(s): %s", unknown)
        return cls(**{k: v for k, v in cfg.items() if k in known})

    def replace(self, **changes: Any) -> "ShieldSettings":
        merged = {f.name: getattr(self, f.name) for f in fields(self)}
        merged.update(changes)
        return ShieldSettings(**merged)
