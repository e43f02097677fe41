# heatshield/core/errors.py
from __future__ import annotations

from typing import Optional, Tuple

__all__ = [
    "HeatShieldError",
    "ConfigurationError",
    "InputValidationError",
    "OutOfRangeError",
    "InsufficientHistoryError",
    "PersistenceError",
]


class HeatShieldError(Exception):
    """Base class for all heatshield errors."""


class ConfigurationError(HeatShieldError, ValueError):
    """Invalid settings or parameter space; raised before any record is accepted."""


class InputValidationError(HeatShieldError, ValueError):
    """An execution record cannot be scored. Never escapes ``HeatShield.analyze``."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[float] = None,
        valid_range: Optional[Tuple[float, float]] = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.valid_range = valid_range


class OutOfRangeError(InputValidationError):
    """A parameter lies outside its closed valid range."""

    def __init__(self, field: str, value: float, valid_range: Tuple[float, float]) -> None:
        lo, hi = valid_range
        super().__init__(
            f"{field} value ({value}) outside safe range [{lo}, {hi}]",
            field=field,
            value=value,
            valid_range=(float(lo), float(hi)),
        )


class InsufficientHistoryError(HeatShieldError):
    """Not enough (or degenerate) history for a statistic; treated as "no finding"."""

    def __init__(self, needed: int, available: int) -> None:
        super().__init__(f"need at least {needed} records, have {available}")
        self.needed = int(needed)
        self.available = int(available)


class PersistenceError(HeatShieldError):
    """Loading or saving engine state failed. Logged by the engine, never fatal."""
