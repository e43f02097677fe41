# heatshield/core/__init__.py
"""
Public re-exports for the heat shield core.
Downstream code should import from `heatshield.core` rather than the submodules.
"""

from __future__ import annotations

from .artifacts import AnalysisV1, ShieldStateV1
from .detectors import DetectorEnsemble, Finding
from .engine import HeatShield
from .errors import (
    ConfigurationError,
    HeatShieldError,
    InputValidationError,
    InsufficientHistoryError,
    OutOfRangeError,
    PersistenceError,
)
from .events import Notifier, ShieldEvent
from .history import ExecutionRecord, HistoryBuffer
from .params import DetectorRoles, ParameterSpace, ParameterSpec, default_roles, default_space
from .patterns import PatternMemory
from .persistence import JsonFileStore, NullStore, StateStore

__all__ = [
    "HeatShield",
    "AnalysisV1",
    "ShieldStateV1",
    "Finding",
    "DetectorEnsemble",
    "PatternMemory",
    "ExecutionRecord",
    "HistoryBuffer",
    "ParameterSpace",
    "ParameterSpec",
    "DetectorRoles",
    "default_space",
    "default_roles",
    "Notifier",
    "ShieldEvent",
    "StateStore",
    "JsonFileStore",
    "NullStore",
    "HeatShieldError",
    "ConfigurationError",
    "InputValidationError",
    "OutOfRangeError",
    "InsufficientHistoryError",
    "PersistenceError",
]
