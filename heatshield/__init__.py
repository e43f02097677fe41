# heatshield/__init__.py
from importlib.metadata import PackageNotFoundError as _PNF
from importlib.metadata import version as _v

try:
    __version__ = _v("heatshield")
except _PNF:
    __version__ = "0.1.0+dev"

from .core import (
    AnalysisV1,
    DetectorRoles,
    ExecutionRecord,
    HeatShield,
    HeatShieldError,
    JsonFileStore,
    NullStore,
    ParameterSpace,
    ParameterSpec,
    default_roles,
    default_space,
)
from .config import ShieldSettings, load_cfg

__all__ = [
    "HeatShield", "AnalysisV1", "ExecutionRecord",
    "ParameterSpace", "ParameterSpec", "DetectorRoles",
    "default_space", "default_roles",
    "ShieldSettings", "load_cfg",
    "JsonFileStore", "NullStore",
    "HeatShieldError",
    "__version__",
]
