# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pytest

# Lets the suite run from a plain checkout; appended so an installed copy wins.
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.append(str(repo_root))


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def make_space() -> Callable[..., object]:
    """ParameterSpace factory: make_space({"x": (2.0, 3.0)}, x={"margin": 0.1})."""
    from heatshield.core.params import ParameterSpace

    def _make(ranges: Mapping[str, Tuple[float, float]], **overrides: Mapping[str, Any]):
        return ParameterSpace.from_ranges(dict(ranges), **overrides)

    return _make


@pytest.fixture
def make_view() -> Callable[..., object]:
    """
    HistoryView over a fresh buffer holding ``rows`` (oldest first).

    Rows are plain ``{name: value}`` dicts; timestamps are synthetic and increasing.
    """
    from heatshield.core.history import ExecutionRecord, HistoryBuffer

    def _make(rows: Sequence[Mapping[str, float]], *, capacity: Optional[int] = None):
        rows = list(rows)
        buf = HistoryBuffer(capacity or max(1, len(rows)))
        for i, row in enumerate(rows):
            buf.append(ExecutionRecord(parameters=dict(row), timestamp=1_000 + i))
        return buf.view()

    return _make


@pytest.fixture
def columns() -> Callable[..., List[Dict[str, float]]]:
    """Zip named columns into row dicts: columns(x=[...], y=[...])."""

    def _make(**cols: Iterable[float]) -> List[Dict[str, float]]:
        names = list(cols.keys())
        data = [list(v) for v in cols.values()]
        n = min(len(d) for d in data)
        return [{name: float(data[j][i]) for j, name in enumerate(names)} for i in range(n)]

    return _make


@pytest.fixture
def steady_params() -> Dict[str, float]:
    """An in-range vector of the default space that no detector reacts to."""
    return {
        "ai_cognitive": 2.5,
        "personality": 0.5,
        "intelligence": 1.0,
        "chaos": 0.5,
        "chaos_exponent": 2.0,
        "velocity": 1.0,
    }


@pytest.fixture
def make_engine() -> Callable[..., object]:
    """HeatShield factory with an in-memory store unless one is given."""
    from heatshield.config import ShieldSettings
    from heatshield.core.engine import HeatShield
    from heatshield.core.persistence import NullStore

    def _make(*, space=None, roles=None, store=None, notifier=None, detectors=None, **settings: Any):
        kwargs: Dict[str, Any] = {
            "space": space,
            "roles": roles,
            "store": store if store is not None else NullStore(),
            "notifier": notifier,
        }
        if detectors is not None:
            kwargs["detectors"] = detectors
        return HeatShield(ShieldSettings(**settings), **kwargs)

    return _make


@pytest.fixture
def warning_analysis() -> Callable[..., object]:
    from heatshield.core.artifacts import AnalysisV1

    def _make(pattern: Optional[str] = None, risk: float = 0.9):
        return AnalysisV1(
            valid=True,
            warning=True,
            kind="predictive",
            risk=risk,
            adjusted_risk=risk,
            pattern=pattern,
        )

    return _make
