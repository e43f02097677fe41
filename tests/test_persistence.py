# tests/test_persistence.py
from __future__ import annotations

import json

import pytest

from heatshield.core.artifacts import MetricsV1, PatternSignatureV1, SettingsSnapshotV1, ShieldStateV1
from heatshield.core.errors import PersistenceError
from heatshield.core.persistence import JsonFileStore, NullStore

pytestmark = pytest.mark.unit


def _state(**kw) -> ShieldStateV1:
    pat = PatternSignatureV1(id="pattern_1_abc", signature=({"x": 2.5},) * 5, match_threshold=0.8)
    base = dict(
        timestamp=1_700_000_000_000,
        space_hash="0123456789abcdef",
        patterns={pat.id: pat},
        metrics=MetricsV1(total_executions=7, missed_violations=1),
        settings=SettingsSnapshotV1(sensitivity_threshold=0.75, learning_rate=0.05, history_window=100),
    )
    base.update(kw)
    return ShieldStateV1(**base)


def test_missing_file_loads_as_none(tmp_path):
    assert JsonFileStore(tmp_path / "absent.json").load() is None


def test_round_trip(tmp_path):
    store = JsonFileStore(tmp_path / "state.json")
    store.save(_state())
    loaded = store.load()
    assert loaded is not None
    assert loaded.metrics.total_executions == 7
    assert loaded.patterns["pattern_1_abc"].match_threshold == pytest.approx(0.8)
    assert loaded.space_hash == "0123456789abcdef"


def test_on_disk_keys_are_camel_case(tmp_path):
    path = tmp_path / "state.json"
    JsonFileStore(path).save(_state())
    obj = json.loads(path.read_text(encoding="utf-8"))
    assert set(obj) >= {"schemaVersion", "timestamp", "spaceHash", "patterns", "metrics", "settings"}
    assert obj["settings"]["sensitivityThreshold"] == 0.75
    assert obj["patterns"]["pattern_1_abc"]["matchThreshold"] == 0.8
    assert obj["patterns"]["pattern_1_abc"]["timeToViolation"] == 1.0
    assert obj["metrics"]["missedViolations"] == 1


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"timestamp": -1}'])
def test_bad_content_raises_persistence_error(tmp_path, content):
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(PersistenceError):
        JsonFileStore(path).load()


def test_save_creates_parent_and_lock_file(tmp_path):
    path = tmp_path / "deep" / "state.json"
    store = JsonFileStore(path)
    store.save(_state())
    assert path.is_file()
    assert store.lock_path.name == "state.json.lock"


def test_legacy_key_spellings_are_accepted(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "timestamp": 1,
                "patterns": {
                    "p1": {"id": "p1", "signature": [{"x": 2.5}], "threshold": 0.7, "created": 5},
                },
                "metrics": {"quantumBufferEvents": 4},
                "settings": {"predictionThreshold": 0.8, "learningRate": 0.05, "historyWindow": 50},
            }
        ),
        encoding="utf-8",
    )
    state = JsonFileStore(path).load()
    assert state.patterns["p1"].match_threshold == pytest.approx(0.7)
    assert state.patterns["p1"].created_at == 5
    assert state.metrics.buffer_events == 4
    assert state.settings.sensitivity_threshold == pytest.approx(0.8)


def test_null_store():
    store = NullStore()
    store.save(_state())
    assert store.load() is None
