# heatshield/core/events.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Union

from .jsonutil import atomic_append_jsonl

logger = logging.getLogger(__name__)

__all__ = ["EventKind", "ShieldEvent", "Notifier", "JsonlEventJournal", "utc_now_z"]

EventKind = Literal["early_warning", "pattern_learned", "pattern_pruned", "sensitivity_adjusted"]


def utc_now_z() -> str:
    """ISO8601 UTC, seconds precision, trailing 'Z'."""
    s = datetime.now(timezone.utc).isoformat(timespec="seconds")
    return s[:-6] + "Z" if s.endswith("+00:00") else s


@dataclass(frozen=True)
class ShieldEvent:
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    ts_utc: str = field(default_factory=utc_now_z)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "payload": dict(self.payload), "ts_utc": self.ts_utc}


Observer = Callable[[ShieldEvent], Any]


class Notifier:
    """Explicit observer list. Observer failures are logged, never propagated."""

    def __init__(self) -> None:
        self._observers: List[Observer] = []

    def __len__(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: ShieldEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.warning("Event observer %r failed on %s.", observer, event.kind, exc_info=True)


class JsonlEventJournal:
    """Observer that appends each event as one canonical JSON line."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def __call__(self, event: ShieldEvent) -> None:
        atomic_append_jsonl(self.path, event.to_dict())
