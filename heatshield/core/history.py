# heatshield/core/history.py
"""Bounded execution history and the read-only views detectors consume.

Detectors never receive the buffer itself. ``HistoryBuffer.view()`` pins the
current length and hands out a ``HistoryView`` that indexes into the same
records; slicing a view produces another view over the same storage.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Deque, Iterator, List, Mapping, Optional

import numpy as np

__all__ = ["ExecutionRecord", "HistoryBuffer", "HistoryView", "now_ms"]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ExecutionRecord:
    parameters: Mapping[str, float]
    timestamp: int = field(default_factory=now_ms)
    result: Optional[float] = None

    def __post_init__(self) -> None:
        # Freeze the mapping so the record cannot drift after it is appended.
        frozen = MappingProxyType({str(k): float(v) for k, v in dict(self.parameters).items()})
        object.__setattr__(self, "parameters", frozen)
        object.__setattr__(self, "timestamp", int(self.timestamp))


class HistoryView:
    """Read-only window over the last ``len(self)`` records of a buffer."""

    __slots__ = ("_records", "_start", "_stop")

    def __init__(self, records: Deque[ExecutionRecord], start: int, stop: int) -> None:
        self._records = records
        self._start = int(start)
        self._stop = int(stop)

    def __len__(self) -> int:
        return self._stop - self._start

    def __getitem__(self, i: int) -> ExecutionRecord:
        n = len(self)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError("history view index out of range")
        return self._records[self._start + i]

    def __iter__(self) -> Iterator[ExecutionRecord]:
        for i in range(self._start, self._stop):
            yield self._records[i]

    def tail(self, n: int) -> "HistoryView":
        """The last ``n`` records (or all of them when fewer exist)."""
        n = max(0, int(n))
        return HistoryView(self._records, max(self._start, self._stop - n), self._stop)

    def series(self, name: str) -> np.ndarray:
        """Values of one parameter over this view, oldest first."""
        return np.fromiter((r.parameters[name] for r in self), dtype=float, count=len(self))

    def vectors(self) -> List[Mapping[str, float]]:
        return [r.parameters for r in self]


class HistoryBuffer:
    """FIFO of execution records; the oldest record is evicted past ``capacity``."""

    def __init__(self, capacity: int = 100) -> None:
        if int(capacity) < 1:
            raise ValueError("history capacity must be >= 1")
        self._capacity = int(capacity)
        self._records: Deque[ExecutionRecord] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: ExecutionRecord) -> None:
        self._records.append(record)

    def view(self) -> HistoryView:
        return HistoryView(self._records, 0, len(self._records))
