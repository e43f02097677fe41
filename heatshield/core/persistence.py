# heatshield/core/persistence.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol, Union

from filelock import FileLock, Timeout
from pydantic import ValidationError

from .artifacts import ShieldStateV1
from .errors import PersistenceError
from .jsonutil import atomic_write_pydantic_json, read_json_obj

logger = logging.getLogger(__name__)

__all__ = ["StateStore", "JsonFileStore", "NullStore"]


class StateStore(Protocol):
    def load(self) -> Optional[ShieldStateV1]: ...
    def save(self, state: ShieldStateV1) -> None: ...


class JsonFileStore(StateStore):
    """
    Engine state as one canonical JSON object on disk.

    Writes go through a temp file and os.replace; a sibling ``<name>.lock`` file
    lock serializes writers and readers across processes. A missing file loads
    as ``None``; any other failure raises PersistenceError.
    """

    def __init__(self, path: Union[str, Path], *, lock_timeout: float = 10.0) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock_timeout = float(lock_timeout)

    def _lock(self) -> FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.lock_path), timeout=self._lock_timeout)

    def load(self) -> Optional[ShieldStateV1]:
        try:
            with self._lock():
                if not self.path.is_file():
                    return None
                payload = read_json_obj(self.path)
        except Timeout as e:
            raise PersistenceError(f"timed out waiting for state lock {self.lock_path}") from e
        except (OSError, json.JSONDecodeError, TypeError) as e:
            raise PersistenceError(f"cannot read state {self.path}: {e}") from e

        try:
            return ShieldStateV1.model_validate(payload)
        except ValidationError as e:
            raise PersistenceError(f"state {self.path} failed schema validation: {e.error_count()} error(s)") from e

    def save(self, state: ShieldStateV1) -> None:
        try:
            with self._lock():
                atomic_write_pydantic_json(self.path, state)
        except Timeout as e:
            raise PersistenceError(f"timed out waiting for state lock {self.lock_path}") from e
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"cannot write state {self.path}: {e}") from e
        logger.debug("Saved state to %s (%d patterns).", self.path, len(state.patterns))


class NullStore(StateStore):
    """
    In-memory engine: nothing to load, saves are dropped.
    """

    def load(self) -> Optional[ShieldStateV1]:
        return None

    def save(self, state: ShieldStateV1) -> None:
        return None
