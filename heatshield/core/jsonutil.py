# heatshield/core/jsonutil.py
"""JSON helpers for the state blob and the event journal.

Everything written to disk goes through :func:`canonical_dumps` (sorted keys,
compact separators, no NaN/Infinity). Values are passed through
:func:`sanitize_json_value` first so numpy scalars and infinite
time-to-violation estimates become plain JSON.
"""

from __future__ import annotations

import json
import math
import os
import uuid
from pathlib import Path
from typing import Any, Dict

import numpy as np
from pydantic import BaseModel

_TMP_MARK = "hs-tmp"


def canonical_dumps(obj: Any) -> str:
    """Sorted-key, compact, UTF-8-preserving JSON. Raises ValueError on NaN/Infinity."""
    try:
        return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except TypeError as e:
        raise TypeError(f"canonical_dumps(): value is not JSON-serializable ({e}); sanitize it first") from e


def sanitize_json_value(obj: Any) -> Any:
    """Recursively map a value onto plain JSON types.

    Non-finite floats become ``None``; numpy scalars and arrays become Python
    numbers and lists; tuples become lists; paths become strings.
    """
    if isinstance(obj, np.ndarray):
        return [sanitize_json_value(v) for v in obj.tolist()]
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {str(k): sanitize_json_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_json_value(v) for v in obj]
    if isinstance(obj, Path):
        return str(obj)
    return obj


def _sibling_tmp(path: Path) -> Path:
    # Same directory as the target so os.replace never crosses filesystems.
    token = uuid.uuid4().hex[:12]
    name = f".{path.name}.{_TMP_MARK}.{token}.tmp"
    if len(name) > 240:
        name = f".{_TMP_MARK}.{token}.tmp"
    return path.with_name(name)


def _replace_atomically(path: Path, data: bytes, *, fsync: bool) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _sibling_tmp(path)
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
            if fsync:
                fh.flush()
                os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        raise


def atomic_write_text(path: Path, text: str, *, fsync: bool = False) -> None:
    """Replace ``path`` with ``text`` (UTF-8, LF) via a sibling temp file and ``os.replace``."""
    _replace_atomically(Path(path), text.encode("utf-8"), fsync=fsync)


def atomic_write_json(path: Path, obj: Any, *, fsync: bool = False) -> None:
    """Canonical JSON plus a trailing newline. Serialization errors leave ``path`` untouched."""
    atomic_write_text(path, canonical_dumps(obj) + "\n", fsync=fsync)


def atomic_write_pydantic_json(path: Path, model: BaseModel, *, by_alias: bool = True, fsync: bool = False) -> None:
    payload = model.model_dump(mode="json", by_alias=by_alias)
    atomic_write_json(path, sanitize_json_value(payload), fsync=fsync)


def atomic_append_jsonl(path: Path, obj: Any, *, fsync: bool = False) -> None:
    """
    Append ``obj`` as one canonical JSON line.

    The line is written through an O_APPEND descriptor in a loop so concurrent
    journal writers on POSIX do not interleave partial lines.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    line = (canonical_dumps(sanitize_json_value(obj)) + "\n").encode("utf-8")
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
    try:
        view = memoryview(line)
        while view:
            n = os.write(fd, view)
            if n == 0:
                raise OSError(f"short write appending to {path}")
            view = view[n:]
        if fsync:
            os.fsync(fd)
    finally:
        os.close(fd)


def read_json_obj(path: Path) -> Dict[str, Any]:
    """Parse ``path``; TypeError unless the top level is a JSON object."""
    path = Path(path)
    obj = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise TypeError(f"{path.name}: expected a JSON object at the top level, got {type(obj).__name__}")
    return obj
