# heatshield/cli/main.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import IO, Any, Dict, Iterator, List, Optional, Tuple

from heatshield.config import ShieldSettings, load_cfg
from heatshield.core.artifacts import ShieldStateV1
from heatshield.core.engine import HeatShield
from heatshield.core.errors import ConfigurationError, PersistenceError
from heatshield.core.jsonutil import canonical_dumps, read_json_obj, sanitize_json_value
from heatshield.core.params import DetectorRoles, ParameterSpace
from heatshield.core.persistence import JsonFileStore


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


def _pkg_version() -> str:
    try:
        import importlib.metadata as md

        return md.version("heatshield")
    except Exception:
        return "unknown"


def _load_space(path: Path) -> Tuple[ParameterSpace, DetectorRoles]:
    """
    Space file layout:

        {"parameters": {"x": {"lo": 2.0, "hi": 3.0, "margin": 0.1}, ...},
         "roles": {"target": "x", "interaction": ["x", "y"], ...}}
    """
    obj = read_json_obj(path)
    params = obj.get("parameters")
    if not isinstance(params, dict) or not params:
        raise ConfigurationError(f"{path.name}: 'parameters' must be a non-empty object")
    ranges: Dict[str, Tuple[Any, Any]] = {}
    extras: Dict[str, Dict[str, Any]] = {}
    for name, spec in params.items():
        if isinstance(spec, dict):
            ranges[name] = (spec.get("lo"), spec.get("hi"))
            extras[name] = {k: v for k, v in spec.items() if k not in ("lo", "hi")}
        else:
            ranges[name] = spec
    space = ParameterSpace.from_ranges(ranges, **extras)

    roles_obj = obj.get("roles") or {}
    if not isinstance(roles_obj, dict):
        raise ConfigurationError(f"{path.name}: 'roles' must be an object")
    roles_kw = {k: tuple(v) if isinstance(v, list) else v for k, v in roles_obj.items()}
    try:
        roles = DetectorRoles(**roles_kw)
    except TypeError as e:
        raise ConfigurationError(f"{path.name}: bad roles: {e}") from e
    roles.check_against(space)
    return space, roles


def _iter_jsonl(fh: IO[str]) -> Iterator[Tuple[int, str]]:
    for lineno, raw in enumerate(fh, start=1):
        line = raw.strip()
        if line and not line.startswith("#"):
            yield lineno, line


def _build_engine(args: argparse.Namespace) -> HeatShield:
    cfg = load_cfg(args.config)
    if args.state:
        cfg["state_path"] = str(args.state)
    if args.journal:
        cfg["event_journal"] = str(args.journal)
    settings = ShieldSettings.from_mapping(cfg)
    if args.space:
        space, roles = _load_space(Path(args.space).expanduser())
        return HeatShield(settings, space=space, roles=roles)
    return HeatShield(settings)


def _cmd_replay(args: argparse.Namespace) -> int:
    """
    Feed a JSONL stream of executions through one engine.

    Each line is ``{"parameters": {...}, "timestamp"?: int, "violation"?: bool}``.
    A present ``violation`` label is fed back via record_outcome.

    Exit codes:
      0 = replay finished
      2 = bad configuration or unreadable input
    """
    try:
        engine = _build_engine(args)
    except (ConfigurationError, OSError, TypeError, json.JSONDecodeError) as e:
        _eprint(f"INVALID CONFIG: {e}")
        return 2

    src = str(args.input)
    out = sys.stdout
    n = warnings = invalid = 0
    try:
        fh = sys.stdin if src == "-" else open(Path(src).expanduser(), "r", encoding="utf-8")
    except OSError as e:
        _eprint(f"Cannot open input: {e}")
        return 2
    try:
        for lineno, line in _iter_jsonl(fh):
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                _eprint(f"line {lineno}: invalid JSON ({e.msg})")
                return 2
            if not isinstance(payload, dict):
                _eprint(f"line {lineno}: expected a JSON object")
                return 2

            label = payload.pop("violation", None)
            result = engine.analyze(payload)
            n += 1
            warnings += int(result.warning)
            invalid += int(not result.valid)
            if not args.quiet:
                row = result.model_dump(mode="json", by_alias=True, exclude_defaults=True)
                row["valid"] = result.valid
                out.write(canonical_dumps(sanitize_json_value(row)) + "\n")
            if label is not None and not args.no_feedback:
                engine.record_outcome(bool(label), result)
    finally:
        if fh is not sys.stdin:
            fh.close()

    if args.state:
        engine.save()
    m = engine.get_metrics()
    _eprint(
        f"replayed={n} warnings={warnings} invalid={invalid} "
        f"patterns={m['pattern_count']} sensitivity={m['sensitivity_threshold']:.2f}"
    )
    return 0


def _summarize_state(state: ShieldStateV1) -> List[str]:
    s = state.settings
    m = state.metrics
    lines = [
        f"schema_version: {state.schema_version}",
        f"timestamp: {state.timestamp}",
        f"space_hash: {state.space_hash or '-'}",
        f"sensitivity_threshold: {s.sensitivity_threshold:.2f}",
        f"learning_rate: {s.learning_rate:.3f}",
        f"history_window: {s.history_window}",
        f"flexibility: {s.flexibility:.2f}",
        f"executions: {m.total_executions}  warnings: {m.early_warnings}",
        f"tp: {m.true_positives}  fp: {m.false_positives}  missed: {m.missed_violations}  tn: {m.true_negatives}",
        f"patterns: {len(state.patterns)}",
    ]
    for pid, p in sorted(state.patterns.items()):
        lines.append(f"  {pid}  threshold={p.match_threshold:.2f}  occurrences={p.occurrences}")
    return lines


def _cmd_inspect(args: argparse.Namespace) -> int:
    """
    Validate and summarize a persisted state file.

    Exit codes:
      0 = valid
      2 = missing or invalid state
    """
    path = Path(str(args.state)).expanduser()
    try:
        state = JsonFileStore(path).load()
    except PersistenceError as e:
        _eprint(f"INVALID: {e}")
        return 2
    if state is None:
        _eprint(f"INVALID: no state file at {path}")
        return 2

    if args.format == "json":
        print(canonical_dumps(state.model_dump(mode="json", by_alias=True)))
    else:
        print("\n".join(_summarize_state(state)))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(prog="heatshield")
    parser.add_argument("--version", action="version", version=f"%(prog)s {_pkg_version()}")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for engine diagnostics (stderr)",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_replay = sub.add_parser("replay", help="Analyze a JSONL stream of executions")
    p_replay.add_argument("input", type=str, help="JSONL file of executions ('-' for stdin)")
    p_replay.add_argument("--config", type=str, default=None, help="JSON settings file (default: $HEATSHIELD_CFG)")
    p_replay.add_argument("--space", type=str, default=None, help="JSON parameter space + detector roles")
    p_replay.add_argument("--state", type=str, default=None, help="State file to load before and save after")
    p_replay.add_argument("--journal", type=str, default=None, help="Append engine events to this JSONL file")
    p_replay.add_argument("--no-feedback", action="store_true", help="Ignore 'violation' labels in the input")
    p_replay.add_argument("--quiet", action="store_true", help="Only print the final summary")
    p_replay.set_defaults(_handler=_cmd_replay)

    p_inspect = sub.add_parser("inspect", help="Validate and summarize a persisted state file")
    p_inspect.add_argument("state", type=str, help="State JSON written by the engine")
    p_inspect.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    p_inspect.set_defaults(_handler=_cmd_inspect)

    ns = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, ns.log_level), format="%(levelname)s %(name)s: %(message)s")

    if not hasattr(ns, "_handler"):
        parser.print_help(sys.stderr)
        return 2

    return int(ns._handler(ns))  # type: ignore[misc]


if __name__ == "__main__":
    raise SystemExit(main())
