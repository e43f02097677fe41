# heatshield/core/engine.py
from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from heatshield.config import ShieldSettings
from heatshield.core.aggregator import aggregate
from heatshield.core.artifacts import AnalysisV1, SettingsSnapshotV1, ShieldStateV1
from heatshield.core.detectors import DEFAULT_DETECTORS, Category, DetectorEnsemble, DetectorSpec
from heatshield.core.errors import ConfigurationError, InputValidationError, PersistenceError
from heatshield.core.events import JsonlEventJournal, Notifier, ShieldEvent
from heatshield.core.feedback import Metrics, Outcome, SensitivityTuner, classify_outcome
from heatshield.core.history import ExecutionRecord, HistoryBuffer, now_ms
from heatshield.core.mitigation import Strategy, proximity_buffer, select_mitigation
from heatshield.core.params import DetectorRoles, ParameterSpace, default_roles, default_space, space_identity_hash
from heatshield.core.patterns import PatternMemory
from heatshield.core.persistence import JsonFileStore, NullStore, StateStore
from heatshield.core.validity import validate

logger = logging.getLogger(__name__)

__all__ = ["HeatShield"]

Execution = Union[ExecutionRecord, Mapping[str, Any]]


def _split_execution(execution: Execution) -> Tuple[Mapping[str, Any], Any, Any]:
    if isinstance(execution, ExecutionRecord):
        return execution.parameters, execution.timestamp, execution.result
    if not isinstance(execution, Mapping):
        raise InputValidationError(f"execution must be a mapping, got {type(execution).__name__}")
    params = execution.get("parameters")
    if not isinstance(params, Mapping):
        raise InputValidationError("execution must carry a 'parameters' mapping", field="parameters")
    return params, execution.get("timestamp"), execution.get("result")


def _finite_or_none(v: float) -> Optional[float]:
    return v if math.isfinite(v) else None


class HeatShield:
    """
    Predictive guard over a stream of parameter vectors.

    ``analyze`` gates each execution on its hard ranges, appends it to the
    bounded history, and scores the history with the detector ensemble and
    the learned pattern memory. ``record_outcome`` feeds back whether a
    violation actually happened, which moves pattern thresholds, learns new
    signatures and re-tunes the warning threshold.

    All public methods serialize on one re-entrant lock. ``analyze`` does no I/O;
    state is persisted from ``record_outcome`` and ``save`` and persistence
    failures are logged, never raised.
    """

    def __init__(
        self,
        settings: Optional[ShieldSettings] = None,
        *,
        space: Optional[ParameterSpace] = None,
        roles: Optional[DetectorRoles] = None,
        store: Optional[StateStore] = None,
        notifier: Optional[Notifier] = None,
        detectors: Sequence[DetectorSpec] = DEFAULT_DETECTORS,
    ) -> None:
        self._settings = settings if settings is not None else ShieldSettings()
        if space is None:
            self.space = default_space()
            self.roles = roles if roles is not None else default_roles()
        else:
            self.space = space
            self.roles = roles if roles is not None else DetectorRoles()
        self.roles.check_against(self.space)

        s = self._settings
        self._lock = threading.RLock()
        self._history = HistoryBuffer(s.history_window)
        self._ensemble = DetectorEnsemble(
            self.space,
            self.roles,
            detectors=detectors,
            compound_amplification=s.compound_amplification,
            compound_cap=s.compound_cap,
            compound_primary_cutoff=s.compound_primary_cutoff,
            compound_secondary_cutoff=s.compound_secondary_cutoff,
        )
        self._memory = PatternMemory(
            self.space,
            learning_rate=s.learning_rate,
            initial_threshold=s.pattern_initial_threshold,
            threshold_floor=s.pattern_floor,
            threshold_ceiling=s.pattern_ceiling,
            prune_above=s.pattern_prune_above,
            prune_min_occurrences=s.pattern_prune_min_occurrences,
            signature_length=s.signature_length,
        )
        self._tuner = SensitivityTuner(
            s.sensitivity_threshold,
            floor=s.threshold_floor,
            ceiling=s.threshold_ceiling,
            step=s.threshold_step,
            min_predictions=s.min_predictions,
            raise_above=s.fp_raise_above,
            lower_below=s.fp_lower_below,
        )
        self._metrics = Metrics()
        self._last: Optional[AnalysisV1] = None
        self._space_hash = space_identity_hash(self.space)

        if store is not None:
            self._store: StateStore = store
        elif s.state_path:
            self._store = JsonFileStore(s.state_path)
        else:
            self._store = NullStore()

        self.notifier = notifier if notifier is not None else Notifier()
        if s.event_journal:
            self.notifier.subscribe(JsonlEventJournal(Path(s.event_journal)))

        self._load_state()
        logger.info(
            "HeatShield ready: %d parameters, history window %d, sensitivity %.2f, %d learned patterns.",
            len(self.space),
            s.history_window,
            self._tuner.threshold,
            len(self._memory),
        )

    # ---- Read-only accessors ----

    @property
    def settings(self) -> ShieldSettings:
        return self._settings

    @property
    def sensitivity_threshold(self) -> float:
        return self._tuner.threshold

    @property
    def patterns(self) -> PatternMemory:
        return self._memory

    @property
    def history_length(self) -> int:
        return len(self._history)

    @property
    def last_analysis(self) -> Optional[AnalysisV1]:
        return self._last

    # ---- Analysis ----

    def analyze(self, execution: Execution) -> AnalysisV1:
        with self._lock:
            self._metrics.total_executions += 1
            try:
                record = self._gate(execution)
            except InputValidationError as e:
                result = AnalysisV1(
                    valid=False,
                    kind="immediate",
                    reason=str(e),
                    field=e.field,
                    value=e.value,
                    range=e.valid_range,
                )
                self._last = result
                return result

            self._history.append(record)
            result = self._score(record)
            self._last = result

        if result.warning:
            self.notifier.publish(
                ShieldEvent(
                    "early_warning",
                    {
                        "risk": result.risk,
                        "pattern": result.pattern,
                        "timeToViolation": _finite_or_none(result.time_to_violation),
                        "parameters": dict(record.parameters),
                    },
                )
            )
        return result

    def _gate(self, execution: Execution) -> ExecutionRecord:
        params, ts, result = _split_execution(execution)
        values = validate(params, self.space)
        try:
            timestamp = now_ms() if ts is None else int(ts)
        except (TypeError, ValueError, OverflowError):
            raise InputValidationError(f"timestamp must be an integer, got {ts!r}", field="timestamp") from None
        try:
            outcome = None if result is None else float(result)
        except (TypeError, ValueError, OverflowError):
            raise InputValidationError(f"result must be a number, got {result!r}", field="result") from None
        return ExecutionRecord(parameters=values, timestamp=timestamp, result=outcome)

    def _score(self, record: ExecutionRecord) -> AnalysisV1:
        s = self._settings
        view = self._history.view()
        report = self._ensemble.run(view)
        match = self._memory.match(view)
        verdict = aggregate(
            [("ensemble", report.top), ("pattern", None if match is None else match.to_finding())],
            self._tuner.threshold,
        )

        finding = verdict.finding
        plan = select_mitigation(finding, s.flexibility, high_risk=s.high_risk, high_risk_factor=s.high_risk_factor)

        if finding is not None and finding.category is not Category.UNCLASSIFIED:
            if finding.risk > 0.9 * self._tuner.threshold:
                self._metrics.deep_pattern_detections += 1
        if verdict.warning:
            self._metrics.predicted_violations += 1
            self._metrics.early_warnings += 1
            if plan is not None and plan.strategy is not Strategy.ALERT:
                self._metrics.mitigations_applied += 1

        buffered, adjustment = False, 0.0
        if not verdict.warning and self.roles.target is not None:
            spec = self.space[self.roles.target]
            adj = proximity_buffer(
                record.parameters[spec.name],
                spec,
                self.roles.target_side,
                band_frac=s.buffer_band_frac,
                max_adjustment=s.buffer_max_adjustment,
            )
            if adj is not None:
                buffered, adjustment = True, adj
                self._metrics.buffer_events += 1

        if finding is None:
            return AnalysisV1(valid=True, kind="normal", buffered=buffered, buffer_adjustment=adjustment)

        return AnalysisV1(
            valid=True,
            warning=verdict.warning,
            risk=finding.risk,
            adjusted_risk=plan.adjusted_risk if plan is not None else finding.risk,
            pattern=finding.pattern,
            category=finding.category.value,
            time_to_violation=finding.time_to_violation,
            mitigation=plan.strategy.value if plan is not None else None,
            reason=finding.reason,
            kind="predictive" if verdict.warning else "informational",
            buffered=buffered,
            buffer_adjustment=adjustment,
            components=finding.components,
            source=verdict.source,
        )

    # ---- Feedback ----

    def record_outcome(self, violation_occurred: bool, finding: Optional[AnalysisV1] = None) -> Outcome:
        """Classify the outcome of an analysis (the last one by default) and adapt."""
        events = []
        with self._lock:
            target = finding if finding is not None else self._last
            warned = bool(target is not None and target.is_warning)
            outcome = classify_outcome(warned, bool(violation_occurred))
            self._metrics.count(outcome)

            pattern_id = target.pattern if target is not None else None
            changed = False
            if outcome is Outcome.TRUE_POSITIVE and pattern_id in self._memory:
                self._memory.reinforce(pattern_id)
                changed = True
            elif outcome is Outcome.FALSE_POSITIVE and pattern_id in self._memory:
                if self._memory.weaken(pattern_id) == "pruned":
                    events.append(ShieldEvent("pattern_pruned", {"patternId": pattern_id}))
                changed = True
            elif outcome is Outcome.MISSED_VIOLATION:
                learned = self._memory.learn(self._history.view())
                if learned is not None:
                    events.append(
                        ShieldEvent(
                            "pattern_learned",
                            {"patternId": learned.id, "matchThreshold": learned.match_threshold},
                        )
                    )
                    changed = True
            if changed:
                self._metrics.adaptive_adjustments += 1

            retune = self._tuner.evaluate(self._metrics)
            if retune is not None:
                self._metrics.adaptive_adjustments += 1
                events.append(
                    ShieldEvent(
                        "sensitivity_adjusted",
                        {
                            "old": retune.old,
                            "new": retune.new,
                            "falsePositiveRate": retune.false_positive_rate,
                            "direction": retune.direction,
                        },
                    )
                )

            if changed or retune is not None:
                self._save_locked()

        for event in events:
            self.notifier.publish(event)
        return outcome

    # ---- Metrics & persistence ----

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            m = self._metrics
            out: Dict[str, Any] = dict(m.to_model().model_dump())
            out["pattern_count"] = len(self._memory)
            out["history_length"] = len(self._history)
            out["sensitivity_threshold"] = self._tuner.threshold
            out["early_warning_rate"] = m.early_warnings / m.total_executions if m.total_executions else 0.0
            out["false_positive_rate"] = m.false_positive_rate
            return out

    def snapshot_state(self) -> ShieldStateV1:
        with self._lock:
            return ShieldStateV1(
                timestamp=now_ms(),
                space_hash=self._space_hash,
                patterns=self._memory.to_models(),
                metrics=self._metrics.to_model(),
                settings=SettingsSnapshotV1(
                    sensitivity_threshold=self._tuner.threshold,
                    learning_rate=self._memory.learning_rate,
                    history_window=self._settings.history_window,
                    flexibility=self._settings.flexibility,
                ),
            )

    def save(self) -> bool:
        with self._lock:
            return self._save_locked()

    def _save_locked(self) -> bool:
        try:
            self._store.save(self.snapshot_state())
        except PersistenceError as e:
            logger.warning("Could not persist heat shield state; continuing in memory: %s", e)
            return False
        except Exception:
            logger.warning("State store failed while saving; continuing in memory.", exc_info=True)
            return False
        return True

    def load(self) -> bool:
        with self._lock:
            return self._load_state()

    def _load_state(self) -> bool:
        try:
            state = self._store.load()
        except PersistenceError as e:
            logger.warning("Could not load heat shield state; starting fresh: %s", e)
            return False
        except Exception:
            logger.warning("State store failed while loading; starting fresh.", exc_info=True)
            return False
        if state is None:
            return False

        try:
            restored = self._settings.replace(
                learning_rate=state.settings.learning_rate,
                sensitivity_threshold=state.settings.sensitivity_threshold,
            )
        except ConfigurationError as e:
            logger.warning("Ignoring stored settings: %s", e)
        else:
            self._settings = restored
            self._memory.learning_rate = restored.learning_rate
            self._tuner.set(restored.sensitivity_threshold)

        try:
            self._metrics = Metrics.from_model(state.metrics)
        except (TypeError, ValidationError) as e:
            logger.warning("Ignoring stored metrics: %s", e)

        if state.space_hash is not None and state.space_hash != self._space_hash:
            logger.warning(
                "Stored patterns were learned over a different parameter space (%s != %s); not loading them.",
                state.space_hash,
                self._space_hash,
            )
        else:
            self._memory.load_models(state.patterns)

        logger.info("Loaded %d learned patterns (sensitivity %.2f).", len(self._memory), self._tuner.threshold)
        return True
