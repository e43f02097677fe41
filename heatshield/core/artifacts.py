# heatshield/core/artifacts.py
"""Pydantic contracts for what the engine hands out and what it persists.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``); both spellings are accepted on input.
"""

from __future__ import annotations

import math
from typing import Annotated, Any, Final, Literal, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "SchemaVersion",
    "AnalysisKind",
    "HSModel",
    "AnalysisV1",
    "PatternSignatureV1",
    "MetricsV1",
    "SettingsSnapshotV1",
    "ShieldStateV1",
]

CURRENT_SCHEMA_VERSION: Final[int] = 1
SchemaVersion = Literal[1]

AnalysisKind = Literal["immediate", "predictive", "informational", "normal"]

NonNegInt = Annotated[StrictInt, Field(ge=0)]
PosInt = Annotated[StrictInt, Field(ge=1)]
UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]


class HSModel(BaseModel):
    """
    Shared base model for heatshield contracts.

    - frozen=True prevents attribute rebinding.
    - extra="allow" keeps unknown keys from newer writers instead of rejecting the blob.
    """

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True, alias_generator=to_camel)


def _inf_from_null(v: Any) -> Any:
    return math.inf if v is None else v


def _null_from_inf(v: float) -> Optional[float]:
    # JSON has no infinity; "never" travels as null.
    return v if math.isfinite(v) else None


class AnalysisV1(HSModel):
    valid: bool
    warning: bool = False
    risk: UnitFloat = 0.0
    adjusted_risk: UnitFloat = 0.0
    pattern: Optional[str] = None
    category: Optional[str] = None
    time_to_violation: float = Field(default=math.inf, ge=0.0)
    mitigation: Optional[str] = None
    reason: Optional[str] = None
    kind: AnalysisKind = "normal"

    # Validity failures only.
    field: Optional[str] = None
    value: Optional[float] = None
    range: Optional[tuple[float, float]] = None

    buffered: bool = False
    buffer_adjustment: Annotated[float, Field(ge=0.0)] = 0.0
    components: tuple[str, ...] = ()
    source: Optional[Literal["ensemble", "pattern"]] = None

    @field_validator("time_to_violation", mode="before")
    @classmethod
    def _ttv_null_is_never(cls, v: Any) -> Any:
        return _inf_from_null(v)

    @field_serializer("time_to_violation")
    def _ser_ttv(self, v: float) -> Optional[float]:
        return _null_from_inf(v)

    @model_validator(mode="after")
    def _kind_consistency(self) -> "AnalysisV1":
        if not self.valid:
            if self.warning or self.kind != "immediate":
                raise ValueError("invalid analyses must be immediate and carry no warning")
        elif self.kind == "immediate":
            raise ValueError("kind 'immediate' is reserved for validity failures")
        if self.warning and self.kind != "predictive":
            raise ValueError("warnings must be predictive")
        if self.adjusted_risk > self.risk + 1e-12:
            raise ValueError("adjusted_risk cannot exceed risk")
        return self

    @property
    def is_warning(self) -> bool:
        return bool(self.valid and self.warning)


class PatternSignatureV1(HSModel):
    id: str = Field(min_length=1)
    signature: tuple[dict[str, float], ...]
    match_threshold: float = Field(
        validation_alias=AliasChoices("matchThreshold", "match_threshold", "threshold"),
        serialization_alias="matchThreshold",
    )
    occurrences: NonNegInt = 1
    time_to_violation: float = Field(default=1.0, ge=0.0)
    reason: Optional[str] = None
    created_at: NonNegInt = Field(
        default=0,
        validation_alias=AliasChoices("createdAt", "created_at", "created"),
        serialization_alias="createdAt",
    )
    last_seen: NonNegInt = 0

    @field_validator("time_to_violation", mode="before")
    @classmethod
    def _ttv_null_is_never(cls, v: Any) -> Any:
        return _inf_from_null(v)

    @field_serializer("time_to_violation")
    def _ser_ttv(self, v: float) -> Optional[float]:
        return _null_from_inf(v)


class MetricsV1(HSModel):
    total_executions: NonNegInt = 0
    predicted_violations: NonNegInt = 0
    early_warnings: NonNegInt = 0
    true_positives: NonNegInt = 0
    false_positives: NonNegInt = 0
    missed_violations: NonNegInt = 0
    true_negatives: NonNegInt = 0
    adaptive_adjustments: NonNegInt = 0
    deep_pattern_detections: NonNegInt = 0
    mitigations_applied: NonNegInt = 0
    buffer_events: NonNegInt = Field(
        default=0,
        validation_alias=AliasChoices("bufferEvents", "buffer_events", "quantumBufferEvents"),
        serialization_alias="bufferEvents",
    )


class SettingsSnapshotV1(HSModel):
    sensitivity_threshold: UnitFloat = Field(
        validation_alias=AliasChoices("sensitivityThreshold", "sensitivity_threshold", "predictionThreshold"),
        serialization_alias="sensitivityThreshold",
    )
    learning_rate: Annotated[float, Field(ge=0.0)]
    history_window: PosInt
    flexibility: UnitFloat = 0.7


class ShieldStateV1(HSModel):
    schema_version: SchemaVersion = 1
    timestamp: NonNegInt
    space_hash: Optional[str] = Field(default=None, pattern=r"^[a-f0-9]{16}$")
    patterns: Mapping[str, PatternSignatureV1] = Field(default_factory=dict)
    metrics: MetricsV1 = Field(default_factory=MetricsV1)
    settings: SettingsSnapshotV1

    @model_validator(mode="after")
    def _pattern_keys_match_ids(self) -> "ShieldStateV1":
        for key, pat in self.patterns.items():
            if key != pat.id:
                raise ValueError(f"patterns[{key!r}].id mismatch: {pat.id!r}")
        return self

