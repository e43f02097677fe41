# heatshield/core/validity.py
from __future__ import annotations

import math
from typing import Any, Dict, Mapping

from .errors import InputValidationError, OutOfRangeError
from .params import ParameterSpace

__all__ = ["validate", "coerce_parameters"]


def coerce_parameters(parameters: Mapping[str, Any], space: ParameterSpace) -> Dict[str, float]:
    """Map raw input onto the closed parameter set, in space order.

    Raises InputValidationError for unknown, missing, non-numeric or non-finite
    fields. Range checks are left to :func:`validate`.
    """
    unknown = sorted(str(k) for k in parameters.keys() if k not in space)
    if unknown:
        raise InputValidationError(f"unknown parameter(s): {unknown}", field=unknown[0])

    out: Dict[str, float] = {}
    for spec in space:
        if spec.name not in parameters:
            raise InputValidationError(f"missing parameter: {spec.name}", field=spec.name, valid_range=spec.valid_range)
        raw = parameters[spec.name]
        if isinstance(raw, bool):
            raise InputValidationError(f"{spec.name} must be a number (got bool)", field=spec.name)
        try:
            v = float(raw)
        except (TypeError, ValueError, OverflowError):
            raise InputValidationError(f"{spec.name} must be a number, got {raw!r}", field=spec.name) from None
        if not math.isfinite(v):
            raise InputValidationError(
                f"{spec.name} must be finite, got {v}", field=spec.name, value=v, valid_range=spec.valid_range
            )
        out[spec.name] = v
    return out


def validate(parameters: Mapping[str, Any], space: ParameterSpace) -> Dict[str, float]:
    """Hard-bounds check of one parameter vector; returns the coerced values.

    Raises OutOfRangeError for the first field (in space order) outside its
    closed range. Pure and O(fields); no history involved.
    """
    values = coerce_parameters(parameters, space)
    for spec in space:
        v = values[spec.name]
        if not spec.contains(v):
            raise OutOfRangeError(spec.name, v, spec.valid_range)
    return values
