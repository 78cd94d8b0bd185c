"""Runtime parameter clamping.

Every write re-clamps every field, including values that were valid when
stored, so a tightened range applies to existing registries on next write.
"""

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_snake

from mydeviceai.models.registry import ModelRuntimeParams

PARAM_RANGES: dict[str, tuple[float, float]] = {
    "temperature": (0.0, 2.0),
    "top_p": (0.0, 1.0),
    "top_k": (0, 2000),
    "max_tokens": (16, 32768),
    "context_window": (512, 131072),
    "gpu_layers": (0, 64),
}

INTEGER_PARAMS = {"top_k", "max_tokens", "context_window", "gpu_layers"}

DEFAULT_PARAMS = ModelRuntimeParams()


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _coerce(value: Any) -> float | None:  # noqa: ANN401
    """Numeric value or None for missing, NaN and non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value):
        return None
    return value


def _as_dict(params: Mapping[str, Any] | BaseModel | None) -> dict[str, Any]:
    if params is None:
        return {}
    if isinstance(params, BaseModel):
        return params.model_dump(exclude_none=True)
    return {to_snake(str(k)): v for k, v in params.items()}


def normalize_params(
    params: Mapping[str, Any] | BaseModel | None,
    base: ModelRuntimeParams | None = None,
) -> ModelRuntimeParams:
    """
    Merge ``params`` over ``base`` and clamp each field to its range.

    Args:
        params: Partial update (model, snake_case or camelCase mapping)
        base: Values used where ``params`` is missing or NaN (defaults if None)

    Returns:
        Fully populated, clamped parameters
    """
    base = base or DEFAULT_PARAMS
    data = _as_dict(params)
    values: dict[str, float | int] = {}

    for field, (low, high) in PARAM_RANGES.items():
        value = _coerce(data.get(field))
        if value is None:
            value = _coerce(getattr(base, field))
        if value is None:
            value = float(getattr(DEFAULT_PARAMS, field))
        value = clamp(value, low, high)
        values[field] = int(round(value)) if field in INTEGER_PARAMS else value

    return ModelRuntimeParams(**values)
