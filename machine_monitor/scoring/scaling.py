"""Feature scaling shared by every scoring model implementation.

All models consume features min-max scaled to ``[0, 1]`` with the fixed
per-feature ranges in :data:`SCALERS` and return values in the same scaled
space, which are mapped back to engineering units with
:func:`min_max_inverse`.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TypeVar

from pydantic import BaseModel

__all__ = [
    "ANOMALY_THRESHOLD",
    "FORECAST_WINDOW",
    "PREDICTION_WINDOW",
    "SCALERS",
    "FeatureRange",
    "clamp",
    "finite",
    "min_max_inverse",
    "min_max_scale",
    "pad_left",
    "q_confidence",
    "scale_feature",
    "unscale_feature",
]

T = TypeVar("T")

ANOMALY_THRESHOLD = 0.0814
PREDICTION_WINDOW = 10
FORECAST_WINDOW = 24


class FeatureRange(BaseModel):
    model_config = {"frozen": True}

    min: float
    max: float


SCALERS: dict[str, FeatureRange] = {
    "rpm": FeatureRange(min=0, max=3000),
    "load_percent": FeatureRange(min=0, max=100),
    "load_kw": FeatureRange(min=0, max=15),
    "current": FeatureRange(min=0, max=50),
    "torque": FeatureRange(min=0, max=50),
    "vibration": FeatureRange(min=0, max=10),
    "temperature": FeatureRange(min=20, max=120),
}


def finite(value: float | None, default: float = 0.0) -> float:
    """Return *value*, or *default* when it is ``None``, NaN or infinite."""
    if value is None or not math.isfinite(value):
        return default
    return value


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def min_max_scale(value: float, lo: float, hi: float) -> float:
    return (value - lo) / (hi - lo)


def min_max_inverse(scaled: float, lo: float, hi: float) -> float:
    return scaled * (hi - lo) + lo


def scale_feature(name: str, value: float | None, *, clip: bool = False) -> float:
    """Scale a raw feature by name; ``clip`` clamps the raw value to its range first."""
    rng = SCALERS[name]
    raw = finite(value)
    if clip:
        raw = clamp(raw, rng.min, rng.max)
    return min_max_scale(raw, rng.min, rng.max)


def unscale_feature(name: str, scaled: float) -> float:
    rng = SCALERS[name]
    return min_max_inverse(finite(scaled), rng.min, rng.max)


def pad_left(sequence: Sequence[T], length: int, fill: T) -> list[T]:
    """Return the last *length* items, left-padded by repeating the first item.

    *fill* is only used when *sequence* is empty.
    """
    items = list(sequence)
    head = items[0] if items else fill
    if len(items) < length:
        items = [head] * (length - len(items)) + items
    return items[-length:]


def q_confidence(q_values: Sequence[float]) -> float:
    """``|max q| / sum(|q|)`` clamped to ``[0, 1]``; ``0`` when undefined."""
    values = [finite(q) for q in q_values]
    if not values:
        return 0.0
    total = sum(abs(q) for q in values)
    if total == 0:
        return 0.0
    ratio = abs(max(values)) / total
    if not math.isfinite(ratio):
        return 0.0
    return clamp(ratio, 0.0, 1.0)
