"""Scoring model interface.

The simulation manager and the decision engine only ever talk to the four
models through :class:`ScoringModels`, so the core can run against the
trained ONNX models, the dependency-free surrogates, or deterministic fakes
in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from machine_monitor.models import (
    AnomalyResult,
    LoadAction,
    LoadForecast,
    OptimizationAction,
    PredictionResult,
    SensorFeatures,
)
from machine_monitor.scoring.scaling import finite, q_confidence

__all__ = ["ACTION_ORDER", "ScoringModels", "select_action"]

# Q-value index -> action, as trained.
ACTION_ORDER: tuple[LoadAction, ...] = (
    LoadAction.DECREASE_LOAD,
    LoadAction.HOLD_LOAD,
    LoadAction.INCREASE_LOAD,
)


class ScoringModels(ABC):
    """The four scoring models as coroutines.

    Concrete implementations must scale inputs with
    :mod:`machine_monitor.scoring.scaling` and return results in raw units.
    """

    name: str = "abstract"

    @abstractmethod
    async def detect_anomaly(self, features: SensorFeatures) -> AnomalyResult:
        """Score ``vibration``, ``current`` and ``temperature`` for anomalies."""

    @abstractmethod
    async def predict_next_state(self, sequence: Sequence[SensorFeatures]) -> PredictionResult:
        """Predict next vibration/temperature from up to 10 feature records.

        Uses ``rpm``, ``load_percent``, ``load_kw``, ``current`` and ``torque``
        of each record; shorter sequences are left-padded with the first one.
        """

    @abstractmethod
    async def forecast_load(self, history: Sequence[float]) -> LoadForecast:
        """Forecast the next load (kW) from up to 24 past values."""

    @abstractmethod
    async def optimize_load(self, features: SensorFeatures) -> OptimizationAction:
        """Recommend decreasing, holding or increasing the load."""

    async def close(self) -> None:
        """Release model resources.  No-op by default."""


def select_action(q_values: Sequence[float]) -> OptimizationAction:
    """Pick the arg-max action (first maximum wins); hold when no Q-value is finite."""
    values = [finite(q, default=float("-inf")) for q in q_values[: len(ACTION_ORDER)]]
    index = 1
    best = float("-inf")
    for i, q in enumerate(values):
        if q > best:
            best = q
            index = i
    return OptimizationAction(
        action=ACTION_ORDER[index],
        q_values=[finite(q) for q in q_values],
        confidence=q_confidence(q_values),
    )
