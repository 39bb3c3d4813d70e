"""Deterministic surrogate scoring models.

Stand-ins for the trained networks, built from the same physical relations
the simulator follows, so the monitor runs end-to-end without model files.
All four operate in the scaled feature space of
:mod:`machine_monitor.scoring.scaling`, exactly like the trained models.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from machine_monitor.models import (
    AnomalyResult,
    LoadForecast,
    OptimizationAction,
    PredictionResult,
    SensorFeatures,
)
from machine_monitor.scoring.base import ScoringModels, select_action
from machine_monitor.scoring.scaling import (
    ANOMALY_THRESHOLD,
    FORECAST_WINDOW,
    PREDICTION_WINDOW,
    clamp,
    finite,
    pad_left,
    scale_feature,
    unscale_feature,
)

__all__ = ["SurrogateScoringModels"]

# Nominal operating line in scaled space: feature = intercept + slope * load.
# Order: vibration, current, temperature.
_NOMINAL_INTERCEPTS = (0.2, 0.0, 0.05)
_NOMINAL_SLOPES = (0.7, 1.0, 0.514)

# Optimizer reward shaping (scaled units).
_STRESS_LIMIT = 0.6
_SLACK_LIMIT = 0.45
_HOLD_BIAS = 0.5


class SurrogateScoringModels(ScoringModels):
    """Physics-informed replacements for the four trained models.

    * anomaly: a one-dimensional "load" autoencoder.  The scaled
      ``(vibration, current, temperature)`` vector is projected onto the
      nominal operating line by least squares and reconstructed from that
      latent load; the mean squared reconstruction error is the score.
    * next state: recency-weighted steady-state vibration and temperature
      implied by the rpm/load history.
    * load forecast: least-squares linear trend over the window, one step
      ahead.
    * optimizer: Q-values from a stress (vibration/temperature above 60 % of
      range) versus slack (load below 45 %) reward.

    Parameters:
        anomaly_threshold: Reconstruction error above which a reading is anomalous.
        clock: Used for forecast timestamps.
    """

    name = "surrogate"

    def __init__(
        self,
        *,
        anomaly_threshold: float = ANOMALY_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.anomaly_threshold = anomaly_threshold
        self._clock = clock

    async def detect_anomaly(self, features: SensorFeatures) -> AnomalyResult:
        x = (
            scale_feature("vibration", features.vibration, clip=True),
            scale_feature("current", features.current, clip=True),
            scale_feature("temperature", features.temperature, clip=True),
        )
        numerator = sum(b * (xi - a) for xi, a, b in zip(x, _NOMINAL_INTERCEPTS, _NOMINAL_SLOPES))
        denominator = sum(b * b for b in _NOMINAL_SLOPES)
        latent = clamp(numerator / denominator, 0.0, 1.0)

        reconstruction = [a + b * latent for a, b in zip(_NOMINAL_INTERCEPTS, _NOMINAL_SLOPES)]
        mse = sum((xi - ri) ** 2 for xi, ri in zip(x, reconstruction)) / len(x)

        return AnomalyResult(
            is_anomaly=mse > self.anomaly_threshold,
            reconstruction_error=mse,
            threshold=self.anomaly_threshold,
        )

    async def predict_next_state(self, sequence: Sequence[SensorFeatures]) -> PredictionResult:
        window = pad_left(sequence, PREDICTION_WINDOW, SensorFeatures())

        vib_acc = 0.0
        temp_acc = 0.0
        weight_total = 0.0
        for weight, record in enumerate(window, start=1):
            load = clamp(scale_feature("load_percent", record.load_percent), 0.0, 1.0)
            rpm = clamp(scale_feature("rpm", record.rpm), 0.0, 1.0)
            # Same relations as the physics engine, in scaled units.
            vib_acc += weight * (0.2 + 0.7 * load + 0.05 * rpm)
            temp_acc += weight * (0.05 + 0.48 * load * (rpm * rpm + 0.2))
            weight_total += weight

        return PredictionResult(
            vibration=unscale_feature("vibration", clamp(vib_acc / weight_total, 0.0, 1.0)),
            temperature=unscale_feature("temperature", clamp(temp_acc / weight_total, 0.0, 1.0)),
        )

    async def forecast_load(self, history: Sequence[float]) -> LoadForecast:
        window = pad_left([finite(v) for v in history], FORECAST_WINDOW, 0.0)
        scaled = [scale_feature("load_kw", v) for v in window]

        n = len(scaled)
        mean_x = (n - 1) / 2.0
        mean_y = sum(scaled) / n
        sxx = sum((i - mean_x) ** 2 for i in range(n))
        sxy = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(scaled))
        slope = sxy / sxx if sxx else 0.0
        next_value = clamp(mean_y + slope * (n - mean_x), 0.0, 1.0)

        return LoadForecast(
            predicted_load=unscale_feature("load_kw", next_value),
            timestamp=self._clock() + 3600.0,
        )

    async def optimize_load(self, features: SensorFeatures) -> OptimizationAction:
        vib = scale_feature("vibration", features.vibration, clip=True)
        temp = scale_feature("temperature", features.temperature, clip=True)
        load = scale_feature("load_percent", features.load_percent, clip=True)

        stress = max(0.0, vib - _STRESS_LIMIT) + max(0.0, temp - _STRESS_LIMIT)
        slack = max(0.0, _SLACK_LIMIT - load)
        q_values = [
            2.0 * stress - slack,
            _HOLD_BIAS - stress - slack,
            2.0 * slack - 2.0 * stress,
        ]
        return select_action(q_values)
