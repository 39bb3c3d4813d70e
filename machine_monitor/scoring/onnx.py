"""ONNX scoring models - runs the four trained networks with onnxruntime.

Requires the ``onnx`` extra::

    pip install machine-monitor[onnx]

The model directory must contain ``model_metadata.json``::

    {
      "models": {
        "autoencoder_anomaly": {"path": "autoencoder_anomaly.onnx", "anomalyThreshold": 0.0814},
        "lstm_digital_twin":   {"path": "lstm_digital_twin.onnx"},
        "gru_load_forecast":   {"path": "gru_load_forecast.onnx"},
        "dqn_agent":           {"path": "dqn_agent.onnx"}
      }
    }

Paths are resolved relative to the model directory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

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
    finite,
    pad_left,
    scale_feature,
    unscale_feature,
)

__all__ = ["OnnxScoringModels"]

logger = logging.getLogger("machine_monitor.scoring.onnx")

try:
    import numpy as np
    import onnxruntime as ort

    ONNX_AVAILABLE = True
except ImportError:
    ONNX_AVAILABLE = False

ANOMALY_MODEL = "autoencoder_anomaly"
PREDICTION_MODEL = "lstm_digital_twin"
FORECAST_MODEL = "gru_load_forecast"
OPTIMIZER_MODEL = "dqn_agent"

_PREDICTION_FEATURES = ("rpm", "load_percent", "load_kw", "current", "torque")


class OnnxScoringModels(ScoringModels):
    """Runs the trained anomaly autoencoder, LSTM digital twin, GRU load
    forecaster and DQN load agent.

    Sessions are created lazily on first use and cached; inference runs in
    the default executor so it never blocks the event loop.  Load or
    inference errors propagate to the caller.

    Parameters:
        model_dir: Directory holding ``model_metadata.json`` and the models.
        providers: onnxruntime execution providers (default: CPU).
        clock: Used for forecast timestamps.
    """

    name = "onnx"

    def __init__(
        self,
        model_dir: str | Path = "./models",
        *,
        providers: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not ONNX_AVAILABLE:
            raise ImportError(
                "onnxruntime and numpy are required for OnnxScoringModels.  "
                "Install with: pip install machine-monitor[onnx]"
            )
        self._dir = Path(model_dir)
        self._providers = providers or ["CPUExecutionProvider"]
        self._clock = clock
        self._metadata: dict[str, dict[str, Any]] | None = None
        self._sessions: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    def _read_metadata(self) -> dict[str, dict[str, Any]]:
        path = self._dir / "model_metadata.json"
        if not path.exists():
            raise FileNotFoundError(f"Model metadata not found: {path}")
        with path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
        return raw.get("models", {})

    def metadata(self, model_name: str) -> dict[str, Any]:
        if self._metadata is None:
            self._metadata = self._read_metadata()
        meta = self._metadata.get(model_name)
        if meta is None:
            raise KeyError(f"Model {model_name} not found in metadata")
        return meta

    async def _session(self, model_name: str) -> Any:
        async with self._lock:
            session = self._sessions.get(model_name)
            if session is not None:
                return session

            meta = self.metadata(model_name)
            model_path = self._dir / str(meta["path"]).lstrip("/")
            loop = asyncio.get_running_loop()
            session = await loop.run_in_executor(
                None,
                lambda: ort.InferenceSession(str(model_path), providers=self._providers),
            )
            self._sessions[model_name] = session
            logger.info("Model %s loaded from %s", model_name, model_path)
            return session

    async def _run(self, model_name: str, features: list[float], shape: tuple[int, ...]) -> list[float]:
        session = await self._session(model_name)
        tensor = np.asarray(features, dtype=np.float32).reshape(shape)
        feeds = {session.get_inputs()[0].name: tensor}

        loop = asyncio.get_running_loop()
        outputs = await loop.run_in_executor(None, session.run, None, feeds)
        return [float(v) for v in np.asarray(outputs[0]).ravel()]

    # ------------------------------------------------------------------
    # ScoringModels
    # ------------------------------------------------------------------

    async def detect_anomaly(self, features: SensorFeatures) -> AnomalyResult:
        threshold = float(self.metadata(ANOMALY_MODEL).get("anomalyThreshold", ANOMALY_THRESHOLD))
        inputs = [
            scale_feature("vibration", features.vibration, clip=True),
            scale_feature("current", features.current, clip=True),
            scale_feature("temperature", features.temperature, clip=True),
        ]
        reconstruction = await self._run(ANOMALY_MODEL, inputs, (1, 3))
        mse = sum((x - r) ** 2 for x, r in zip(inputs, reconstruction)) / len(inputs)
        return AnomalyResult(
            is_anomaly=mse > threshold,
            reconstruction_error=mse,
            threshold=threshold,
        )

    async def predict_next_state(self, sequence: Sequence[SensorFeatures]) -> PredictionResult:
        window = pad_left(sequence, PREDICTION_WINDOW, SensorFeatures())
        inputs = [
            scale_feature(name, getattr(record, name))
            for record in window
            for name in _PREDICTION_FEATURES
        ]
        output = await self._run(PREDICTION_MODEL, inputs, (1, PREDICTION_WINDOW, len(_PREDICTION_FEATURES)))
        return PredictionResult(
            vibration=unscale_feature("vibration", output[0]),
            temperature=unscale_feature("temperature", output[1]),
        )

    async def forecast_load(self, history: Sequence[float]) -> LoadForecast:
        window = pad_left([finite(v) for v in history], FORECAST_WINDOW, 0.0)
        inputs = [scale_feature("load_kw", v) for v in window]
        output = await self._run(FORECAST_MODEL, inputs, (1, FORECAST_WINDOW, 1))
        return LoadForecast(
            predicted_load=unscale_feature("load_kw", output[0]),
            timestamp=self._clock() + 3600.0,
        )

    async def optimize_load(self, features: SensorFeatures) -> OptimizationAction:
        inputs = [
            scale_feature("vibration", features.vibration),
            scale_feature("temperature", features.temperature),
            scale_feature("load_percent", features.load_percent),
        ]
        q_values = await self._run(OPTIMIZER_MODEL, inputs, (1, 3))
        return select_action(q_values[:3])

    async def close(self) -> None:
        self._sessions.clear()
