"""Common data models for the machine monitor.

Defines the physical state of a simulated machine, the feature records the
scoring models consume, the model outputs, and the composite records that
leave the core (``SimulationResult`` per tick, ``DecisionEngineResult`` per
analysis).
"""

from __future__ import annotations

import math
import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "ActionType",
    "AlertLevel",
    "AnomalyResult",
    "DecisionEngineResult",
    "LoadAction",
    "LoadForecast",
    "MachineSpecs",
    "MachineState",
    "OptimizationAction",
    "PredictionResult",
    "QuickCheckResult",
    "SensorFeatures",
    "SensorSnapshot",
    "SimulationResult",
]


def _now() -> float:
    return time.time()


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LoadAction(StrEnum):
    """Verdicts of the load optimizer, in Q-value order."""

    DECREASE_LOAD = "decrease_load"
    HOLD_LOAD = "hold_load"
    INCREASE_LOAD = "increase_load"


class AlertLevel(StrEnum):
    """Coarse health classification."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class ActionType(StrEnum):
    """Action recommended by the decision engine."""

    NONE = "none"
    MONITOR = "monitor"
    SCHEDULE_MAINTENANCE = "schedule_maintenance"
    EMERGENCY_STOP = "emergency_stop"
    OPTIMIZE_LOAD = "optimize_load"


# ---------------------------------------------------------------------------
# Machine description and physical state
# ---------------------------------------------------------------------------


class MachineSpecs(BaseModel):
    """Rated characteristics of a machine, fixed at registration.

    Attributes:
        max_rpm: Rated maximum shaft speed.
        max_temp: Rated maximum housing temperature (°C).
        max_power: Rated electrical power (kW).
        base_vibration: Vibration at zero load (mm/s).
        cooling_rate: Fraction of the temperature gap to ambient shed per second.
        heating_factor: Relative heat generation at full load.
    """

    model_config = {"frozen": True}

    max_rpm: float = Field(default=3000.0, ge=0)
    max_temp: float = 120.0
    max_power: float = Field(default=15.0, ge=0)
    base_vibration: float = Field(default=2.0, ge=0)
    cooling_rate: float = Field(default=0.1, ge=0)
    heating_factor: float = 1.0


class MachineState(BaseModel):
    """Continuous physical state advanced by :class:`PhysicsEngine`."""

    rpm: float = 0.0
    temperature: float = 25.0
    vibration: float = 0.0
    power: float = 0.0  # kW
    load: float = 0.0  # %
    efficiency: float = 100.0  # %
    noise: float = 40.0  # dB
    timestamp: float = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Sensor records
# ---------------------------------------------------------------------------


class SensorFeatures(BaseModel):
    """Full feature record fed to the scoring models.

    Every field defaults to ``0`` so partial records (e.g. built from a
    :class:`SensorSnapshot`) stay valid model input.
    """

    rpm: float = 0.0
    load_percent: float = 0.0
    load_kw: float = 0.0
    current: float = 0.0
    torque: float = 0.0
    vibration: float = 0.0
    temperature: float = 0.0
    timestamp: float = Field(default_factory=_now)


class SensorSnapshot(BaseModel):
    """Point-in-time reading analysed by the decision engine."""

    rpm: float
    vibration: float
    temperature: float
    current: float
    load: float
    timestamp: float = Field(default_factory=_now)

    @field_validator("rpm", "vibration", "temperature", "current", "load")
    @classmethod
    def _finite_or_zero(cls, value: float) -> float:
        """NaN and infinite readings become ``0``."""
        return value if math.isfinite(value) else 0.0

    @classmethod
    def from_features(cls, features: SensorFeatures) -> SensorSnapshot:
        return cls(
            rpm=features.rpm,
            vibration=features.vibration,
            temperature=features.temperature,
            current=features.current,
            load=features.load_percent,
            timestamp=features.timestamp,
        )

    def to_features(self) -> SensorFeatures:
        return SensorFeatures(
            rpm=self.rpm,
            load_percent=self.load,
            current=self.current,
            vibration=self.vibration,
            temperature=self.temperature,
            timestamp=self.timestamp,
        )


# ---------------------------------------------------------------------------
# Scoring model outputs
# ---------------------------------------------------------------------------


class AnomalyResult(BaseModel):
    is_anomaly: bool
    reconstruction_error: float
    threshold: float


class PredictionResult(BaseModel):
    """Predicted next vibration (mm/s) and temperature (°C)."""

    vibration: float
    temperature: float


class LoadForecast(BaseModel):
    predicted_load: float  # kW
    timestamp: float


class OptimizationAction(BaseModel):
    action: LoadAction
    q_values: list[float]
    confidence: float = Field(ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Composite records
# ---------------------------------------------------------------------------


class SimulationResult(BaseModel):
    """What a machine's control loop publishes after every tick.

    Model outputs are ``None`` on ticks where the model was not due (the
    optimizer's cooldown, the predictor's warm-up) or where the call failed.
    """

    machine_id: str
    scenario: str
    tick: int
    state: MachineState
    features: SensorFeatures
    anomaly: AnomalyResult | None = None
    optimization: OptimizationAction | None = None
    prediction: PredictionResult | None = None
    target_load: float

    def to_dict(self) -> dict[str, Any]:
        """Return a plain ``dict`` representation (JSON-safe types)."""
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Return a compact JSON string."""
        return self.model_dump_json()

    def to_flat_dict(self) -> dict[str, Any]:
        """Return a single-level dict suitable for CSV rows."""
        state = self.state
        row: dict[str, Any] = {
            "timestamp": state.timestamp,
            "machine_id": self.machine_id,
            "scenario": self.scenario,
            "tick": self.tick,
            "rpm": state.rpm,
            "temperature": state.temperature,
            "vibration": state.vibration,
            "power": state.power,
            "load": state.load,
            "efficiency": state.efficiency,
            "noise": state.noise,
            "current": self.features.current,
            "torque": self.features.torque,
            "target_load": self.target_load,
            "is_anomaly": self.anomaly.is_anomaly if self.anomaly else None,
            "reconstruction_error": self.anomaly.reconstruction_error if self.anomaly else None,
            "optimization_action": self.optimization.action.value if self.optimization else None,
            "predicted_vibration": self.prediction.vibration if self.prediction else None,
            "predicted_temperature": self.prediction.temperature if self.prediction else None,
        }
        return row


class DecisionEngineResult(BaseModel):
    """Composite assessment produced by one :meth:`DecisionEngine.analyze` call."""

    model_config = {"frozen": True}

    machine_id: str
    timestamp: float

    anomaly_detection: AnomalyResult
    state_prediction: PredictionResult
    load_forecast: LoadForecast
    load_optimization: OptimizationAction

    health_score: int = Field(ge=0, le=100)
    alert_level: AlertLevel
    primary_issue: str | None = None

    recommended_action: ActionType
    action_priority: int = Field(ge=1, le=5)
    action_reason: str
    action_details: list[str] = Field(default_factory=list)

    estimated_time_to_failure: float | None = None  # hours
    maintenance_confidence: float = Field(ge=0.0, le=1.0)

    risk_score: int = Field(ge=0, le=100)
    performance_score: int = Field(ge=0, le=100)
    efficiency_score: int = Field(ge=0, le=100)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json()


class QuickCheckResult(BaseModel):
    is_healthy: bool
    critical_issues: list[str] = Field(default_factory=list)
