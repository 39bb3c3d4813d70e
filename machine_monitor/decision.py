"""Decision engine - turns the four model outputs into one assessment.

:meth:`DecisionEngine.analyze` scores a sensor snapshot with every model at
once, then applies fixed rules to derive health, risk, performance and
efficiency scores, an alert level, the primary issue, a single recommended
action and a time-to-failure estimate.  Every rule is a static method so it
can be exercised on its own.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from collections.abc import Awaitable, Sequence
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel, Field

from machine_monitor.models import (
    ActionType,
    AlertLevel,
    AnomalyResult,
    DecisionEngineResult,
    LoadAction,
    LoadForecast,
    OptimizationAction,
    PredictionResult,
    QuickCheckResult,
    SensorSnapshot,
)
from machine_monitor.scoring.base import ScoringModels
from machine_monitor.scoring.scaling import ANOMALY_THRESHOLD

__all__ = [
    "DecisionEngine",
    "RecommendedAction",
    "generate_report",
    "synthetic_load_history",
]

logger = logging.getLogger("machine_monitor.decision")

T = TypeVar("T")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _score(value: float) -> int:
    """Round and clamp to ``[0, 100]``; non-finite scores are ``0``."""
    if not math.isfinite(value):
        return 0
    return max(0, min(100, _round_half_up(value)))


class RecommendedAction(BaseModel):
    action: ActionType
    priority: int
    reason: str
    details: list[str] = Field(default_factory=list)


class DecisionEngine:
    """Rule-based synthesis of the anomaly, prediction, forecast and
    optimization models.

    Parameters:
        models: Scoring models to query.
        adapter_timeout_s: Optional per-model timeout; a timeout fails the
            whole analysis like any other model error.
    """

    ANOMALY_THRESHOLD = ANOMALY_THRESHOLD
    HIGH_VIBRATION_THRESHOLD = 1.0  # mm/s
    HIGH_TEMP_THRESHOLD = 75.0  # °C
    CRITICAL_TEMP_THRESHOLD = 85.0  # °C
    CRITICAL_VIBRATION = 2.0  # mm/s, time-to-failure horizon
    MIN_VIBRATION_TREND = 0.01  # mm/s per cycle

    def __init__(self, models: ScoringModels, *, adapter_timeout_s: float | None = None) -> None:
        self._models = models
        self._timeout = adapter_timeout_s

    async def _call(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._timeout)

    # ------------------------------------------------------------------
    # Full analysis
    # ------------------------------------------------------------------

    async def analyze(
        self,
        machine_id: str,
        snapshot: SensorSnapshot,
        load_history: Sequence[float],
        target_load: float,
    ) -> DecisionEngineResult:
        """Run every model on *snapshot* and derive the full assessment.

        Any model failure propagates: the result is all or nothing.
        """
        features = snapshot.to_features()
        anomaly, prediction, forecast, optimization = await asyncio.gather(
            self._call(self._models.detect_anomaly(features)),
            self._call(self._models.predict_next_state([features])),
            self._call(self._models.forecast_load(list(load_history))),
            self._call(self._models.optimize_load(features)),
        )

        health = self.health_score(snapshot, anomaly, prediction)
        alert = self.alert_level(snapshot, anomaly, health)
        issue = self.primary_issue(snapshot, anomaly, prediction)
        risk = self.risk_score(snapshot, anomaly, prediction)
        performance = self.performance_score(snapshot, target_load)
        efficiency = self.efficiency_score(snapshot, optimization)
        recommendation = self.recommend_action(alert, snapshot, anomaly, optimization, risk)
        time_to_failure, confidence = self.estimate_time_to_failure(snapshot, anomaly, prediction)

        logger.debug(
            "Machine %s: health=%d risk=%d alert=%s action=%s",
            machine_id,
            health,
            risk,
            alert.value,
            recommendation.action.value,
        )

        return DecisionEngineResult(
            machine_id=machine_id,
            timestamp=time.time(),
            anomaly_detection=anomaly,
            state_prediction=prediction,
            load_forecast=forecast,
            load_optimization=optimization,
            health_score=health,
            alert_level=alert,
            primary_issue=issue,
            recommended_action=recommendation.action,
            action_priority=recommendation.priority,
            action_reason=recommendation.reason,
            action_details=recommendation.details,
            estimated_time_to_failure=time_to_failure,
            maintenance_confidence=confidence,
            risk_score=risk,
            performance_score=performance,
            efficiency_score=efficiency,
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @classmethod
    def health_score(cls, sensor: SensorSnapshot, anomaly: AnomalyResult, prediction: PredictionResult) -> int:
        """Overall health, 100 minus penalties, in ``[0, 100]``."""
        score = 100.0

        if anomaly.is_anomaly:
            ratio = anomaly.reconstruction_error / cls.ANOMALY_THRESHOLD
            score -= min(ratio * 30.0, 40.0)

        if sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD:
            score -= (sensor.vibration - cls.HIGH_VIBRATION_THRESHOLD) * 20.0

        if sensor.temperature > cls.HIGH_TEMP_THRESHOLD:
            score -= (sensor.temperature - cls.HIGH_TEMP_THRESHOLD) * 2.0

        # Worsening trends
        if prediction.vibration > sensor.vibration * 1.1:
            score -= 10.0
        if prediction.temperature > sensor.temperature * 1.05:
            score -= 5.0

        return _score(score)

    @classmethod
    def alert_level(cls, sensor: SensorSnapshot, anomaly: AnomalyResult, health: int) -> AlertLevel:
        if (
            (anomaly.is_anomaly and anomaly.reconstruction_error >= cls.ANOMALY_THRESHOLD * 2)
            or sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD * 1.5
            or sensor.temperature > cls.CRITICAL_TEMP_THRESHOLD
            or health < 50
        ):
            return AlertLevel.CRITICAL

        if (
            anomaly.is_anomaly
            or sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD
            or sensor.temperature > cls.HIGH_TEMP_THRESHOLD
            or health < 75
        ):
            return AlertLevel.WARNING

        return AlertLevel.NORMAL

    @classmethod
    def primary_issue(
        cls, sensor: SensorSnapshot, anomaly: AnomalyResult, prediction: PredictionResult
    ) -> str | None:
        """Highest-weighted issue; earlier checks win ties."""
        issues: list[tuple[float, str]] = []

        if anomaly.is_anomaly:
            severity = anomaly.reconstruction_error / cls.ANOMALY_THRESHOLD
            issues.append((severity * 10.0, f"Anomaly detected (error: {anomaly.reconstruction_error:.4f})"))

        if sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD * 1.5:
            issues.append((9.0, f"Critical vibration ({sensor.vibration:.3f} mm/s)"))
        elif sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD:
            issues.append((7.0, f"High vibration ({sensor.vibration:.3f} mm/s)"))

        if sensor.temperature > cls.CRITICAL_TEMP_THRESHOLD:
            issues.append((9.0, f"Critical temperature ({sensor.temperature:.1f}°C)"))
        elif sensor.temperature > cls.HIGH_TEMP_THRESHOLD:
            issues.append((6.0, f"High temperature ({sensor.temperature:.1f}°C)"))

        if prediction.vibration > sensor.vibration * 1.2:
            issues.append((5.0, "Vibration trending upward - possible bearing wear"))

        if not issues:
            return None
        # max() keeps the first of equal weights
        return max(issues, key=lambda issue: issue[0])[1]

    @classmethod
    def risk_score(cls, sensor: SensorSnapshot, anomaly: AnomalyResult, prediction: PredictionResult) -> int:
        """Failure risk, higher is worse, in ``[0, 100]``."""
        risk = 0.0

        if anomaly.is_anomaly:
            risk += min((anomaly.reconstruction_error / cls.ANOMALY_THRESHOLD) * 40.0, 40.0)

        risk += min((sensor.vibration / 2.0) * 30.0, 30.0)
        risk += min(max(0.0, (sensor.temperature - 60.0) / 40.0 * 20.0), 20.0)

        if prediction.vibration > sensor.vibration * 1.1:
            risk += 10.0

        return _score(risk)

    @staticmethod
    def performance_score(sensor: SensorSnapshot, target_load: float) -> int:
        """100 minus 30 points per unit of relative deviation from *target_load*."""
        score = 100.0
        if target_load > 0:
            score -= abs(sensor.load - target_load) / target_load * 30.0
        return _score(score)

    @staticmethod
    def efficiency_score(sensor: SensorSnapshot, optimization: OptimizationAction) -> int:
        score = 100.0

        if optimization.action == LoadAction.DECREASE_LOAD:
            score -= 15.0  # running above optimal
        elif optimization.action == LoadAction.INCREASE_LOAD:
            score -= 10.0  # running below optimal

        expected_current = sensor.load * 0.3
        if sensor.current > expected_current * 1.2:
            score -= 20.0

        return _score(score)

    @classmethod
    def recommend_action(
        cls,
        alert: AlertLevel,
        sensor: SensorSnapshot,
        anomaly: AnomalyResult,
        optimization: OptimizationAction,
        risk: int,
    ) -> RecommendedAction:
        """First matching rule wins, from emergency stop down to no action."""
        if alert == AlertLevel.CRITICAL and (
            sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD * 2
            or sensor.temperature > cls.CRITICAL_TEMP_THRESHOLD + 5
        ):
            return RecommendedAction(
                action=ActionType.EMERGENCY_STOP,
                priority=5,
                reason="Critical safety threshold exceeded",
                details=[
                    "Immediate shutdown required",
                    "Contact maintenance team",
                    "Inspect for mechanical damage",
                    "Do not restart until cleared",
                ],
            )

        if alert == AlertLevel.CRITICAL or risk > 80:
            details = ["Schedule immediate maintenance inspection"]
            if anomaly.is_anomaly:
                details.append("Anomaly detected - check bearings and alignment")
            if sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD:
                details.append(f"High vibration ({sensor.vibration:.3f}) - inspect mechanical components")
            if sensor.temperature > cls.HIGH_TEMP_THRESHOLD:
                details.append(f"High temperature ({sensor.temperature:.1f}°C) - check cooling system")
            return RecommendedAction(
                action=ActionType.SCHEDULE_MAINTENANCE,
                priority=4,
                reason="Multiple fault indicators detected",
                details=details,
            )

        if alert == AlertLevel.WARNING or risk > 50:
            details = ["Increase monitoring frequency", "Review maintenance schedule"]
            if anomaly.is_anomaly:
                details.append("Anomaly detected - trend analysis recommended")
            return RecommendedAction(
                action=ActionType.MONITOR,
                priority=3,
                reason="Early warning indicators present",
                details=details,
            )

        if optimization.action != LoadAction.HOLD_LOAD and optimization.confidence > 0.7:
            direction = "Increase" if optimization.action == LoadAction.INCREASE_LOAD else "Decrease"
            return RecommendedAction(
                action=ActionType.OPTIMIZE_LOAD,
                priority=2,
                reason="Load optimization opportunity detected",
                details=[
                    f"{direction} load for optimal efficiency",
                    f"Current load: {sensor.load:.1f}%",
                    f"Confidence: {optimization.confidence * 100:.1f}%",
                ],
            )

        return RecommendedAction(
            action=ActionType.NONE,
            priority=1,
            reason="All systems operating normally",
            details=["Continue normal operations", "Maintain regular monitoring schedule"],
        )

    @classmethod
    def estimate_time_to_failure(
        cls, sensor: SensorSnapshot, anomaly: AnomalyResult, prediction: PredictionResult
    ) -> tuple[float | None, float]:
        """Hours until vibration reaches :attr:`CRITICAL_VIBRATION`, and a confidence.

        Extrapolates the predicted per-cycle vibration increase linearly,
        assuming one cycle per second.
        """
        if not anomaly.is_anomaly and sensor.vibration <= cls.HIGH_VIBRATION_THRESHOLD:
            return None, 0.0

        increase = prediction.vibration - sensor.vibration
        if increase <= 0:
            # Stable or improving, but still being watched
            return None, 0.3

        margin = cls.CRITICAL_VIBRATION - sensor.vibration
        hours = (margin / increase) / 3600.0

        confidence = 0.5
        if anomaly.is_anomaly:
            confidence += 0.2
        if increase > cls.MIN_VIBRATION_TREND:
            confidence += 0.2
        return max(0.0, hours), min(0.95, confidence)

    # ------------------------------------------------------------------
    # Model-free helpers
    # ------------------------------------------------------------------

    @classmethod
    def quick_check(cls, sensor: SensorSnapshot) -> QuickCheckResult:
        """Threshold-only health check, no model calls."""
        issues: list[str] = []
        if sensor.vibration > cls.HIGH_VIBRATION_THRESHOLD * 1.5:
            issues.append("CRITICAL: Excessive vibration")
        if sensor.temperature > cls.CRITICAL_TEMP_THRESHOLD:
            issues.append("CRITICAL: Temperature too high")
        return QuickCheckResult(is_healthy=not issues, critical_issues=issues)

    @staticmethod
    def generate_report(result: DecisionEngineResult) -> str:
        return generate_report(result)


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------

_BANNER = "═" * 47
_FILLED_STAR = "★"
_EMPTY_STAR = "☆"


def generate_report(result: DecisionEngineResult) -> str:
    """Render *result* as the plain-text maintenance report."""
    lines: list[str] = [
        _BANNER,
        "     MACHINE HEALTH & MAINTENANCE REPORT      ",
        _BANNER,
        "",
        f"Machine ID: {result.machine_id}",
        f"Timestamp: {datetime.fromtimestamp(result.timestamp).strftime('%Y-%m-%d %H:%M:%S')}",
        f"Alert Level: {result.alert_level.value.upper()}",
        "",
        "─── HEALTH METRICS ───",
        f"Overall Health: {result.health_score}/100",
        f"Risk Score: {result.risk_score}/100",
        f"Performance: {result.performance_score}/100",
        f"Efficiency: {result.efficiency_score}/100",
        "",
    ]

    if result.primary_issue:
        lines += ["─── PRIMARY ISSUE ───", f"⚠ {result.primary_issue}", ""]

    anomaly = result.anomaly_detection
    lines += [
        "─── ML ANALYSIS RESULTS ───",
        f"Anomaly: {'DETECTED' if anomaly.is_anomaly else 'None'}",
        f"  Error: {anomaly.reconstruction_error:.4f}",
        f"  Threshold: {DecisionEngine.ANOMALY_THRESHOLD}",
        "",
        f"Load Forecast: {result.load_forecast.predicted_load:.2f} kW",
        f"Optimization: {result.load_optimization.action.value.upper()}",
        f"  Confidence: {result.load_optimization.confidence * 100:.1f}%",
        "",
    ]

    if result.estimated_time_to_failure is not None:
        lines += [
            "─── PREDICTIVE MAINTENANCE ───",
            f"Estimated Time to Failure: {result.estimated_time_to_failure:.1f} hours",
            f"Confidence: {result.maintenance_confidence * 100:.1f}%",
            "",
        ]

    priority = max(0, min(5, result.action_priority))
    lines += [
        "─── RECOMMENDED ACTION ───",
        f"Action: {result.recommended_action.value.upper().replace('_', ' ')}",
        f"Priority: {_FILLED_STAR * priority}{_EMPTY_STAR * (5 - priority)}",
        f"Reason: {result.action_reason}",
        "",
        "Details:",
    ]
    lines += [f"  • {detail}" for detail in result.action_details]
    lines += ["", _BANNER]

    return "\n".join(lines)


def synthetic_load_history(
    current_load: float,
    length: int = 24,
    rng: random.Random | None = None,
) -> list[float]:
    """Plausible load history around *current_load* for one-shot analyses.

    Each point is the current load plus up to ±7.5 % noise and a 10 % sine
    trend, floored at 0 and rounded to two decimals.
    """
    rng = rng or random.Random()
    history: list[float] = []
    for i in range(length):
        variation = (rng.random() - 0.5) * current_load * 0.15
        trend = math.sin(i * 0.2) * current_load * 0.1
        history.append(round(max(0.0, current_load + variation + trend), 2))
    return history
