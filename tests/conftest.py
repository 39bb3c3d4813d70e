"""Shared fakes: deterministic scoring models, a controllable clock and a
seeded physics engine factory."""

from __future__ import annotations

import asyncio
import random
from collections import Counter
from collections.abc import Sequence

import pytest

from machine_monitor.models import (
    AnomalyResult,
    LoadAction,
    LoadForecast,
    MachineSpecs,
    MachineState,
    OptimizationAction,
    PredictionResult,
    SensorFeatures,
    SimulationResult,
)
from machine_monitor.physics import PhysicsEngine
from machine_monitor.scoring.base import ScoringModels


class FakeScoringModels(ScoringModels):
    """Returns canned results; can be told to fail or stall per model."""

    name = "fake"

    def __init__(self) -> None:
        self.anomaly = AnomalyResult(is_anomaly=False, reconstruction_error=0.01, threshold=0.0814)
        self.prediction = PredictionResult(vibration=0.31, temperature=40.5)
        self.forecast = LoadForecast(predicted_load=5.2, timestamp=1_700_003_600.0)
        self.optimization = OptimizationAction(
            action=LoadAction.HOLD_LOAD,
            q_values=[0.1, 0.6, 0.3],
            confidence=0.6,
        )
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()
        self.errors: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.sequences: list[list[SensorFeatures]] = []
        self.histories: list[list[float]] = []
        self.closed = False

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")
        if name in self.errors:
            raise self.errors[name]

    async def detect_anomaly(self, features: SensorFeatures) -> AnomalyResult:
        await self._enter("detect_anomaly")
        return self.anomaly

    async def predict_next_state(self, sequence: Sequence[SensorFeatures]) -> PredictionResult:
        await self._enter("predict_next_state")
        self.sequences.append(list(sequence))
        return self.prediction

    async def forecast_load(self, history: Sequence[float]) -> LoadForecast:
        await self._enter("forecast_load")
        self.histories.append(list(history))
        return self.forecast

    async def optimize_load(self, features: SensorFeatures) -> OptimizationAction:
        await self._enter("optimize_load")
        return self.optimization

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seeded_engine(specs: MachineSpecs) -> PhysicsEngine:
    return PhysicsEngine(specs, rng=random.Random(42))


@pytest.fixture()
def fake_models() -> FakeScoringModels:
    return FakeScoringModels()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


def make_results(n: int = 3, machine_id: str = "press-01") -> list[SimulationResult]:
    """Create *n* sample tick results; even ticks carry model verdicts."""
    results = []
    for i in range(n):
        features = SensorFeatures(
            rpm=2800.0,
            load_percent=70.0 + i,
            load_kw=9.0,
            current=40.9,
            torque=30.7,
            vibration=7.4,
            temperature=60.0 + i,
            timestamp=1_700_000_000.0 + i,
        )
        state = MachineState(
            rpm=2800.0,
            temperature=60.0 + i,
            vibration=7.4,
            power=9.0,
            load=70.0 + i,
            efficiency=95.0,
            noise=102.0,
            timestamp=1_700_000_000.0 + i,
        )
        verdicts = {}
        if i % 2 == 0:
            verdicts = {
                "anomaly": AnomalyResult(is_anomaly=i == 2, reconstruction_error=0.05 * (i + 1), threshold=0.0814),
                "optimization": OptimizationAction(
                    action=LoadAction.HOLD_LOAD,
                    q_values=[0.0, 0.5, 0.0],
                    confidence=1.0,
                ),
            }
        results.append(
            SimulationResult(
                machine_id=machine_id,
                scenario="NORMAL",
                tick=i + 1,
                state=state,
                features=features,
                target_load=75.0,
                **verdicts,
            )
        )
    return results
