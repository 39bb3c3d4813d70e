"""Machine Monitor - simulate industrial machines, score their telemetry with
anomaly, prediction, forecasting and load-optimization models, and turn the
scores into maintenance decisions.

Quick start::

    from machine_monitor import Monitor
    from machine_monitor.sinks import ConsoleSink

    monitor = Monitor()
    monitor.add_machine("press-01", scenario="UNBALANCED")
    monitor.add_sink(ConsoleSink(rate_hz=1.0))
    monitor.run(duration_s=10)
"""

from __future__ import annotations

from machine_monitor.config import SimulationSettings
from machine_monitor.decision import DecisionEngine, generate_report
from machine_monitor.manager import MachineNotRegisteredError, NoTelemetryError, SimulationManager
from machine_monitor.models import (
    ActionType,
    AlertLevel,
    DecisionEngineResult,
    LoadAction,
    MachineSpecs,
    MachineState,
    SensorSnapshot,
    SimulationResult,
)
from machine_monitor.monitor import Monitor
from machine_monitor.physics import PhysicsEngine, SimulationScenario
from machine_monitor.scoring import ScoringModels, SurrogateScoringModels, create_scoring_models

__all__ = [
    "ActionType",
    "AlertLevel",
    "DecisionEngine",
    "DecisionEngineResult",
    "LoadAction",
    "MachineNotRegisteredError",
    "MachineSpecs",
    "MachineState",
    "Monitor",
    "NoTelemetryError",
    "PhysicsEngine",
    "ScoringModels",
    "SensorSnapshot",
    "SimulationManager",
    "SimulationResult",
    "SimulationScenario",
    "SimulationSettings",
    "SurrogateScoringModels",
    "create_scoring_models",
    "generate_report",
]

__version__ = "0.1.0"
