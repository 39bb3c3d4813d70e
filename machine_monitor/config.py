"""Configuration models and YAML loader.

Parses YAML files with the following top-level sections::

    simulation:   # loop cadence, control constants, timeouts, logging
    models:       # scoring backend selection
    machines:     # machines to register, with specs and scenario
    sinks:        # list of sink configs with throughput params

Example:

.. code-block:: yaml

    simulation:
      tick_period_s: 0.25
      optimization_cooldown_s: 2.0
      analysis_interval_s: 10

    models:
      backend: surrogate

    machines:
      - id: press-01
        scenario: NORMAL
      - id: pump-07
        scenario: OVERHEATING
        specs:
          max_power: 11
          cooling_rate: 0.08

    sinks:
      - type: console
        rate_hz: 1.0
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from machine_monitor.models import MachineSpecs
from machine_monitor.physics import SimulationScenario

__all__ = [
    "MachineConfig",
    "ModelsConfig",
    "MonitorYAMLConfig",
    "SimulationSettings",
    "load_yaml_config",
]

logger = logging.getLogger("machine_monitor.config")


class SimulationSettings(BaseModel):
    """Control-loop constants shared by every machine.

    Attributes:
        tick_period_s: Wall-clock period between two ticks of one machine.
        physics_dt_s: Simulated time advanced per tick.
        target_rpm: Fixed RPM setpoint.
        default_target_load: Initial load setpoint (%).
        optimization_cooldown_s: Minimum spacing between optimizer calls.
        load_step: Setpoint change applied per optimizer verdict (%).
        min_target_load / max_target_load: Setpoint clamp (%).
        history_size: Capacity of the sensor and load histories.
        prediction_window: Samples needed before the predictor runs.
        adapter_timeout_s: Per-call timeout for the scoring models
            (``None`` disables it).
        analysis_interval_s: Run a full decision-engine analysis of every
            machine at this cadence (``None`` disables it).
        duration_s: Optional run duration (seconds).
        log_level: Logging level string.
    """

    tick_period_s: float = Field(default=0.25, gt=0)
    physics_dt_s: float = Field(default=0.1, ge=0)
    target_rpm: float = Field(default=2800.0, ge=0)
    default_target_load: float = 75.0
    optimization_cooldown_s: float = Field(default=2.0, ge=0)
    load_step: float = 5.0
    min_target_load: float = 10.0
    max_target_load: float = 95.0
    history_size: int = Field(default=24, ge=1)
    prediction_window: int = Field(default=10, ge=1)
    adapter_timeout_s: float | None = 1.0
    analysis_interval_s: float | None = None
    duration_s: float | None = None
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_load_bounds(self) -> SimulationSettings:
        if self.min_target_load > self.max_target_load:
            raise ValueError("min_target_load must not exceed max_target_load")
        return self


class ModelsConfig(BaseModel):
    """Scoring backend selection; ``options`` go to the backend constructor."""

    backend: str = "surrogate"
    model_dir: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    def backend_kwargs(self) -> dict[str, Any]:
        kwargs = dict(self.options)
        if self.model_dir is not None:
            kwargs.setdefault("model_dir", self.model_dir)
        return kwargs


class MachineConfig(BaseModel):
    id: str
    scenario: SimulationScenario = SimulationScenario.NORMAL
    specs: MachineSpecs = Field(default_factory=MachineSpecs)


class MonitorYAMLConfig(BaseModel):
    """Parsed representation of the full YAML configuration."""

    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    machines: list[MachineConfig] = Field(default_factory=list)
    sink_configs: list[dict[str, Any]] = Field(default_factory=list)


def load_yaml_config(path: str | Path) -> MonitorYAMLConfig:
    """Load and validate a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    config = MonitorYAMLConfig(
        simulation=SimulationSettings(**(raw.get("simulation") or {})),
        models=ModelsConfig(**(raw.get("models") or {})),
        machines=_parse_machines(raw.get("machines") or []),
        sink_configs=raw.get("sinks") or [],
    )

    logger.info(
        "Loaded config: %d machines, %d sinks, backend=%s",
        len(config.machines),
        len(config.sink_configs),
        config.models.backend,
    )
    return config


def _parse_machines(machine_dicts: list[dict[str, Any]]) -> list[MachineConfig]:
    """Convert raw YAML machine dicts into ``MachineConfig`` instances."""
    machines: list[MachineConfig] = []
    for d in machine_dicts:
        d = dict(d)  # copy
        raw_scenario = str(d.pop("scenario", SimulationScenario.NORMAL.value)).strip()
        try:
            scenario = SimulationScenario(raw_scenario)
        except ValueError:
            logger.warning("Unknown scenario '%s' - falling back to 'NORMAL'", raw_scenario)
            scenario = SimulationScenario.NORMAL

        machines.append(
            MachineConfig(
                id=str(d.pop("id")),
                scenario=scenario,
                specs=MachineSpecs(**(d.pop("specs", None) or {})),
            )
        )
    return machines
