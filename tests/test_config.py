"""Tests for machine_monitor.config - settings models and YAML loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from machine_monitor.config import (
    ModelsConfig,
    MonitorYAMLConfig,
    SimulationSettings,
    load_yaml_config,
)
from machine_monitor.models import MachineSpecs
from machine_monitor.physics import SimulationScenario

# -----------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------


class TestSimulationSettings:
    """SimulationSettings defaults and validation."""

    def test_defaults(self) -> None:
        s = SimulationSettings()
        assert s.tick_period_s == 0.25
        assert s.target_rpm == 2800.0
        assert s.default_target_load == 75.0
        assert s.optimization_cooldown_s == 2.0
        assert s.load_step == 5.0
        assert (s.min_target_load, s.max_target_load) == (10.0, 95.0)
        assert s.history_size == 24
        assert s.prediction_window == 10
        assert s.analysis_interval_s is None
        assert s.duration_s is None

    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError, match="min_target_load"):
            SimulationSettings(min_target_load=90, max_target_load=50)

    def test_non_positive_tick_period_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SimulationSettings(tick_period_s=0)


class TestModelsConfig:
    """ModelsConfig.backend_kwargs()."""

    def test_surrogate_has_no_kwargs(self) -> None:
        assert ModelsConfig().backend_kwargs() == {}

    def test_model_dir_merged_into_options(self) -> None:
        cfg = ModelsConfig(backend="onnx", model_dir="/opt/models", options={"threshold": 0.1})
        assert cfg.backend_kwargs() == {"threshold": 0.1, "model_dir": "/opt/models"}

    def test_explicit_option_wins(self) -> None:
        cfg = ModelsConfig(model_dir="/a", options={"model_dir": "/b"})
        assert cfg.backend_kwargs()["model_dir"] == "/b"


class TestMonitorYAMLConfig:
    def test_defaults(self) -> None:
        cfg = MonitorYAMLConfig()
        assert cfg.machines == []
        assert cfg.sink_configs == []
        assert cfg.models.backend == "surrogate"


# -----------------------------------------------------------------------
# load_yaml_config
# -----------------------------------------------------------------------


class TestLoadYAMLConfig:
    """load_yaml_config() parsing from temporary YAML files."""

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "nonexistent.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "empty.yaml"
        cfg_file.write_text("")
        cfg = load_yaml_config(cfg_file)
        assert cfg.machines == []
        assert cfg.simulation == SimulationSettings()

    def test_full_config(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "monitor.yaml"
        cfg_file.write_text("""\
simulation:
  tick_period_s: 0.5
  optimization_cooldown_s: 4
  analysis_interval_s: 10
  log_level: DEBUG

models:
  backend: onnx
  model_dir: ./models

machines:
  - id: press-01
  - id: pump-07
    scenario: OVERHEATING
    specs:
      max_power: 11
      cooling_rate: 0.08

sinks:
  - type: console
    rate_hz: 1.0
  - type: file
    path: ./runs
""")
        cfg = load_yaml_config(cfg_file)

        assert cfg.simulation.tick_period_s == 0.5
        assert cfg.simulation.optimization_cooldown_s == 4.0
        assert cfg.simulation.analysis_interval_s == 10.0
        assert cfg.simulation.log_level == "DEBUG"
        assert cfg.models.backend == "onnx"
        assert cfg.models.backend_kwargs() == {"model_dir": "./models"}

        assert [m.id for m in cfg.machines] == ["press-01", "pump-07"]
        assert cfg.machines[0].scenario is SimulationScenario.NORMAL
        assert cfg.machines[0].specs == MachineSpecs()
        assert cfg.machines[1].scenario is SimulationScenario.OVERHEATING
        assert cfg.machines[1].specs.max_power == 11.0
        assert cfg.machines[1].specs.cooling_rate == 0.08

        assert len(cfg.sink_configs) == 2
        assert cfg.sink_configs[0] == {"type": "console", "rate_hz": 1.0}

    def test_lowercase_scenario_falls_back(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        cfg_file = tmp_path / "monitor.yaml"
        cfg_file.write_text("machines:\n  - id: m1\n    scenario: unbalanced\n")
        with caplog.at_level(logging.WARNING, logger="machine_monitor.config"):
            cfg = load_yaml_config(cfg_file)
        assert cfg.machines[0].scenario is SimulationScenario.NORMAL
        assert "Unknown scenario 'unbalanced'" in caplog.text

    def test_scenario_whitespace_ignored(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "monitor.yaml"
        cfg_file.write_text("machines:\n  - id: m1\n    scenario: ' UNBALANCED '\n")
        cfg = load_yaml_config(cfg_file)
        assert cfg.machines[0].scenario is SimulationScenario.UNBALANCED

    def test_unknown_scenario_falls_back(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        cfg_file = tmp_path / "monitor.yaml"
        cfg_file.write_text("machines:\n  - id: m1\n    scenario: EXPLODING\n")
        with caplog.at_level(logging.WARNING, logger="machine_monitor.config"):
            cfg = load_yaml_config(cfg_file)
        assert cfg.machines[0].scenario is SimulationScenario.NORMAL
        assert "EXPLODING" in caplog.text

    def test_invalid_settings_raise(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "monitor.yaml"
        cfg_file.write_text("simulation:\n  min_target_load: 90\n  max_target_load: 20\n")
        with pytest.raises(ValidationError):
            load_yaml_config(cfg_file)
