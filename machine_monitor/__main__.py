"""CLI entry point for the Machine Monitor.

Usage::

    machine-monitor run --machines 3 --scenario OVERHEATING --duration 30
    machine-monitor run -s console -s file -o ./data --analysis-interval 5
    machine-monitor run --config monitor.yaml
    machine-monitor analyze --vibration 2.5 --temperature 95 --current 12 --load 85 --rpm 2800
    machine-monitor list-scenarios
    machine-monitor list-sinks
    machine-monitor init-config --output monitor.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
import textwrap
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from machine_monitor.scoring import ScoringModels

_LOG_FORMAT = "%(asctime)s %(name)-30s %(levelname)-7s %(message)s"

# ---------------------------------------------------------------------------
# Sample YAML config template for init-config
# ---------------------------------------------------------------------------
_SAMPLE_CONFIG = """\
# Machine Monitor configuration

simulation:
  tick_period_s: 0.25                 # seconds between ticks of one machine
  physics_dt_s: 0.1                   # simulated seconds per tick
  target_rpm: 2800
  default_target_load: 75             # initial load setpoint (%)
  optimization_cooldown_s: 2.0        # min spacing between optimizer calls
  load_step: 5                        # setpoint change per optimizer verdict (%)
  min_target_load: 10
  max_target_load: 95
  adapter_timeout_s: 1.0              # per-model timeout
  # analysis_interval_s: 10           # optional: periodic decision-engine analysis
  # duration_s: 60                    # optional: auto-stop after N seconds
  # log_level: INFO                   # DEBUG, INFO, WARNING, ERROR

models:
  backend: surrogate                  # surrogate (built-in) or onnx
  # model_dir: ./models               # onnx: directory with model_metadata.json

# Machines to simulate (run 'machine-monitor list-scenarios' for scenarios)
machines:
  - id: press-01
    scenario: NORMAL

  - id: pump-07
    scenario: OVERHEATING
    specs:
      max_rpm: 3000
      max_power: 11                   # kW
      cooling_rate: 0.08

# Sinks define where tick results are sent. Each has independent throughput control.
sinks:
  - type: console
    fmt: text                         # text or json
    rate_hz: 1.0                      # flush once per second

  # - type: file
  #   path: ./output
  #   format: csv                     # csv or json
  #   rotation: 1h                    # rotate files: 30s, 5m, 1h, 1d
  #   rate_hz: 1.0
  #   batch_size: 500
"""


# ======================================================================
# Main entry point
# ======================================================================


def main(argv: list[str] | None = None) -> None:
    from machine_monitor.physics import SimulationScenario
    from machine_monitor.scoring import SCORING_BACKENDS

    scenarios = [s.value for s in SimulationScenario]
    backends = sorted(SCORING_BACKENDS)

    epilog = textwrap.dedent("""\
        examples:
          machine-monitor run --machines 3 --duration 30
          machine-monitor run --scenario UNBALANCED -s console -s file -o ./data
          machine-monitor run --config monitor.yaml
          machine-monitor analyze --vibration 0.5 --temperature 55 --current 15 --load 70 --rpm 2800
          machine-monitor list-scenarios
          machine-monitor list-sinks
          machine-monitor init-config --output monitor.yaml
    """)

    parser = argparse.ArgumentParser(
        prog="machine-monitor",
        description="Simulate industrial machines, score their telemetry and recommend maintenance actions.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", title="commands")

    # -- run ---------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        help="Run the simulation loops and publish tick results to sinks.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              machine-monitor run --machines 2 --scenario HIGH_LOAD --duration 20
              machine-monitor run -s console -s file -o ./data --output-format json
              machine-monitor run --config monitor.yaml --duration 120
        """),
    )
    run_parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML config file. When set, machine/sink/model flags are ignored.",
    )
    run_parser.add_argument(
        "--machines",
        "-m",
        type=int,
        default=1,
        help="Number of machines to simulate (default: 1).",
    )
    run_parser.add_argument(
        "--scenario",
        type=str,
        default="NORMAL",
        choices=scenarios,
        help="Scenario applied to every machine (default: NORMAL).",
    )
    run_parser.add_argument(
        "--rate",
        type=float,
        default=4.0,
        help="Ticks per second per machine (default: 4.0).",
    )
    run_parser.add_argument(
        "--duration",
        "-d",
        type=float,
        default=None,
        help="Run duration in seconds (default: indefinite, Ctrl-C to stop).",
    )
    run_parser.add_argument(
        "--analysis-interval",
        type=float,
        default=None,
        help="Run the decision engine on every machine at this interval in seconds.",
    )
    run_parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    _add_model_arguments(run_parser, backends)
    # Sink selection (without --config)
    run_parser.add_argument(
        "--sink",
        "-s",
        action="append",
        dest="sinks",
        choices=["console", "file"],
        help="Sink(s) to enable (repeatable). Default: console. Example: -s console -s file",
    )
    run_parser.add_argument(
        "--format",
        type=str,
        default="text",
        choices=["text", "json"],
        help="Console sink output format (default: text).",
    )
    run_parser.add_argument(
        "--output-dir",
        "-o",
        type=str,
        default="./output",
        help="Output directory for the file sink (default: ./output).",
    )
    run_parser.add_argument(
        "--output-format",
        type=str,
        default="csv",
        choices=["csv", "json"],
        help="File sink format (default: csv).",
    )
    run_parser.add_argument(
        "--rotation",
        type=str,
        default=None,
        help="File rotation interval, e.g. 1h, 30m, 60s (default: none).",
    )

    # -- analyze -----------------------------------------------------------
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze one sensor reading with the decision engine and print the report.",
    )
    analyze_parser.add_argument("--machine-id", type=str, default="machine-01", help="Machine id for the report.")
    analyze_parser.add_argument("--vibration", type=float, required=True, help="Vibration (mm/s).")
    analyze_parser.add_argument("--temperature", type=float, required=True, help="Temperature (°C).")
    analyze_parser.add_argument("--current", type=float, required=True, help="Motor current (A).")
    analyze_parser.add_argument("--load", type=float, required=True, help="Load (%%).")
    analyze_parser.add_argument("--rpm", type=float, default=0.0, help="Shaft speed (default: 0).")
    analyze_parser.add_argument(
        "--target-load",
        type=float,
        default=75.0,
        help="Load setpoint used for the performance score (default: 75).",
    )
    analyze_parser.add_argument(
        "--history",
        type=str,
        default=None,
        help="YAML/JSON file holding a list of recent loads. Default: synthesized around --load.",
    )
    analyze_parser.add_argument("--seed", type=int, default=None, help="Seed for the synthesized load history.")
    analyze_parser.add_argument("--json", action="store_true", help="Print the JSON result instead of the report.")
    _add_model_arguments(analyze_parser, backends)

    # -- list-scenarios ----------------------------------------------------
    subparsers.add_parser(
        "list-scenarios",
        help="List all simulation scenarios and their physics modifiers.",
    )

    # -- list-sinks --------------------------------------------------------
    subparsers.add_parser(
        "list-sinks",
        help="List all available sink types.",
    )

    # -- init-config -------------------------------------------------------
    init_parser = subparsers.add_parser(
        "init-config",
        help="Generate a sample YAML configuration file.",
    )
    init_parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write config to this file instead of stdout.",
    )

    # -- Pre-check for backward compatibility --------------------------------
    # A leading flag without sub-command (e.g. --config, -m, -d) implies "run".
    _known_commands = {"run", "analyze", "list-scenarios", "list-sinks", "init-config"}
    raw_args = argv if argv is not None else sys.argv[1:]
    if raw_args and raw_args[0] not in _known_commands and raw_args[0] not in ("-h", "--help"):
        raw_args = ["run", *list(raw_args)]

    args = parser.parse_args(raw_args)

    if args.command is None:
        parser.print_help()
        return

    # -- Dispatch ----------------------------------------------------------
    if args.command == "run":
        _cmd_run(args)
    elif args.command == "analyze":
        _cmd_analyze(args)
    elif args.command == "list-scenarios":
        _cmd_list_scenarios()
    elif args.command == "list-sinks":
        _cmd_list_sinks()
    elif args.command == "init-config":
        _cmd_init_config(args.output)
    else:
        parser.print_help()


def _add_model_arguments(parser: argparse.ArgumentParser, backends: list[str]) -> None:
    parser.add_argument(
        "--backend",
        type=str,
        default="surrogate",
        choices=backends,
        help="Scoring backend (default: surrogate).",
    )
    parser.add_argument(
        "--model-dir",
        type=str,
        default=None,
        help="Model directory for the onnx backend.",
    )


def _build_models(backend: str, model_dir: str | None) -> ScoringModels:
    from machine_monitor.scoring import create_scoring_models

    kwargs = {"model_dir": model_dir} if model_dir else {}
    try:
        return create_scoring_models(backend, **kwargs)
    except ImportError as exc:
        print(f"Error: {exc}")
        sys.exit(1)


# ======================================================================
# Command implementations
# ======================================================================


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the monitor."""
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format=_LOG_FORMAT,
        datefmt="%H:%M:%S",
    )

    if args.config:
        _run_from_config(args.config, args.duration)
    else:
        _run_quick(args)


def _run_from_config(config_path: str, duration_override: float | None) -> None:
    """Load YAML config and run the monitor."""
    from machine_monitor.config import load_yaml_config
    from machine_monitor.monitor import Monitor

    cfg = load_yaml_config(config_path)
    logging.getLogger().setLevel(getattr(logging, cfg.simulation.log_level.upper(), logging.INFO))

    try:
        monitor = Monitor.from_config(cfg)
    except ImportError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if monitor.sink_count == 0:
        from machine_monitor.sinks.console import ConsoleSink

        monitor.add_sink(ConsoleSink(rate_hz=1.0))

    monitor.run(duration_s=duration_override)


def _run_quick(args: argparse.Namespace) -> None:
    """Run with CLI-specified machines and sinks (console and/or file)."""
    from machine_monitor.config import SimulationSettings
    from machine_monitor.monitor import Monitor

    if args.rate <= 0:
        print("Error: --rate must be positive.")
        sys.exit(1)

    settings = SimulationSettings(
        tick_period_s=1.0 / args.rate,
        analysis_interval_s=args.analysis_interval,
        log_level=args.log_level,
    )
    monitor = Monitor(settings, _build_models(args.backend, args.model_dir))
    for index in range(1, max(1, args.machines) + 1):
        monitor.add_machine(f"machine-{index:02d}", scenario=args.scenario)

    enabled_sinks = args.sinks or ["console"]

    if "console" in enabled_sinks:
        from machine_monitor.sinks.console import ConsoleSink

        monitor.add_sink(ConsoleSink(fmt=args.format, rate_hz=1.0))

    if "file" in enabled_sinks:
        from machine_monitor.sinks.file import FileSink

        monitor.add_sink(
            FileSink(
                path=args.output_dir,
                format=args.output_format,
                rotation=args.rotation,
                rate_hz=1.0,
                batch_size=500,
            )
        )

    monitor.run(duration_s=args.duration)


# -- analyze ---------------------------------------------------------------


def _cmd_analyze(args: argparse.Namespace) -> None:
    from machine_monitor.decision import DecisionEngine, generate_report, synthetic_load_history
    from machine_monitor.models import SensorSnapshot

    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, datefmt="%H:%M:%S")

    snapshot = SensorSnapshot(
        rpm=args.rpm,
        vibration=args.vibration,
        temperature=args.temperature,
        current=args.current,
        load=args.load,
    )
    if args.history:
        history = _load_history(args.history)
    else:
        history = synthetic_load_history(args.load, rng=random.Random(args.seed))

    models = _build_models(args.backend, args.model_dir)
    engine = DecisionEngine(models)
    result = asyncio.run(engine.analyze(args.machine_id, snapshot, history, args.target_load))

    if args.json:
        print(result.to_json())
    else:
        print(generate_report(result))


def _load_history(path: str) -> list[float]:
    from pathlib import Path

    import yaml

    file = Path(path)
    if not file.exists():
        print(f"Error: history file not found: {path}")
        sys.exit(1)
    raw = yaml.safe_load(file.read_text(encoding="utf-8")) or []
    if not isinstance(raw, list):
        print(f"Error: history file must hold a list of numbers: {path}")
        sys.exit(1)
    return [float(v) for v in raw]


# -- list-scenarios --------------------------------------------------------


def _cmd_list_scenarios() -> None:
    from machine_monitor.physics import SCENARIO_MODIFIERS

    print(f"\n{'Scenario':<16} {'Vib x':>6} {'Heat x':>7} {'Eff x':>6} {'Accel x':>8} {'Max °C':>7}")
    print("-" * 55)
    for scenario, mods in SCENARIO_MODIFIERS.items():
        print(
            f"{scenario.value:<16} {mods.vibration_multiplier:>6.2f} {mods.heating_multiplier:>7.2f} "
            f"{mods.efficiency_multiplier:>6.2f} {mods.acceleration_multiplier:>8.2f} {mods.max_temperature:>7.0f}"
        )
    print()


# -- list-sinks ------------------------------------------------------------


def _cmd_list_sinks() -> None:
    from machine_monitor.sinks.factory import _SINK_REGISTRY

    print(f"\n{'Sink Type':<14} {'Class':<20} {'Module'}")
    print("-" * 62)
    for name, (module_path, class_name) in _SINK_REGISTRY.items():
        print(f"{name:<14} {class_name:<20} {module_path}")
    print()


# -- init-config ------------------------------------------------------------


def _cmd_init_config(output_path: str | None) -> None:
    if output_path:
        from pathlib import Path

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_text(_SAMPLE_CONFIG, encoding="utf-8")
        print(f"Sample config written to {output_path}")
    else:
        print(_SAMPLE_CONFIG)


# ======================================================================
if __name__ == "__main__":
    main()
