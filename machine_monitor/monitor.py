"""Monitor - top-level orchestrator that wires the simulation manager,
the decision engine and one or more sinks around a shared set of scoring
models.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading
from collections.abc import Callable
from typing import Any

from machine_monitor.config import MachineConfig, MonitorYAMLConfig, SimulationSettings
from machine_monitor.decision import DecisionEngine
from machine_monitor.manager import MachineNotRegisteredError, NoTelemetryError, SimulationManager
from machine_monitor.models import AlertLevel, DecisionEngineResult, MachineSpecs, SensorSnapshot, SimulationResult
from machine_monitor.physics import PhysicsEngine, SimulationScenario
from machine_monitor.scoring import ScoringModels, SurrogateScoringModels, create_scoring_models
from machine_monitor.sinks.base import Sink, SinkRunner
from machine_monitor.sinks.callback import CallbackSink
from machine_monitor.sinks.factory import create_sink

__all__ = ["Monitor"]

logger = logging.getLogger("machine_monitor")


class Monitor:
    """High-level API for simulating and assessing a fleet of machines.

    Example::

        from machine_monitor import Monitor
        from machine_monitor.sinks import ConsoleSink

        monitor = Monitor()
        monitor.add_machine("press-01", scenario="OVERHEATING")
        monitor.add_sink(ConsoleSink(rate_hz=1.0))
        monitor.run(duration_s=30)

    Parameters:
        settings:
            Loop cadence and control constants shared by every machine.
        models:
            Scoring models used by both the control loops and the decision
            engine.  Defaults to :class:`SurrogateScoringModels`.
        machines:
            Machines to register up front.
        engine_factory:
            Forwarded to :class:`SimulationManager`.
    """

    def __init__(
        self,
        settings: SimulationSettings | None = None,
        models: ScoringModels | None = None,
        machines: list[MachineConfig] | None = None,
        *,
        engine_factory: Callable[[MachineSpecs], PhysicsEngine] = PhysicsEngine,
    ) -> None:
        self._settings = settings or SimulationSettings()
        self._models = models or SurrogateScoringModels()
        self._manager = SimulationManager(self._models, self._settings, engine_factory=engine_factory)
        self._decision = DecisionEngine(self._models, adapter_timeout_s=self._settings.adapter_timeout_s)
        self._runners: list[SinkRunner] = []
        self._analyses: dict[str, DecisionEngineResult] = {}

        for machine in machines or []:
            self.add_machine(machine.id, machine.specs, machine.scenario)

    @classmethod
    def from_config(cls, config: MonitorYAMLConfig) -> Monitor:
        """Build a monitor, its scoring backend, machines and sinks from a parsed YAML config."""
        models = create_scoring_models(config.models.backend, **config.models.backend_kwargs())
        monitor = cls(config.simulation, models, config.machines)
        for sink_dict in config.sink_configs:
            monitor.add_sink(create_sink(sink_dict))
        return monitor

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def settings(self) -> SimulationSettings:
        return self._settings

    @property
    def models(self) -> ScoringModels:
        return self._models

    @property
    def manager(self) -> SimulationManager:
        return self._manager

    @property
    def decision_engine(self) -> DecisionEngine:
        return self._decision

    @property
    def machine_ids(self) -> list[str]:
        return self._manager.machine_ids

    @property
    def sink_count(self) -> int:
        return len(self._runners)

    def latest_analysis(self, machine_id: str) -> DecisionEngineResult | None:
        """Most recent periodic analysis of *machine_id*, if any ran."""
        return self._analyses.get(machine_id)

    # ------------------------------------------------------------------
    # Machine management
    # ------------------------------------------------------------------

    def add_machine(
        self,
        machine_id: str,
        specs: MachineSpecs | None = None,
        scenario: SimulationScenario | str = SimulationScenario.NORMAL,
    ) -> None:
        """Register a machine (before or during ``run``) in the given scenario.

        Raises:
            ValueError: *scenario* is not a scenario name; nothing is registered.
        """
        scenario = SimulationScenario(scenario)
        self._manager.register_machine(machine_id, specs or MachineSpecs())
        self._manager.set_scenario(machine_id, scenario)

    def set_scenario(self, machine_id: str, scenario: SimulationScenario | str) -> None:
        self._manager.set_scenario(machine_id, scenario)

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def add_sink(
        self,
        sink: Sink | Callable[[list[SimulationResult]], Any],
        *,
        rate_hz: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Register a sink (or callable) to receive every tick result.

        Parameters:
            sink:
                A :class:`Sink` instance **or** any callable that accepts
                ``list[SimulationResult]``.
            rate_hz:
                Override the sink's ``rate_hz``.
            batch_size:
                Override the sink's ``batch_size``.
        """
        if not isinstance(sink, Sink):
            sink = CallbackSink(sink, rate_hz=rate_hz, batch_size=batch_size or 100)
        else:
            if rate_hz is not None:
                sink.sink_config.rate_hz = rate_hz
            if batch_size is not None:
                sink.sink_config.batch_size = batch_size

        self._runners.append(SinkRunner(sink))

    def _dispatch(self, result: SimulationResult) -> None:
        for runner in self._runners:
            runner.enqueue(result)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(self, machine_id: str) -> DecisionEngineResult:
        """Run the decision engine on the latest tick of *machine_id*.

        Raises:
            MachineNotRegisteredError: *machine_id* is unknown.
            NoTelemetryError: the machine has not ticked yet.
        """
        latest = self._manager.latest_result(machine_id)
        if latest is None:
            raise NoTelemetryError(machine_id)

        return await self._decision.analyze(
            machine_id,
            SensorSnapshot.from_features(latest.features),
            self._manager.get_load_history(machine_id),
            self._manager.get_target_load(machine_id),
        )

    async def _analysis_loop(self, stop_event: asyncio.Event, interval: float) -> None:
        while not stop_event.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            if stop_event.is_set():
                break

            for machine_id in self._manager.machine_ids:
                try:
                    result = await self.analyze(machine_id)
                except (NoTelemetryError, MachineNotRegisteredError):
                    logger.debug("No telemetry for machine %s - skipping analysis", machine_id)
                    continue
                except Exception as exc:
                    logger.warning("Analysis failed for machine %s: %s", machine_id, exc)
                    continue

                self._analyses[machine_id] = result
                level = logging.INFO if result.alert_level == AlertLevel.NORMAL else logging.WARNING
                logger.log(
                    level,
                    "Machine %s: alert=%s health=%d risk=%d action=%s",
                    machine_id,
                    result.alert_level.value,
                    result.health_score,
                    result.risk_score,
                    result.recommended_action.value,
                )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, duration_s: float | None = None) -> None:
        """Blocking entry point - starts the event loop.

        Works inside environments that already have a running event loop
        (Jupyter, IPython) by spawning a dedicated background thread with its
        own loop.

        Parameters:
            duration_s: Stop automatically after this many seconds.  ``None``
                        falls back to ``settings.duration_s``, then to running
                        until Ctrl-C.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None and loop.is_running():
            exc: list[BaseException | None] = [None]

            def _target() -> None:
                try:
                    asyncio.run(self.run_async(duration_s=duration_s))
                except KeyboardInterrupt:
                    logger.info("Interrupted by user")
                except BaseException as e:
                    exc[0] = e

            t = threading.Thread(target=_target, daemon=True)
            t.start()
            t.join()
            if exc[0] is not None:
                raise exc[0]
        else:
            try:
                asyncio.run(self.run_async(duration_s=duration_s))
            except KeyboardInterrupt:
                logger.info("Interrupted by user")

    async def run_async(self, duration_s: float | None = None) -> None:
        """Async entry point - runs inside an existing event loop."""
        machine_ids = self._manager.machine_ids
        if not machine_ids:
            logger.warning("No machines registered - nothing to do. Call add_machine() first.")
            return
        if not self._runners:
            logger.warning("No sinks registered - tick results are not published")

        duration = duration_s if duration_s is not None else self._settings.duration_s
        logger.info(
            "Starting monitor: %d machines, %d sinks, backend=%s, tick every %.2fs",
            len(machine_ids),
            len(self._runners),
            getattr(self._models, "name", type(self._models).__name__),
            self._settings.tick_period_s,
        )

        # NotImplementedError: signal handlers are unsupported on Windows.
        # RuntimeError: not running in the main thread.
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, stop_event.set)
                installed.append(sig)

        analysis_task: asyncio.Task[None] | None = None
        try:
            for runner in self._runners:
                await runner.start()
            for machine_id in machine_ids:
                await self._manager.start_simulation(machine_id, self._dispatch)

            if self._settings.analysis_interval_s:
                analysis_task = asyncio.create_task(
                    self._analysis_loop(stop_event, self._settings.analysis_interval_s),
                    name="periodic-analysis",
                )

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
                logger.info("Stop signal received - shutting down")
            except TimeoutError:
                logger.info("Duration reached (%.1fs) - stopping", duration)

        except asyncio.CancelledError:
            logger.info("Monitor cancelled")
        finally:
            stop_event.set()
            if analysis_task is not None:
                await asyncio.wait([analysis_task])
            await self._manager.stop_all()

            logger.info("Stopping %d sink runners...", len(self._runners))
            for runner in self._runners:
                await runner.stop()
            await self._models.close()
            for sig in installed:
                loop.remove_signal_handler(sig)
            logger.info("Monitor stopped.")
