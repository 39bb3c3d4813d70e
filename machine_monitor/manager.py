"""Simulation manager - runs one independent control loop per machine.

Every registered machine owns a slot holding its :class:`PhysicsEngine`,
bounded sensor/load histories and load setpoint.  Starting a machine spawns
one asyncio task that ticks it at a fixed period: advance physics, derive
sensor features, score them, feed the optimizer's verdict back into the
setpoint and publish a :class:`SimulationResult` to the machine's listener.

Slots share nothing, so ticks of different machines may interleave freely.
A machine's own ticks never overlap: its task awaits each tick before
sleeping.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from machine_monitor.config import SimulationSettings
from machine_monitor.models import (
    LoadAction,
    MachineSpecs,
    MachineState,
    OptimizationAction,
    SensorFeatures,
    SimulationResult,
)
from machine_monitor.physics import PhysicsEngine, SimulationScenario
from machine_monitor.scoring.base import ScoringModels
from machine_monitor.scoring.scaling import SCALERS, clamp, finite

__all__ = [
    "Listener",
    "MachineNotRegisteredError",
    "NoTelemetryError",
    "SimulationManager",
    "sensor_features",
]

logger = logging.getLogger("machine_monitor.manager")

T = TypeVar("T")

Listener = Callable[[SimulationResult], Any]

# Assumed supply voltage for current estimation (P = V * I).
SUPPLY_VOLTAGE = 220.0


class MachineNotRegisteredError(LookupError):
    """Raised when addressing a machine id that was never registered."""

    def __init__(self, machine_id: str) -> None:
        super().__init__(f"Machine {machine_id} not registered")
        self.machine_id = machine_id


class NoTelemetryError(LookupError):
    """Raised when a registered machine has not completed a tick yet."""

    def __init__(self, machine_id: str) -> None:
        super().__init__(f"No telemetry for machine {machine_id} yet")
        self.machine_id = machine_id


def sensor_features(state: MachineState, *, voltage: float = SUPPLY_VOLTAGE) -> SensorFeatures:
    """Derive the model-facing feature record from a physical state.

    Current comes from ``P = V * I`` and torque from ``P = T * omega``; both
    are capped at the top of the models' input range.  Non-finite values
    become ``0``.
    """
    power_w = max(0.0, finite(state.power)) * 1000.0
    rpm = max(0.0, finite(state.rpm))

    current = min(SCALERS["current"].max, power_w / voltage) if voltage > 0 else 0.0
    angular_velocity = rpm * 2.0 * math.pi / 60.0
    torque = min(SCALERS["torque"].max, power_w / angular_velocity) if angular_velocity > 0 else 0.0

    return SensorFeatures(
        rpm=rpm,
        load_percent=finite(state.load),
        load_kw=power_w / 1000.0,
        current=current,
        torque=torque,
        vibration=finite(state.vibration),
        temperature=finite(state.temperature),
        timestamp=state.timestamp,
    )


class _MachineSlot:
    """Everything one machine's loop owns exclusively."""

    def __init__(self, machine_id: str, engine: PhysicsEngine, settings: SimulationSettings) -> None:
        self.machine_id = machine_id
        self.engine = engine
        self.history: deque[SensorFeatures] = deque(maxlen=settings.history_size)
        self.load_history: deque[float] = deque(maxlen=settings.history_size)
        self.target_load = settings.default_target_load
        self.last_optimization: float | None = None
        self.tick_count = 0
        self.latest: SimulationResult | None = None
        self.listener: Listener | None = None
        self.task: asyncio.Task[None] | None = None
        self.stop_event: asyncio.Event | None = None
        # Serializes start/stop of this machine.
        self.lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class SimulationManager:
    """Registry of simulated machines and their control loops.

    Example::

        manager = SimulationManager(SurrogateScoringModels())
        manager.register_machine("press-01", MachineSpecs())
        await manager.start_simulation("press-01", print)
        ...
        await manager.stop_all()

    Parameters:
        models: Scoring models invoked from every tick.
        settings: Loop cadence and control constants.
        engine_factory: Builds the physics engine for a newly registered
            machine (override to seed its random source).
        clock: Monotonic clock used for the optimizer cooldown.
    """

    def __init__(
        self,
        models: ScoringModels,
        settings: SimulationSettings | None = None,
        *,
        engine_factory: Callable[[MachineSpecs], PhysicsEngine] = PhysicsEngine,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._models = models
        self._settings = settings or SimulationSettings()
        self._engine_factory = engine_factory
        self._clock = clock
        self._slots: dict[str, _MachineSlot] = {}

    @property
    def settings(self) -> SimulationSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_machine(self, machine_id: str, specs: MachineSpecs) -> None:
        """Create the engine, histories and setpoint for *machine_id* (idempotent)."""
        if machine_id in self._slots:
            logger.info("Machine %s already registered", machine_id)
            return
        engine = self._engine_factory(specs)
        self._slots[machine_id] = _MachineSlot(machine_id, engine, self._settings)
        logger.info("Machine %s registered", machine_id)

    async def unregister_machine(self, machine_id: str) -> None:
        """Stop and forget *machine_id*; registering it again starts afresh."""
        await self.stop_simulation(machine_id)
        if self._slots.pop(machine_id, None) is not None:
            logger.info("Machine %s unregistered", machine_id)

    def set_scenario(self, machine_id: str, scenario: SimulationScenario | str) -> None:
        slot = self._slots.get(machine_id)
        if slot is None:
            logger.debug("set_scenario ignored for unknown machine %s", machine_id)
            return
        slot.engine.set_scenario(scenario)
        logger.info("Machine %s scenario set to %s", machine_id, slot.engine.scenario.value)

    @property
    def machine_ids(self) -> list[str]:
        return list(self._slots)

    def get_engine(self, machine_id: str) -> PhysicsEngine | None:
        slot = self._slots.get(machine_id)
        return slot.engine if slot else None

    def get_target_load(self, machine_id: str) -> float:
        return self._slot(machine_id).target_load

    def get_history(self, machine_id: str) -> list[SensorFeatures]:
        return list(self._slot(machine_id).history)

    def get_load_history(self, machine_id: str) -> list[float]:
        return list(self._slot(machine_id).load_history)

    def latest_result(self, machine_id: str) -> SimulationResult | None:
        return self._slot(machine_id).latest

    def is_running(self, machine_id: str) -> bool:
        slot = self._slots.get(machine_id)
        return slot is not None and slot.running

    def _slot(self, machine_id: str) -> _MachineSlot:
        slot = self._slots.get(machine_id)
        if slot is None:
            raise MachineNotRegisteredError(machine_id)
        return slot

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    async def start_simulation(self, machine_id: str, on_update: Listener | None = None) -> None:
        """Start ticking *machine_id*; a no-op if it is already running.

        *on_update* receives every :class:`SimulationResult`; it may be a
        plain callable or a coroutine function.
        """
        slot = self._slots.get(machine_id)
        if slot is None:
            logger.error("Machine %s not found in registry (known: %s)", machine_id, ", ".join(self._slots))
            raise MachineNotRegisteredError(machine_id)

        async with slot.lock:
            if slot.running:
                logger.debug("Simulation for machine %s already running", machine_id)
                return
            slot.listener = on_update
            slot.stop_event = asyncio.Event()
            slot.task = asyncio.create_task(
                self._run_loop(slot, slot.stop_event),
                name=f"simulation-{machine_id}",
            )
        logger.info("Simulation started for machine %s", machine_id)

    async def stop_simulation(self, machine_id: str) -> None:
        """Stop *machine_id*'s loop, letting an in-flight tick finish."""
        slot = self._slots.get(machine_id)
        if slot is None:
            return

        async with slot.lock:
            task = slot.task
            if task is None:
                return
            if slot.stop_event is not None:
                slot.stop_event.set()
            # A listener may stop its own machine from inside the tick.
            if task is not asyncio.current_task():
                await asyncio.wait([task])
            slot.task = None
            slot.stop_event = None
        logger.info("Simulation stopped for machine %s", machine_id)

    async def stop_all(self) -> None:
        await asyncio.gather(*(self.stop_simulation(mid) for mid in list(self._slots)))

    async def _run_loop(self, slot: _MachineSlot, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        period = self._settings.tick_period_s
        while not stop_event.is_set():
            started = loop.time()
            try:
                result = await self._tick(slot)
            except Exception:
                logger.exception("Tick failed for machine %s", slot.machine_id)
            else:
                await self._publish(slot, result)

            remaining = period - (loop.time() - started)
            if remaining <= 0:
                await asyncio.sleep(0)
                continue
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=remaining)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def step(self, machine_id: str) -> SimulationResult:
        """Run exactly one tick for *machine_id* without publishing it."""
        return await self._tick(self._slot(machine_id))

    async def _tick(self, slot: _MachineSlot) -> SimulationResult:
        settings = self._settings
        machine_id = slot.machine_id
        target_load = slot.target_load

        state = slot.engine.update(settings.physics_dt_s, settings.target_rpm, target_load)
        features = sensor_features(state)
        slot.history.append(features)
        slot.load_history.append(features.load_kw)

        anomaly = await self._invoke(machine_id, "anomaly detection", self._models.detect_anomaly(features))

        optimization = None
        now = self._clock()
        if slot.last_optimization is None or now - slot.last_optimization > settings.optimization_cooldown_s:
            slot.last_optimization = now
            optimization = await self._invoke(machine_id, "load optimization", self._models.optimize_load(features))
            if optimization is not None:
                self._apply_optimization(slot, optimization)

        prediction = None
        if len(slot.history) >= settings.prediction_window:
            prediction = await self._invoke(
                machine_id,
                "state prediction",
                self._models.predict_next_state(list(slot.history)),
            )

        slot.tick_count += 1
        result = SimulationResult(
            machine_id=machine_id,
            scenario=slot.engine.scenario.value,
            tick=slot.tick_count,
            state=state,
            features=features,
            anomaly=anomaly,
            optimization=optimization,
            prediction=prediction,
            target_load=slot.target_load,
        )
        slot.latest = result
        return result

    def _apply_optimization(self, slot: _MachineSlot, optimization: OptimizationAction) -> None:
        settings = self._settings
        new_target = slot.target_load
        if optimization.action == LoadAction.DECREASE_LOAD:
            new_target -= settings.load_step
        elif optimization.action == LoadAction.INCREASE_LOAD:
            new_target += settings.load_step
        new_target = clamp(new_target, settings.min_target_load, settings.max_target_load)

        if new_target != slot.target_load:
            logger.info(
                "Optimizer %s for machine %s: target load %.0f%% -> %.0f%%",
                optimization.action.value,
                slot.machine_id,
                slot.target_load,
                new_target,
            )
        slot.target_load = new_target

    async def _invoke(self, machine_id: str, label: str, call: Awaitable[T]) -> T | None:
        """Await one scoring call; failures and timeouts yield ``None``."""
        try:
            return await asyncio.wait_for(call, timeout=self._settings.adapter_timeout_s)
        except TimeoutError:
            logger.warning(
                "%s timed out for machine %s after %.2fs",
                label.capitalize(),
                machine_id,
                self._settings.adapter_timeout_s,
            )
        except Exception as exc:
            logger.warning("%s failed for machine %s: %s", label.capitalize(), machine_id, exc)
        return None

    async def _publish(self, slot: _MachineSlot, result: SimulationResult) -> None:
        listener = slot.listener
        if listener is None:
            return
        try:
            outcome = listener(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Listener for machine %s failed", slot.machine_id)
