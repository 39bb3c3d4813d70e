"""Tests for machine_monitor.manager - registry, tick pipeline, control
loop lifecycle and failure isolation."""

from __future__ import annotations

import asyncio
import logging
import math

import pytest
from conftest import FakeClock, FakeScoringModels, seeded_engine

from machine_monitor.config import SimulationSettings
from machine_monitor.manager import MachineNotRegisteredError, SimulationManager, sensor_features
from machine_monitor.models import (
    AnomalyResult,
    LoadAction,
    MachineSpecs,
    MachineState,
    OptimizationAction,
    SensorFeatures,
    SimulationResult,
)
from machine_monitor.physics import SimulationScenario
from machine_monitor.scoring import SurrogateScoringModels

# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


def _manager(
    models: FakeScoringModels,
    clock: FakeClock | None = None,
    **settings,
) -> SimulationManager:
    kwargs = {"engine_factory": seeded_engine}
    if clock is not None:
        kwargs["clock"] = clock
    manager = SimulationManager(models, SimulationSettings(**settings), **kwargs)
    manager.register_machine("m1", MachineSpecs())
    return manager


def _verdict(action: LoadAction) -> OptimizationAction:
    return OptimizationAction(action=action, q_values=[0.0, 0.0, 1.0], confidence=1.0)


async def _wait_for_ticks(manager: SimulationManager, machine_id: str, ticks: int, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while True:
            latest = manager.latest_result(machine_id)
            if latest is not None and latest.tick >= ticks:
                return
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


class _OverlapTrackingModels(FakeScoringModels):
    """Records how many anomaly checks (one per tick) are in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def detect_anomaly(self, features: SensorFeatures) -> AnomalyResult:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            return await super().detect_anomaly(features)
        finally:
            self.active -= 1


def _live_loops(machine_id: str) -> list[asyncio.Task]:
    return [t for t in asyncio.all_tasks() if t.get_name() == f"simulation-{machine_id}" and not t.done()]


# -----------------------------------------------------------------------
# Feature derivation
# -----------------------------------------------------------------------


class TestSensorFeatures:
    """current / torque derivation from power and rpm."""

    def test_current_from_power(self) -> None:
        features = sensor_features(MachineState(power=2.2, rpm=1500.0, load=40.0))
        assert features.current == pytest.approx(10.0)
        assert features.load_kw == pytest.approx(2.2)
        assert features.load_percent == 40.0

    def test_torque_from_power_and_speed(self) -> None:
        features = sensor_features(MachineState(power=3.0, rpm=3000.0))
        omega = 3000.0 * 2.0 * math.pi / 60.0
        assert features.torque == pytest.approx(3000.0 / omega)

    def test_zero_rpm_zero_torque(self) -> None:
        assert sensor_features(MachineState(power=5.0, rpm=0.0)).torque == 0.0

    def test_caps_at_model_range(self) -> None:
        features = sensor_features(MachineState(power=500.0, rpm=10.0))
        assert features.current == 50.0
        assert features.torque == 50.0

    def test_non_finite_values_sanitized(self) -> None:
        features = sensor_features(MachineState(power=float("nan"), rpm=float("inf"), vibration=float("nan")))
        assert features.current == 0.0
        assert features.rpm == 0.0
        assert features.vibration == 0.0


# -----------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------


class TestRegistry:
    """register / unregister / set_scenario / accessors."""

    def test_register_is_idempotent(self, fake_models: FakeScoringModels, caplog: pytest.LogCaptureFixture) -> None:
        manager = _manager(fake_models)
        engine = manager.get_engine("m1")
        with caplog.at_level(logging.INFO, logger="machine_monitor.manager"):
            manager.register_machine("m1", MachineSpecs(max_rpm=1000.0))
        assert manager.get_engine("m1") is engine
        assert "already registered" in caplog.text

    def test_new_slot_defaults(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        assert manager.machine_ids == ["m1"]
        assert manager.get_target_load("m1") == 75.0
        assert manager.get_history("m1") == []
        assert manager.get_load_history("m1") == []
        assert manager.latest_result("m1") is None
        assert not manager.is_running("m1")

    def test_unknown_machine_accessors(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        assert manager.get_engine("nope") is None
        assert not manager.is_running("nope")
        with pytest.raises(MachineNotRegisteredError, match="Machine nope not registered"):
            manager.get_history("nope")

    def test_error_is_lookup_error(self) -> None:
        assert issubclass(MachineNotRegisteredError, LookupError)

    def test_set_scenario(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        manager.set_scenario("m1", SimulationScenario.OVERHEATING)
        assert manager.get_engine("m1").scenario is SimulationScenario.OVERHEATING

    def test_set_scenario_unknown_machine_is_noop(self, fake_models: FakeScoringModels) -> None:
        _manager(fake_models).set_scenario("ghost", "UNBALANCED")

    @pytest.mark.asyncio
    async def test_unregister_then_register_starts_fresh(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        await manager.step("m1")
        await manager.unregister_machine("m1")
        assert manager.machine_ids == []
        manager.register_machine("m1", MachineSpecs())
        assert manager.latest_result("m1") is None
        assert manager.get_history("m1") == []


# -----------------------------------------------------------------------
# Tick pipeline
# -----------------------------------------------------------------------


class TestTick:
    """One tick: physics, features, models, setpoint."""

    @pytest.mark.asyncio
    async def test_step_unknown_machine(self, fake_models: FakeScoringModels) -> None:
        with pytest.raises(MachineNotRegisteredError):
            await _manager(fake_models).step("ghost")

    @pytest.mark.asyncio
    async def test_first_tick(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        manager.set_scenario("m1", "HIGH_LOAD")
        result = await manager.step("m1")
        assert isinstance(result, SimulationResult)
        assert result.machine_id == "m1"
        assert result.scenario == "HIGH_LOAD"
        assert result.tick == 1
        assert result.anomaly == fake_models.anomaly
        assert result.optimization == fake_models.optimization
        assert result.prediction is None
        assert result.target_load == 75.0
        assert manager.latest_result("m1") is result

    @pytest.mark.asyncio
    async def test_histories_are_bounded(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        for _ in range(30):
            await manager.step("m1")
        assert len(manager.get_history("m1")) == 24
        assert len(manager.get_load_history("m1")) == 24
        assert manager.latest_result("m1").tick == 30

    @pytest.mark.asyncio
    async def test_load_history_holds_kw(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        result = await manager.step("m1")
        assert manager.get_load_history("m1") == [result.features.load_kw]

    @pytest.mark.asyncio
    async def test_prediction_waits_for_window(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        for _ in range(9):
            assert (await manager.step("m1")).prediction is None
        result = await manager.step("m1")
        assert result.prediction == fake_models.prediction
        assert len(fake_models.sequences[-1]) == 10

    @pytest.mark.asyncio
    async def test_prediction_receives_whole_history(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        for _ in range(30):
            await manager.step("m1")
        assert len(fake_models.sequences[-1]) == 24
        assert fake_models.sequences[-1] == manager.get_history("m1")

    @pytest.mark.asyncio
    async def test_anomaly_runs_every_tick(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        for _ in range(5):
            await manager.step("m1")
        assert fake_models.calls["detect_anomaly"] == 5
        assert fake_models.calls["forecast_load"] == 0


class TestOptimizerFeedback:
    """Cooldown, setpoint steps and clamping."""

    @pytest.mark.asyncio
    async def test_decrease_steps_target(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.DECREASE_LOAD)
        manager = _manager(fake_models, fake_clock)
        result = await manager.step("m1")
        assert result.target_load == 70.0
        assert manager.get_target_load("m1") == 70.0

    @pytest.mark.asyncio
    async def test_increase_steps_target(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.INCREASE_LOAD)
        manager = _manager(fake_models, fake_clock)
        await manager.step("m1")
        assert manager.get_target_load("m1") == 80.0

    @pytest.mark.asyncio
    async def test_hold_keeps_target(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        manager = _manager(fake_models, fake_clock)
        await manager.step("m1")
        assert manager.get_target_load("m1") == 75.0

    @pytest.mark.asyncio
    async def test_cooldown(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.DECREASE_LOAD)
        manager = _manager(fake_models, fake_clock)

        await manager.step("m1")
        fake_clock.advance(1.0)
        second = await manager.step("m1")
        fake_clock.advance(1.0)  # exactly 2 s: not strictly more
        third = await manager.step("m1")
        fake_clock.advance(0.01)
        fourth = await manager.step("m1")

        assert second.optimization is None
        assert third.optimization is None
        assert fourth.optimization is not None
        assert fake_models.calls["optimize_load"] == 2
        assert manager.get_target_load("m1") == 65.0

    @pytest.mark.asyncio
    async def test_clamped_to_upper_bound(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.INCREASE_LOAD)
        manager = _manager(fake_models, fake_clock)
        for _ in range(10):
            await manager.step("m1")
            fake_clock.advance(3.0)
        assert manager.get_target_load("m1") == 95.0

    @pytest.mark.asyncio
    async def test_clamped_to_lower_bound(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.DECREASE_LOAD)
        manager = _manager(fake_models, fake_clock)
        for _ in range(20):
            await manager.step("m1")
            fake_clock.advance(3.0)
        assert manager.get_target_load("m1") == 10.0

    @pytest.mark.asyncio
    async def test_custom_step_and_bounds(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.INCREASE_LOAD)
        manager = _manager(fake_models, fake_clock, load_step=10.0, max_target_load=80.0)
        await manager.step("m1")
        assert manager.get_target_load("m1") == 80.0

    @pytest.mark.asyncio
    async def test_setpoint_feeds_next_tick(self, fake_models: FakeScoringModels, fake_clock: FakeClock) -> None:
        fake_models.optimization = _verdict(LoadAction.DECREASE_LOAD)
        manager = _manager(fake_models, fake_clock)
        await manager.step("m1")
        second = await manager.step("m1")
        # Physics followed the 70 % setpoint (load jitter is +-1)
        assert 69.0 <= second.state.load <= 71.0


# -----------------------------------------------------------------------
# Failure isolation
# -----------------------------------------------------------------------


class TestAdapterFailures:
    """A failing or slow model leaves its field None; the tick survives."""

    @pytest.mark.asyncio
    async def test_anomaly_failure(self, fake_models: FakeScoringModels, caplog: pytest.LogCaptureFixture) -> None:
        fake_models.failing.add("detect_anomaly")
        manager = _manager(fake_models)
        with caplog.at_level(logging.WARNING, logger="machine_monitor.manager"):
            result = await manager.step("m1")
        assert result.anomaly is None
        assert result.optimization is not None
        assert "Anomaly detection failed for machine m1" in caplog.text

    @pytest.mark.asyncio
    async def test_optimizer_failure_still_starts_cooldown(
        self, fake_models: FakeScoringModels, fake_clock: FakeClock
    ) -> None:
        fake_models.failing.add("optimize_load")
        manager = _manager(fake_models, fake_clock)
        first = await manager.step("m1")
        second = await manager.step("m1")
        assert first.optimization is None
        assert second.optimization is None
        assert fake_models.calls["optimize_load"] == 1
        assert manager.get_target_load("m1") == 75.0

    @pytest.mark.asyncio
    async def test_timeout(self, fake_models: FakeScoringModels, caplog: pytest.LogCaptureFixture) -> None:
        fake_models.delays["detect_anomaly"] = 0.5
        manager = _manager(fake_models, adapter_timeout_s=0.01)
        with caplog.at_level(logging.WARNING, logger="machine_monitor.manager"):
            result = await manager.step("m1")
        assert result.anomaly is None
        assert "timed out" in caplog.text

    @pytest.mark.asyncio
    async def test_all_models_failing(self, fake_models: FakeScoringModels) -> None:
        fake_models.failing.update({"detect_anomaly", "optimize_load", "predict_next_state"})
        manager = _manager(fake_models)
        for _ in range(12):
            result = await manager.step("m1")
        assert result.tick == 12
        assert result.anomaly is None
        assert result.prediction is None


# -----------------------------------------------------------------------
# Loop lifecycle
# -----------------------------------------------------------------------


class TestLoopLifecycle:
    """start_simulation / stop_simulation / stop_all."""

    @pytest.mark.asyncio
    async def test_start_unknown_machine(self, fake_models: FakeScoringModels) -> None:
        with pytest.raises(MachineNotRegisteredError, match="Machine ghost not registered"):
            await _manager(fake_models).start_simulation("ghost", print)

    @pytest.mark.asyncio
    async def test_loop_publishes_results(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models, tick_period_s=0.01)
        received: list[SimulationResult] = []
        await manager.start_simulation("m1", received.append)
        await _wait_for_ticks(manager, "m1", 3)
        await manager.stop_simulation("m1")

        assert not manager.is_running("m1")
        assert [r.tick for r in received[:3]] == [1, 2, 3]
        count = len(received)
        await asyncio.sleep(0.05)
        assert len(received) == count

    @pytest.mark.asyncio
    async def test_async_listener(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models, tick_period_s=0.01)
        received: list[int] = []

        async def listener(result: SimulationResult) -> None:
            received.append(result.tick)

        await manager.start_simulation("m1", listener)
        await _wait_for_ticks(manager, "m1", 2)
        await manager.stop_simulation("m1")
        assert received[:2] == [1, 2]

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models, tick_period_s=0.01)
        first: list[SimulationResult] = []
        second: list[SimulationResult] = []
        await manager.start_simulation("m1", first.append)
        await manager.start_simulation("m1", second.append)
        await _wait_for_ticks(manager, "m1", 2)
        await manager.stop_simulation("m1")
        assert first
        assert second == []

    @pytest.mark.asyncio
    async def test_concurrent_start_stop_keeps_one_loop(self) -> None:
        models = _OverlapTrackingModels()
        models.delays["detect_anomaly"] = 0.02
        manager = _manager(models, tick_period_s=0.01)
        first: list[SimulationResult] = []
        second: list[SimulationResult] = []
        third: list[SimulationResult] = []

        await asyncio.gather(
            manager.start_simulation("m1", first.append),
            manager.start_simulation("m1", second.append),
            manager.stop_simulation("m1"),
            manager.start_simulation("m1", third.append),
        )

        assert len(_live_loops("m1")) == 1
        assert manager.is_running("m1")
        latest = manager.latest_result("m1")
        ticks_so_far = latest.tick if latest is not None else 0
        await _wait_for_ticks(manager, "m1", ticks_so_far + 3)
        assert len(_live_loops("m1")) == 1

        await manager.stop_simulation("m1")

        assert _live_loops("m1") == []
        assert not manager.is_running("m1")
        assert models.max_active == 1
        assert second == []
        assert len(third) >= 3
        ticks = [r.tick for r in first + third]
        assert ticks == sorted(set(ticks))

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models)
        await manager.stop_simulation("m1")
        await manager.stop_simulation("ghost")

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self, fake_models: FakeScoringModels) -> None:
        fake_models.delays["detect_anomaly"] = 0.05
        manager = _manager(fake_models, tick_period_s=0.01)
        await manager.start_simulation("m1")
        await asyncio.sleep(0.01)  # first tick is awaiting the slow model
        await manager.stop_simulation("m1")
        latest = manager.latest_result("m1")
        assert latest is not None
        assert latest.anomaly is not None

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_loop(
        self, fake_models: FakeScoringModels, caplog: pytest.LogCaptureFixture
    ) -> None:
        def listener(_result: SimulationResult) -> None:
            raise ValueError("boom")

        manager = _manager(fake_models, tick_period_s=0.01)
        with caplog.at_level(logging.ERROR, logger="machine_monitor.manager"):
            await manager.start_simulation("m1", listener)
            await _wait_for_ticks(manager, "m1", 3)
            await manager.stop_simulation("m1")
        assert "Listener for machine m1 failed" in caplog.text

    @pytest.mark.asyncio
    async def test_restart_keeps_history_and_setpoint(
        self, fake_models: FakeScoringModels, fake_clock: FakeClock
    ) -> None:
        fake_models.optimization = _verdict(LoadAction.DECREASE_LOAD)
        manager = _manager(fake_models, fake_clock, tick_period_s=0.01)
        await manager.start_simulation("m1")
        await _wait_for_ticks(manager, "m1", 2)
        await manager.stop_simulation("m1")
        ticks = manager.latest_result("m1").tick

        await manager.start_simulation("m1")
        await _wait_for_ticks(manager, "m1", ticks + 1)
        await manager.stop_simulation("m1")

        assert manager.get_target_load("m1") == 70.0
        assert len(manager.get_history("m1")) > ticks

    @pytest.mark.asyncio
    async def test_listener_can_stop_own_machine(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models, tick_period_s=0.01)

        async def listener(result: SimulationResult) -> None:
            await manager.stop_simulation(result.machine_id)

        await manager.start_simulation("m1", listener)
        await asyncio.sleep(0.05)
        assert not manager.is_running("m1")
        assert manager.latest_result("m1").tick == 1

    @pytest.mark.asyncio
    async def test_machines_run_independently(self) -> None:
        models = SurrogateScoringModels()
        manager = SimulationManager(models, SimulationSettings(tick_period_s=0.01), engine_factory=seeded_engine)
        manager.register_machine("a", MachineSpecs())
        manager.register_machine("b", MachineSpecs())
        manager.set_scenario("b", SimulationScenario.OVERHEATING)

        await manager.start_simulation("a")
        await manager.start_simulation("b")
        await _wait_for_ticks(manager, "a", 3)
        await _wait_for_ticks(manager, "b", 3)
        await manager.stop_all()

        assert not manager.is_running("a")
        assert not manager.is_running("b")
        assert manager.latest_result("a").scenario == "NORMAL"
        assert manager.latest_result("b").scenario == "OVERHEATING"

    @pytest.mark.asyncio
    async def test_unregister_running_machine(self, fake_models: FakeScoringModels) -> None:
        manager = _manager(fake_models, tick_period_s=0.01)
        await manager.start_simulation("m1")
        await _wait_for_ticks(manager, "m1", 1)
        await manager.unregister_machine("m1")
        assert manager.machine_ids == []
        assert not manager.is_running("m1")
