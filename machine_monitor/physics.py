"""First-order physics model of a rotating machine.

Each :class:`PhysicsEngine` owns one machine's :class:`MachineState` and
advances it by a fixed time step towards an RPM/load setpoint.  Fault
injection works through :class:`SimulationScenario`: every scenario maps to a
:class:`ScenarioModifiers` row in :data:`SCENARIO_MODIFIERS`, so the
integration in :meth:`PhysicsEngine.update` never branches on the scenario.

Nothing here raises: out-of-range or non-finite inputs are clamped.
"""

from __future__ import annotations

import math
import random
import time
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel

from machine_monitor.models import MachineSpecs, MachineState

__all__ = [
    "AMBIENT_TEMPERATURE",
    "SCENARIO_MODIFIERS",
    "PhysicsEngine",
    "ScenarioModifiers",
    "SimulationScenario",
]

AMBIENT_TEMPERATURE = 25.0

# Max RPM change per second (mechanical inertia).
RPM_SLEW_RATE = 200.0
# Steady-state temperature at full load under nominal heating.
NOMINAL_STEADY_STATE_TEMP = 85.0
# Efficiency starts dropping above this temperature.
EFFICIENCY_TEMP_THRESHOLD = 80.0


class SimulationScenario(StrEnum):
    """Fault-injection modes."""

    NORMAL = "NORMAL"
    HIGH_LOAD = "HIGH_LOAD"
    OVERHEATING = "OVERHEATING"
    UNBALANCED = "UNBALANCED"
    RUNNING_BEHIND = "RUNNING_BEHIND"  # high friction, cannot reach setpoint


def _identity(target: float, _now: float) -> float:
    return target


class ScenarioModifiers(BaseModel):
    """Coefficients one scenario applies to a physics step.

    Attributes:
        rpm_target: ``(target_rpm, now) -> effective target rpm``.
        load_target: ``(target_load, now) -> effective target load``.
        vibration_multiplier: Scales the vibration model.
        heating_multiplier: Scales the steady-state temperature.
        efficiency_multiplier: Scales efficiency; power draw divides by it.
        acceleration_multiplier: Scales the RPM slew rate.
        max_temperature: Upper temperature clamp.
    """

    model_config = {"frozen": True}

    rpm_target: Callable[[float, float], float] = _identity
    load_target: Callable[[float, float], float] = _identity
    vibration_multiplier: float = 1.0
    heating_multiplier: float = 1.0
    efficiency_multiplier: float = 1.0
    acceleration_multiplier: float = 1.0
    max_temperature: float = 120.0


SCENARIO_MODIFIERS: dict[SimulationScenario, ScenarioModifiers] = {
    SimulationScenario.NORMAL: ScenarioModifiers(),
    SimulationScenario.HIGH_LOAD: ScenarioModifiers(
        load_target=lambda load, _now: min(100.0, load * 1.5),
        heating_multiplier=1.2,
    ),
    # Cooling failure or friction; the only scenario allowed past 120 °C.
    SimulationScenario.OVERHEATING: ScenarioModifiers(
        heating_multiplier=3.0,
        max_temperature=200.0,
    ),
    # Unbalanced mass makes the shaft speed ripple.
    SimulationScenario.UNBALANCED: ScenarioModifiers(
        rpm_target=lambda rpm, now: rpm + math.sin(now * 10.0) * 50.0,
        vibration_multiplier=4.0,
    ),
    SimulationScenario.RUNNING_BEHIND: ScenarioModifiers(
        rpm_target=lambda rpm, _now: rpm * 0.85,
        load_target=lambda load, _now: min(100.0, load * 1.2),
        vibration_multiplier=1.5,
        heating_multiplier=1.4,
        efficiency_multiplier=0.75,
        acceleration_multiplier=0.5,
    ),
}


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class PhysicsEngine:
    """Simulates one machine's rpm, temperature, vibration, power, load,
    efficiency and noise.

    Parameters:
        specs: Rated machine characteristics.
        initial_state: Optional overrides for the starting state.
        rng: Random source for sensor jitter (seed it for reproducible runs).
        clock: Wall clock used for timestamps and the unbalanced ripple.
    """

    def __init__(
        self,
        specs: MachineSpecs,
        initial_state: MachineState | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.specs = specs
        self.ambient_temp = AMBIENT_TEMPERATURE
        self._rng = rng or random.Random()
        self._clock = clock
        self._scenario = SimulationScenario.NORMAL
        if initial_state is not None:
            self._state = initial_state.model_copy()
        else:
            self._state = MachineState(temperature=self.ambient_temp, timestamp=clock())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def scenario(self) -> SimulationScenario:
        return self._scenario

    def set_scenario(self, scenario: SimulationScenario | str) -> None:
        self._scenario = SimulationScenario(scenario)

    def get_state(self) -> MachineState:
        """Return a copy of the current state."""
        return self._state.model_copy()

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def _jitter(self, amplitude: float) -> float:
        """Uniform noise in ``[-amplitude / 2, amplitude / 2)``."""
        return (self._rng.random() - 0.5) * amplitude

    def update(self, dt_s: float, target_rpm: float, target_load: float) -> MachineState:
        """Advance the state by *dt_s* seconds and return a copy of it."""
        dt_s = max(0.0, _finite(dt_s))
        target_rpm = _finite(target_rpm)
        target_load = _finite(target_load)

        mods = SCENARIO_MODIFIERS[self._scenario]
        specs = self.specs
        state = self._state
        now = self._clock()

        effective_rpm = mods.rpm_target(target_rpm, now)
        effective_load = mods.load_target(target_load, now)

        # 1. RPM: bounded slew towards the target
        rpm_diff = effective_rpm - state.rpm
        max_change = RPM_SLEW_RATE * dt_s * mods.acceleration_multiplier
        state.rpm += math.copysign(min(abs(rpm_diff), max_change), rpm_diff)
        state.rpm = max(0.0, state.rpm + self._jitter(5.0))

        # 2. Load: follows the target directly
        state.load = _clamp(effective_load + self._jitter(2.0), 0.0, 100.0)

        load_frac = state.load / 100.0
        rpm_frac = state.rpm / specs.max_rpm if specs.max_rpm > 0 else 0.0

        # 3. Temperature: heat generation vs Newton cooling
        steady_state = NOMINAL_STEADY_STATE_TEMP * mods.heating_multiplier
        max_heat_rate = (steady_state - self.ambient_temp) * specs.cooling_rate * 0.8
        heat_gen = max_heat_rate * load_frac * (rpm_frac * rpm_frac + 0.2) * dt_s
        heat_diss = (state.temperature - self.ambient_temp) * specs.cooling_rate * dt_s
        state.temperature = _clamp(
            state.temperature + heat_gen - heat_diss,
            self.ambient_temp,
            mods.max_temperature,
        )

        # 4. Vibration
        vibration = specs.base_vibration + load_frac * 7.0 + rpm_frac * 0.5
        vibration = vibration * mods.vibration_multiplier + self._jitter(0.1)
        state.vibration = max(0.0, vibration)

        # 5. Power: lower efficiency draws more for the same work
        ideal_power = specs.max_power * load_frac * rpm_frac
        power = min(specs.max_power * 1.5, ideal_power / mods.efficiency_multiplier)
        state.power = max(0.0, power + self._jitter(0.2))

        # 6. Efficiency
        efficiency = 95.0 * mods.efficiency_multiplier
        if state.temperature > EFFICIENCY_TEMP_THRESHOLD:
            efficiency -= (state.temperature - EFFICIENCY_TEMP_THRESHOLD) * 0.5
        state.efficiency = _clamp(efficiency, 0.0, 100.0)

        # 7. Noise (dB), derived only
        state.noise = 60.0 + rpm_frac * 30.0 + state.vibration * 10.0

        state.timestamp = now
        return state.model_copy()
