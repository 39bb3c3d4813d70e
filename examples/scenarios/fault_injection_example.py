#!/usr/bin/env python3
"""Fault-injection example -- run a small fleet, switch one machine into a
fault scenario mid-run and print the decision engine's report for every
machine at the end.

Directly runnable (no external services required).

Usage::

    python examples/scenarios/fault_injection_example.py
"""

from __future__ import annotations

import asyncio
import logging


async def _main() -> None:
    from machine_monitor import Monitor, SimulationScenario, SimulationSettings, generate_report
    from machine_monitor.sinks import ConsoleSink

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)-24s %(levelname)-7s %(message)s")

    settings = SimulationSettings(tick_period_s=0.1, analysis_interval_s=3.0)
    monitor = Monitor(settings)
    monitor.add_machine("press-01")
    monitor.add_machine("press-02")
    monitor.add_sink(ConsoleSink(rate_hz=0.5, batch_size=10))

    async def inject_fault() -> None:
        await asyncio.sleep(4)
        print("\n  >>> press-02 switching to OVERHEATING\n")
        monitor.set_scenario("press-02", SimulationScenario.OVERHEATING)

    fault = asyncio.create_task(inject_fault())
    await monitor.run_async(duration_s=15)
    await fault

    # Reports come from the last periodic analysis of each machine.
    for machine_id in monitor.machine_ids:
        analysis = monitor.latest_analysis(machine_id)
        if analysis is not None:
            print(generate_report(analysis))
            print()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
