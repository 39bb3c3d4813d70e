#!/usr/bin/env python3
"""CallbackSink examples -- 3 cases demonstrating lambda shortcuts, async
callbacks and a stateful anomaly tally.

Directly runnable (no external services required).

Usage::

    python examples/sinks/callback_sink_example.py           # Case 1 (default)
    python examples/sinks/callback_sink_example.py --case 2   # Async callback
    python examples/sinks/callback_sink_example.py --case 3   # Anomaly tally per machine
"""

from __future__ import annotations

import argparse

# ---------------------------------------------------------------------------
# Case 1: Lambda shorthand -- simplest possible sink
# ---------------------------------------------------------------------------


def run_case_1() -> None:
    """A lambda that prints batch sizes.

    Knobs demonstrated:
      - lambda as sink   -> no class needed, just a callable
      - rate_hz=1.0      -> flush once per second
      - batch_size=50    -> up to 50 tick results per call
    """
    from machine_monitor import Monitor

    print("=== Case 1: Lambda shorthand ===\n")

    monitor = Monitor()
    monitor.add_machine("press-01")
    monitor.add_machine("press-02")

    monitor.add_sink(
        lambda results: print(f"  Received {len(results)} tick results"),
        rate_hz=1.0,
        batch_size=50,
    )

    monitor.run(duration_s=6)


# ---------------------------------------------------------------------------
# Case 2: Async callback -- auto-detected by CallbackSink
# ---------------------------------------------------------------------------


def run_case_2() -> None:
    """Async callback that simulates I/O-bound processing.

    CallbackSink awaits coroutine functions directly instead of using
    run_in_executor.
    """
    import asyncio

    from machine_monitor import Monitor
    from machine_monitor.sinks.callback import CallbackSink

    print("=== Case 2: Async callback ===\n")

    async def historian_writer(results):
        # Simulate 10ms of async I/O
        await asyncio.sleep(0.01)
        machines = {r.machine_id for r in results}
        print(f"  [async] Stored {len(results)} ticks from {len(machines)} machines")

    monitor = Monitor()
    monitor.add_machine("pump-01", scenario="HIGH_LOAD")
    monitor.add_sink(CallbackSink(historian_writer, rate_hz=2.0, batch_size=30))
    monitor.run(duration_s=6)


# ---------------------------------------------------------------------------
# Case 3: Stateful callback -- anomaly tally per machine
# ---------------------------------------------------------------------------


def run_case_3() -> None:
    """Count anomaly verdicts per machine while one machine runs unbalanced.

    Knobs demonstrated:
      - Stateful callback  -> accumulates counts across flushes
      - scenario per machine
    """
    from collections import Counter

    from machine_monitor import Monitor

    print("=== Case 3: Anomaly tally ===\n")

    ticks: Counter[str] = Counter()
    anomalies: Counter[str] = Counter()

    def tally(results):
        for r in results:
            ticks[r.machine_id] += 1
            if r.anomaly is not None and r.anomaly.is_anomaly:
                anomalies[r.machine_id] += 1
        for machine_id in sorted(ticks):
            print(f"  {machine_id:<10s} ticks={ticks[machine_id]:>4d}  anomalies={anomalies[machine_id]:>4d}")

    monitor = Monitor()
    monitor.add_machine("fan-01")
    monitor.add_machine("fan-02", scenario="UNBALANCED")
    monitor.add_sink(tally, rate_hz=0.5, batch_size=200)
    monitor.run(duration_s=10)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="CallbackSink examples")
    parser.add_argument("--case", type=int, default=1, choices=[1, 2, 3], help="Which example case to run (default: 1)")
    args = parser.parse_args()

    cases = {
        1: run_case_1,
        2: run_case_2,
        3: run_case_3,
    }
    cases[args.case]()


if __name__ == "__main__":
    main()
