"""Console sink - prints one line per simulation tick.

Useful for demos and for watching scenarios play out live.
"""

from __future__ import annotations

import sys
from typing import IO, Any

from machine_monitor.models import SimulationResult
from machine_monitor.sinks.base import Sink

__all__ = ["ConsoleSink"]


def _format_result(result: SimulationResult) -> str:
    state = result.state
    parts = [
        f"[{result.machine_id}:{result.scenario}] #{result.tick:<5d}",
        f"rpm={state.rpm:7.1f}",
        f"temp={state.temperature:6.1f}°C",
        f"vib={state.vibration:5.2f}",
        f"power={state.power:6.2f}kW",
        f"load={state.load:5.1f}%",
        f"target={result.target_load:4.0f}%",
    ]
    if result.anomaly is not None:
        flag = "ANOMALY" if result.anomaly.is_anomaly else "ok"
        parts.append(f"ae={result.anomaly.reconstruction_error:.4f}({flag})")
    if result.optimization is not None:
        parts.append(f"opt={result.optimization.action.value}")
    if result.prediction is not None:
        parts.append(f"next_vib={result.prediction.vibration:.2f}")
    return " ".join(parts)


class ConsoleSink(Sink):
    """Writes simulation results to the console (stdout by default).

    Parameters:
        fmt: Output format - ``"text"`` (human-readable) or ``"json"``
             (one JSON object per result).
        stream: Writable file-like object (defaults to ``sys.stdout``).
        rate_hz: Throughput - how often to flush batches.
        **kwargs: Forwarded to :class:`Sink`.
    """

    def __init__(
        self,
        *,
        fmt: str = "text",
        stream: IO[str] | None = None,
        rate_hz: float | None = None,
        batch_size: int = 100,
        **kwargs: Any,
    ) -> None:
        super().__init__(rate_hz=rate_hz, batch_size=batch_size, **kwargs)
        self._fmt = fmt
        self._stream = stream or sys.stdout

    async def connect(self) -> None:
        """No-op - stdout is always available."""

    async def write(self, results: list[SimulationResult]) -> None:
        for result in results:
            if self._fmt == "json":
                self._stream.write(result.to_json() + "\n")
            else:
                self._stream.write(_format_result(result) + "\n")
        self._stream.flush()

    async def flush(self) -> None:
        self._stream.flush()

    async def close(self) -> None:
        """No-op - we do not own stdout."""
