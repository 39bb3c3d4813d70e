"""Sink abstraction for published simulation results.

Provides:
- ``Sink``       - abstract base class that every concrete sink implements.
- ``SinkConfig`` - per-sink throughput / batching / back-pressure knobs.
- ``SinkRunner`` - async helper that buffers results and drains them to the
                   sink at the configured rate, so a slow destination never
                   delays a machine's tick.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel

from machine_monitor.models import SimulationResult

__all__ = ["Sink", "SinkConfig", "SinkRunner"]

logger = logging.getLogger("machine_monitor.sinks")


# -----------------------------------------------------------------------
# Throughput configuration
# -----------------------------------------------------------------------


class SinkConfig(BaseModel):
    """Per-sink throughput / batching knobs.

    Attributes:
        rate_hz:
            How often the runner flushes buffered results to the sink.
            ``None`` means every 50 ms.  ``0.1`` means once every 10 seconds.
        batch_size:
            Maximum results handed to one ``write()`` call.
        max_buffer_size:
            Maximum results held in memory.  When exceeded the
            ``backpressure`` policy kicks in.
        backpressure:
            ``"drop_oldest"`` - discard oldest results when the buffer is full.
            ``"drop_newest"`` - discard incoming results when the buffer is full.
        retry_count:
            How many times to try a failing ``write()`` call.
        retry_delay_s:
            Seconds to wait between retries.
    """

    rate_hz: float | None = None
    batch_size: int = 100
    max_buffer_size: int = 10_000
    backpressure: Literal["drop_oldest", "drop_newest"] = "drop_oldest"
    retry_count: int = 3
    retry_delay_s: float = 1.0


# -----------------------------------------------------------------------
# Sink ABC
# -----------------------------------------------------------------------


class Sink(ABC):
    """Abstract base class for all sinks.

    Concrete sinks must implement ``connect``, ``write``, ``flush`` and
    ``close``.  Throughput parameters are accepted in ``__init__`` and
    stored in ``self.sink_config``.
    """

    def __init__(
        self,
        *,
        rate_hz: float | None = None,
        batch_size: int = 100,
        max_buffer_size: int = 10_000,
        backpressure: str = "drop_oldest",
        retry_count: int = 3,
        retry_delay_s: float = 1.0,
    ) -> None:
        self.sink_config = SinkConfig(
            rate_hz=rate_hz,
            batch_size=batch_size,
            max_buffer_size=max_buffer_size,
            backpressure=backpressure,
            retry_count=retry_count,
            retry_delay_s=retry_delay_s,
        )

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection / open resources."""

    @abstractmethod
    async def write(self, results: list[SimulationResult]) -> None:
        """Write a batch of results to the destination."""

    @abstractmethod
    async def flush(self) -> None:
        """Flush any internal buffers the sink may hold."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources / close connections."""


# -----------------------------------------------------------------------
# SinkRunner - async buffer + rate limiter (one per registered sink)
# -----------------------------------------------------------------------


class SinkRunner:
    """Buffers incoming results and drains them to a ``Sink`` according
    to its ``SinkConfig`` throughput settings.

    The Monitor creates one ``SinkRunner`` per ``add_sink()`` call and uses
    :meth:`enqueue` as every machine's listener.
    """

    def __init__(self, sink: Sink) -> None:
        self.sink = sink
        self.cfg = sink.sink_config
        self._buffer: collections.deque[SimulationResult] = collections.deque(
            maxlen=self.cfg.max_buffer_size if self.cfg.backpressure == "drop_oldest" else None,
        )
        self._drain_task: asyncio.Task[None] | None = None
        self._stopped = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    # -- public interface used by Monitor --

    async def start(self) -> None:
        """Connect the sink and start the background drain loop."""
        await self.sink.connect()
        self._stopped = False
        self._drain_task = asyncio.create_task(self._drain_loop(), name=f"drain-{type(self.sink).__name__}")

    def enqueue(self, result: SimulationResult) -> None:
        """Append one result to the buffer (called from a machine's tick)."""
        if self._stopped:
            return

        if self.cfg.backpressure == "drop_newest" and len(self._buffer) >= self.cfg.max_buffer_size:
            self.dropped += 1
            return
        if self._buffer.maxlen is not None and len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1

        self._buffer.append(result)

    async def stop(self) -> None:
        """Drain remaining results, flush, and close the sink."""
        self._stopped = True
        if self._drain_task and not self._drain_task.done():
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
        # Final drain
        await self._flush_buffer()
        await self.sink.flush()
        await self.sink.close()
        if self.dropped:
            logger.warning("%s dropped %d results due to back-pressure", type(self.sink).__name__, self.dropped)

    # -- internal --

    async def _drain_loop(self) -> None:
        """Background coroutine that drains the buffer at the configured rate."""
        try:
            while not self._stopped:
                interval = 1.0 / self.cfg.rate_hz if self.cfg.rate_hz is not None and self.cfg.rate_hz > 0 else 0.05

                await asyncio.sleep(interval)
                await self._flush_buffer()
        except asyncio.CancelledError:
            pass

    async def _flush_buffer(self) -> None:
        """Write the buffer out in ``batch_size`` chunks."""
        while self._buffer:
            count = min(len(self._buffer), self.cfg.batch_size)
            batch = [self._buffer.popleft() for _ in range(count)]

            for attempt in range(1, self.cfg.retry_count + 1):
                try:
                    await self.sink.write(batch)
                    break
                except Exception as exc:
                    if attempt < self.cfg.retry_count:
                        logger.warning(
                            "%s write failed (attempt %d/%d): %s - retrying in %.1fs",
                            type(self.sink).__name__,
                            attempt,
                            self.cfg.retry_count,
                            exc,
                            self.cfg.retry_delay_s,
                        )
                        await asyncio.sleep(self.cfg.retry_delay_s)
                    else:
                        logger.error(
                            "%s write failed after %d attempts: %s - dropping %d results",
                            type(self.sink).__name__,
                            self.cfg.retry_count,
                            exc,
                            len(batch),
                        )
