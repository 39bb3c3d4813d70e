"""Callback sink: hands each batch of tick results to a Python callable.

:meth:`Monitor.add_sink` wraps plain functions in this sink::

    monitor.add_sink(lambda results: print(len(results)))
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from machine_monitor.models import SimulationResult
from machine_monitor.sinks.base import Sink

__all__ = ["CallbackSink"]

BatchCallback = Callable[[list[SimulationResult]], Any]


def _is_async(callback: BatchCallback) -> bool:
    # Instances with an ``async def __call__`` count too.
    return inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(getattr(callback, "__call__", None))


class CallbackSink(Sink):
    """Delivers every flushed batch to *callback*.

    Coroutine functions are awaited on the event loop.  Plain callables run
    in the loop's default executor, off the control loops' thread.

    Raises:
        TypeError: *callback* is not callable.
    """

    def __init__(
        self,
        callback: BatchCallback,
        *,
        rate_hz: float | None = None,
        batch_size: int = 100,
        **kwargs: Any,
    ) -> None:
        if not callable(callback):
            raise TypeError(f"CallbackSink needs a callable, got {type(callback).__name__}")
        super().__init__(rate_hz=rate_hz, batch_size=batch_size, **kwargs)
        self._callback = callback
        self._is_async = _is_async(callback)

    @property
    def callback(self) -> BatchCallback:
        return self._callback

    async def write(self, results: list[SimulationResult]) -> None:
        if self._is_async:
            await self._callback(results)
        else:
            await asyncio.get_running_loop().run_in_executor(None, self._callback, results)

    # Nothing to open, buffer or release.

    async def connect(self) -> None:
        pass

    async def flush(self) -> None:
        pass

    async def close(self) -> None:
        pass
