"""Pluggable destinations for simulation results.

Import any sink you need directly from this package::

    from machine_monitor.sinks import ConsoleSink, FileSink
"""

from __future__ import annotations

from machine_monitor.sinks.base import Sink, SinkConfig, SinkRunner
from machine_monitor.sinks.callback import CallbackSink
from machine_monitor.sinks.console import ConsoleSink
from machine_monitor.sinks.factory import create_sink, register_sink
from machine_monitor.sinks.file import FileSink

__all__ = [
    "CallbackSink",
    "ConsoleSink",
    "FileSink",
    "Sink",
    "SinkConfig",
    "SinkRunner",
    "create_sink",
    "register_sink",
]
