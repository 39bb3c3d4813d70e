"""File sink - writes simulation results to CSV or JSON Lines files with
optional time-based rotation.
"""

from __future__ import annotations

import csv
import logging
import time
from pathlib import Path
from typing import IO, Any, ClassVar

from machine_monitor.models import SimulationResult
from machine_monitor.sinks.base import Sink

__all__ = ["FileSink"]

logger = logging.getLogger("machine_monitor.sinks.file")

_EXTENSIONS = {"csv": "csv", "json": "jsonl"}


def _parse_rotation(rotation: str | None) -> float | None:
    """Convert a human-readable rotation interval to seconds.

    Accepted formats: ``"30s"``, ``"5m"``, ``"1h"``, ``"1d"``.
    Returns ``None`` if rotation is disabled.
    """
    if not rotation:
        return None
    rotation = rotation.strip().lower()
    if rotation.endswith("s"):
        return float(rotation[:-1])
    if rotation.endswith("m"):
        return float(rotation[:-1]) * 60
    if rotation.endswith("h"):
        return float(rotation[:-1]) * 3600
    if rotation.endswith("d"):
        return float(rotation[:-1]) * 86400
    return float(rotation)  # assume seconds


class FileSink(Sink):
    """Write simulation results to local files.

    CSV rows are the flattened tick (state, target load and model verdicts);
    JSON lines carry the full nested result.

    Parameters:
        path: Output directory (created automatically).
        format: ``"csv"`` or ``"json"``.
        rotation: Rotate to a new file periodically - e.g. ``"1h"``,
                  ``"30m"``, ``"60s"``.  ``None`` means single file.
        rate_hz / batch_size / **kwargs: Forwarded to :class:`Sink`.
    """

    _CSV_FIELDS: ClassVar[list[str]] = [
        "timestamp",
        "machine_id",
        "scenario",
        "tick",
        "rpm",
        "temperature",
        "vibration",
        "power",
        "load",
        "efficiency",
        "noise",
        "current",
        "torque",
        "target_load",
        "is_anomaly",
        "reconstruction_error",
        "optimization_action",
        "predicted_vibration",
        "predicted_temperature",
    ]

    def __init__(
        self,
        *,
        path: str = "./output",
        format: str = "csv",
        rotation: str | None = None,
        rate_hz: float | None = None,
        batch_size: int = 500,
        **kwargs: Any,
    ) -> None:
        super().__init__(rate_hz=rate_hz, batch_size=batch_size, **kwargs)
        self._dir = Path(path)
        self._format = format.lower()
        self._rotation_s = _parse_rotation(rotation)
        self._current_file: IO[str] | None = None
        self._csv_writer: csv.DictWriter[str] | None = None
        self._file_start_time: float = 0.0
        self._file_index = 0

    async def connect(self) -> None:
        if self._format not in _EXTENSIONS:
            raise ValueError(f"Unknown file format: {self._format}")
        self._dir.mkdir(parents=True, exist_ok=True)
        self._open_new_file()
        logger.info("FileSink writing %s to %s", self._format, self._dir)

    async def write(self, results: list[SimulationResult]) -> None:
        if self._rotation_s and (time.time() - self._file_start_time >= self._rotation_s):
            self._close_current_file()
            self._open_new_file()

        if self._current_file is None:
            return
        if self._format == "csv":
            self._write_csv(results)
        else:
            for result in results:
                self._current_file.write(result.to_json() + "\n")
        self._current_file.flush()

    async def flush(self) -> None:
        if self._current_file and not self._current_file.closed:
            self._current_file.flush()

    async def close(self) -> None:
        await self.flush()
        self._close_current_file()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open_new_file(self) -> None:
        self._file_index += 1
        suffix = time.strftime("%Y%m%d_%H%M%S", time.localtime())
        filepath = self._dir / f"simulation_{suffix}_{self._file_index:03d}.{_EXTENSIONS[self._format]}"
        self._current_file = open(filepath, "w", newline="", encoding="utf-8")  # noqa: SIM115
        self._csv_writer = None  # will init on first write
        self._file_start_time = time.time()
        logger.debug("Opened file: %s", filepath)

    def _close_current_file(self) -> None:
        if self._current_file and not self._current_file.closed:
            self._current_file.close()
        self._current_file = None
        self._csv_writer = None

    def _write_csv(self, results: list[SimulationResult]) -> None:
        if self._current_file is None:
            return
        if self._csv_writer is None:
            self._csv_writer = csv.DictWriter(
                self._current_file,
                fieldnames=self._CSV_FIELDS,
                extrasaction="ignore",
            )
            self._csv_writer.writeheader()
        for result in results:
            self._csv_writer.writerow(result.to_flat_dict())
