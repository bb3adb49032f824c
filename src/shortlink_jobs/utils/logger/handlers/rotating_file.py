"""Handlers that append log batches to time-rotated files."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Literal

from shortlink_jobs.utils.logger.config import LogEvent, LogLevel
from shortlink_jobs.utils.logger.handlers.base import BaseLogHandler

Rotation = Literal["daily", "hourly", "per_minute", "per_second"]

_PATTERNS = {
    "daily": "%Y-%m-%d",
    "hourly": "%Y%m%d %H:00:00",
    "per_minute": "%Y%m%d %H:%M:00",
    "per_second": "%Y%m%d %H:%M:%S",
}


class RotatingFileHandler(BaseLogHandler):
    """Write every buffered event to ``<base_dir>/<prefix>/<window>.log``."""

    suffix = ".log"
    min_level = LogLevel.TRACE

    def __init__(
        self,
        base_dir: str,
        filename_prefix: str = "",
        create: bool = True,
        rotation: Rotation = "daily",
    ) -> None:
        """Initialise the handler with target directory and rotation scheme.

        :param base_dir: Base directory where log files are written.
        :param filename_prefix: Optional prefix (subdirectory) for log files.
        :param create: Whether to create the directory if missing.
        :param rotation: Frequency granularity for rotating filenames.
        :raises ValueError: If ``rotation`` is unknown.
        """
        super().__init__()
        if rotation not in _PATTERNS:
            raise ValueError(f"Unsupported rotation: {rotation}")

        self.base_dir = Path(base_dir)
        self.filename_prefix = filename_prefix
        self._pattern = _PATTERNS[rotation]

        if create:
            self.base_dir.mkdir(parents=True, exist_ok=True)

    def current_filepath(self) -> str:
        """Return the destination file for the current rotation window."""
        window = datetime.now(timezone.utc).strftime(self._pattern)
        filename = f"{window}{self.suffix}"
        if self.filename_prefix:
            # e.g. logs/scheduler/2025-08-04.log
            return str(self.base_dir / self.filename_prefix / filename)
        return str(self.base_dir / filename)

    async def push(self, records: List[LogEvent]) -> None:
        """Append the records at or above ``min_level`` to the current file.

        :param records: Buffered log events awaiting persistence.
        """
        lines = [ev.text for ev in records if ev.level.value >= self.min_level.value]
        if not lines:
            return
        path = self.current_filepath()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines))
            f.write("\n")
            f.flush()


class ErrorFileHandler(RotatingFileHandler):
    """Persist only error and higher severity messages to ``*.error.log``."""

    suffix = ".error.log"
    min_level = LogLevel.ERROR
