"""Base class for sinks that receive flushed log batches."""

from abc import ABC, abstractmethod
from typing import List, Optional

from shortlink_jobs.utils.logger.config import LogEvent, LoggerConfig


class BaseLogHandler(ABC):
    """Receives batches of :class:`LogEvent` from a :class:`Logger`."""

    def __init__(self) -> None:
        self._primary_config: Optional[LoggerConfig] = None

    def add_primary_config(self, config: LoggerConfig) -> None:
        """Remember the owning logger's configuration (format, level)."""
        self._primary_config = config

    async def start(self) -> None:
        """Acquire resources; called once by ``Logger.start``."""

    async def shutdown(self) -> None:
        """Release resources; called once by ``Logger.shutdown``."""

    @abstractmethod
    async def push(self, records: List[LogEvent]) -> None:
        """Persist or forward a batch of log events."""
        raise NotImplementedError
