"""Levels, events and settings of the scheduler's logging pipeline."""

from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARNING = 3
    ERROR = 4
    CRITICAL = 5

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Parse a level name such as ``"info"`` or ``"WARN"``.

        :raises ValueError: If the name does not match a level.
        """
        key = name.strip().upper()
        if key == "WARN":
            key = "WARNING"
        try:
            return cls[key]
        except KeyError as exc:
            raise ValueError(f"Unknown log level: {name!r}") from exc


@dataclass
class LogEvent:
    """One rendered line waiting in the logger's buffer."""

    text: str
    level: LogLevel


@dataclass
class LoggerConfig:
    """Settings shared by a :class:`Logger` and its handlers.

    :param base_level: Lines below this level are dropped at the call site.
    :param do_stdout: Mirror every line to stdout, coloured.
    :param str_format: ``%``-style template; must contain ``%(message)s``.
    :param buffer_capacity: Events held before a forced flush.
    :param buffer_timeout: Seconds an unflushed buffer may age.
    """

    base_level: LogLevel = LogLevel.INFO
    do_stdout: bool = True
    str_format: str = "%(asctime)s %(icon)s [%(levelname)s] %(name)s - %(message)s"
    buffer_capacity: int = 100
    buffer_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not isinstance(self.buffer_capacity, int) or self.buffer_capacity < 1:
            raise ValueError(f"Invalid buffer capacity; expected int >=1 but got {self.buffer_capacity!r}")
        if self.buffer_timeout <= 0.0:
            raise ValueError(f"Invalid buffer timeout; expected >0 but got {self.buffer_timeout}")
        if "%(message)s" not in self.str_format:
            raise ValueError("Format string must contain '%(message)s' placeholder")
