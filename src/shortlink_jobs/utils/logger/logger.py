"""Queue-fed logger used by the scheduler process and its jobs."""

import asyncio
import sys
import traceback
from typing import Dict, List, Optional, Tuple

from colorama import Fore, Style, init as colorama_init

from shortlink_jobs.utils.logger.config import LogEvent, LogLevel, LoggerConfig
from shortlink_jobs.utils.logger.handlers.base import BaseLogHandler
from shortlink_jobs.utils.misc import time_iso8601, time_s

colorama_init(autoreset=True)


# level -> (stdout colour, icon)
LEVEL_STYLES: Dict[LogLevel, Tuple[str, str]] = {
    LogLevel.TRACE: (Fore.LIGHTBLACK_EX, "🔍"),
    LogLevel.DEBUG: (Fore.LIGHTBLACK_EX, "🐞"),
    LogLevel.INFO: (Fore.GREEN, "ℹ️"),
    LogLevel.WARNING: (Fore.YELLOW, "⚠️"),
    LogLevel.ERROR: (Fore.RED + Style.BRIGHT, "❌"),
    LogLevel.CRITICAL: (Fore.RED + Style.BRIGHT, "🔥"),
}

# INFO lines containing one of these are flushed straight away
FLUSH_KEYWORDS = ("started", "stopped", "shutting down", "completed", "Manually triggering")


class Logger:
    """Non-blocking logger for the job scheduler.

    Level methods render the line and enqueue it; nothing touches disk or the
    network on the caller's stack. The ingestor task started by :meth:`start`
    appends queued events to a buffer and hands the buffer to every handler
    when it fills up, when it gets older than ``buffer_timeout``, on WARNING
    and above, or on lifecycle lines (see ``FLUSH_KEYWORDS``).
    """

    def __init__(
        self,
        config: Optional[LoggerConfig] = None,
        name: str = "",
        handlers: Optional[List[BaseLogHandler]] = None,
    ):
        """
        :param config: Buffering, level and format settings.
        :param name: Value of ``%(name)s`` in rendered lines.
        :param handlers: Sinks receiving flushed batches.
        :raises TypeError: If a handler is not a :class:`BaseLogHandler`.
        """
        self._config = config if config is not None else LoggerConfig()
        self._name = name
        self._handlers = list(handlers or [])

        for handler in self._handlers:
            if not isinstance(handler, BaseLogHandler):
                raise TypeError(f"Invalid handler; expected BaseLogHandler but got {type(handler)}")
            handler.add_primary_config(self._config)

        self._buffer: List[LogEvent] = []
        self._buffer_start_time = time_s()

        self._msg_queue: asyncio.Queue = asyncio.Queue()
        self._is_running = True
        self._log_ingestor_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ level methods

    def trace(self, msg: str) -> None:
        self._process_log(LogLevel.TRACE, msg)

    def debug(self, msg: str) -> None:
        self._process_log(LogLevel.DEBUG, msg)

    def info(self, msg: str) -> None:
        self._process_log(LogLevel.INFO, msg)

    def warning(self, msg: str) -> None:
        self._process_log(LogLevel.WARNING, msg)

    def error(self, msg: str) -> None:
        self._process_log(LogLevel.ERROR, msg)

    def critical(self, msg: str) -> None:
        self._process_log(LogLevel.CRITICAL, msg)

    def set_log_level(self, level: LogLevel) -> None:
        """Change the minimum accepted level while running."""
        self.debug(f"Log level {self._config.base_level.name} -> {level.name}")
        self._config.base_level = level
        for handler in self._handlers:
            handler.add_primary_config(self._config)

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        """Start the handlers, then the ingestor task. Calling it twice is a no-op."""
        if self._log_ingestor_task is not None:
            return
        self._is_running = True
        for handler in self._handlers:
            await handler.start()
        self._log_ingestor_task = asyncio.create_task(self._log_ingestor())

    async def shutdown(self) -> None:
        """Stop accepting lines, deliver what is queued, then stop the handlers."""
        self._is_running = False
        await asyncio.sleep(0)

        if self._log_ingestor_task is not None:
            try:
                await self._drain(timeout=2.0)
            except asyncio.TimeoutError:
                print("[Logger] drain timeout; forcing shutdown", file=sys.stderr)

            self._log_ingestor_task.cancel()
            try:
                await self._log_ingestor_task
            except asyncio.CancelledError:
                pass
            self._log_ingestor_task = None

        if self._buffer:
            await self._flush_buffer()

        for handler in self._handlers:
            try:
                await handler.shutdown()
            except Exception:
                traceback.print_exc(file=sys.stderr)

    def is_running(self) -> bool:
        return self._is_running

    def get_name(self) -> str:
        return self._name

    def get_config(self) -> LoggerConfig:
        return self._config

    # ------------------------------------------------------------------ internals

    def _process_log(self, level: LogLevel, msg: str) -> None:
        if not self._is_running or level < self._config.base_level:
            return
        try:
            text = self._config.str_format % {
                "asctime": time_iso8601(),
                "icon": LEVEL_STYLES[level][1],
                "name": self._name,
                "levelname": level.name,
                "message": msg,
            }
            self._msg_queue.put_nowait(LogEvent(text=text, level=level))
        except Exception:
            traceback.print_exc(file=sys.stderr)

    def _should_flush(self, event: LogEvent) -> bool:
        if event.level >= LogLevel.WARNING:
            return True
        if any(keyword in event.text for keyword in FLUSH_KEYWORDS):
            return True
        if len(self._buffer) >= self._config.buffer_capacity:
            return True
        return (time_s() - self._buffer_start_time) >= self._config.buffer_timeout

    async def _flush_buffer(self) -> None:
        batch, self._buffer = self._buffer, []
        self._buffer_start_time = time_s()
        for handler in self._handlers:
            try:
                await handler.push(batch)
            except Exception:
                traceback.print_exc(file=sys.stderr)

    async def _log_ingestor(self) -> None:
        while self._is_running or not self._msg_queue.empty():
            try:
                event: LogEvent = await self._msg_queue.get()
            except asyncio.CancelledError:
                break

            try:
                self._buffer.append(event)
                if self._config.do_stdout:
                    print(LEVEL_STYLES[event.level][0] + event.text + Style.RESET_ALL)
                if self._should_flush(event):
                    await self._flush_buffer()
            except Exception:
                traceback.print_exc(file=sys.stderr)
            finally:
                self._msg_queue.task_done()

    async def _drain(self, timeout: Optional[float] = None) -> None:
        if timeout is None:
            await self._msg_queue.join()
        else:
            await asyncio.wait_for(self._msg_queue.join(), timeout=timeout)
