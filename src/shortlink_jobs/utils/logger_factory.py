"""Factories for application loggers and helper utilities."""

import traceback
from typing import List, Optional

from shortlink_jobs.bot.discord import DiscordHandler
from shortlink_jobs.configs.env_config import Env
from shortlink_jobs.utils.logger.config import LogLevel, LoggerConfig
from shortlink_jobs.utils.logger.handlers.base import BaseLogHandler
from shortlink_jobs.utils.logger.handlers.rotating_file import ErrorFileHandler, RotatingFileHandler
from shortlink_jobs.utils.logger.logger import Logger


class EnhancedLoggerFactory:
    """Convenience constructors for configured application loggers."""

    @staticmethod
    def create_application_logger(name: str = "scheduler",
                                  enable_stdout: bool = False,
                                  log_level: Optional[LogLevel] = None,
                                  config_prefix: Optional[str] = None,
                                  base_dir: Optional[str] = None,
                                  alert_webhook: Optional[str] = None) -> Logger:
        """Create the main application logger with rotating file handlers.

        :param name: Logger name used in records and filenames.
        :param enable_stdout: Whether to emit log lines to stdout.
        :param log_level: Minimum log level; defaults to ``Env.LOG_LEVEL``.
        :param config_prefix: Optional prefix for log filenames; ``""`` disables it.
        :param base_dir: Directory for log files; defaults to ``Env.LOG_DIR``.
        :param alert_webhook: Discord webhook for WARNING+ lines; defaults to
            ``Env.JOB_ALERT_WEBHOOK`` and is skipped when unset.
        :return: Configured :class:`Logger` instance.
        """
        config = LoggerConfig(
            base_level=log_level if log_level is not None else LogLevel.from_name(Env.LOG_LEVEL),
            do_stdout=enable_stdout,
            str_format="%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        )

        prefix = name if config_prefix is None else config_prefix
        log_dir = base_dir or Env.LOG_DIR

        handlers: List[BaseLogHandler] = [
            RotatingFileHandler(base_dir=log_dir, filename_prefix=prefix, rotation="daily"),
            ErrorFileHandler(base_dir=log_dir, filename_prefix=prefix, rotation="daily"),
        ]

        webhook = alert_webhook if alert_webhook is not None else Env.JOB_ALERT_WEBHOOK
        if webhook:
            handlers.append(DiscordHandler(webhook_url=webhook))

        return Logger(config=config, name=name, handlers=handlers)


def log_exception(logger: Logger, exc: BaseException, context: str = ""):
    """Log an exception with traceback using the provided logger.

    :param logger: Logger instance used for reporting the failure.
    :param exc: Exception that should be logged.
    :param context: Optional textual context describing the failure.
    """
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    error_msg = f"EXCEPTION in {context}: {type(exc).__name__}: {str(exc)}\n{tb_str}"
    logger.error(error_msg)
