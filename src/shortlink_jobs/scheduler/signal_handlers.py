"""SIGINT/SIGTERM wiring for the scheduler process."""

import asyncio
import signal

from shortlink_jobs.scheduler.service import JobSchedulerService
from shortlink_jobs.utils.logger.logger import Logger
from shortlink_jobs.utils.logger_factory import log_exception

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(
    service: JobSchedulerService,
    loop: asyncio.AbstractEventLoop,
    etl_logger: Logger,
    stop_event: asyncio.Event,
) -> None:
    """Shut ``service`` down on the first SIGINT/SIGTERM, then set ``stop_event``.

    Timers are cancelled and in-flight runs are awaited before the event is
    set. Repeated signals while shutting down are ignored.

    :param service: Scheduler service owned by the process.
    :param loop: Loop the shutdown coroutine is scheduled on.
    :param etl_logger: Logger for lifecycle messages.
    :param stop_event: Event the entry point waits on.
    """
    state = {"shutting_down": False, "task": None}

    async def _graceful_stop() -> None:
        try:
            await service.shutdown(wait=True)
        except Exception as e:
            log_exception(etl_logger, e, context="signal_shutdown")
        finally:
            stop_event.set()

    def _on_signal(signum, frame=None) -> None:
        if state["shutting_down"]:
            etl_logger.warning(f"Signal {signum} received again; shutdown already in progress")
            return
        state["shutting_down"] = True
        etl_logger.info(f"Received signal {signum}. Graceful shutdown started.")
        loop.call_soon_threadsafe(_spawn_stop)

    def _spawn_stop() -> None:
        # strong reference to the shutdown task
        state["task"] = loop.create_task(_graceful_stop())

    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, _on_signal, sig, None)
        except (NotImplementedError, AttributeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, _on_signal)
