"""Scheduler service owning job timers, run guards, retries and health checks."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from shortlink_jobs.jobs import url_expiration
from shortlink_jobs.jobs.password_reset_cleanup import PasswordResetCleanupJob
from shortlink_jobs.model.jobs import (
    HEALTH_WARNING_FAILURES,
    RETRY_FAILURE_LIMIT,
    STALE_RUN_THRESHOLD,
    CleanupJobStats,
    ExpirationConfig,
    JobResult,
    JobStatus,
    ScheduleConfig,
    utcnow,
)
from shortlink_jobs.repository.base import PasswordResetTokenStore, UrlStore
from shortlink_jobs.scheduler.scheduler import add_interval_timer, add_one_shot_timer, build_scheduler
from shortlink_jobs.utils.logger.logger import Logger
from shortlink_jobs.utils.logger_factory import log_exception
from shortlink_jobs.utils.misc import time_ms
from shortlink_jobs.utils.retry import SleepFn

URL_EXPIRATION = "url_expiration"
PASSWORD_RESET_CLEANUP = "password_reset_cleanup"
HEALTH_CHECK = "health_check"

JOB_NAME_ALIASES = {
    "urlExpiration": URL_EXPIRATION,
    "passwordResetCleanup": PASSWORD_RESET_CLEANUP,
}

_LABELS = {
    URL_EXPIRATION: "URL expiration job",
    PASSWORD_RESET_CLEANUP: "Password reset cleanup job",
}


class JobAlreadyRunningError(RuntimeError):
    """Raised when a manual trigger hits a job that is still running."""

    def __init__(self, job_name: str) -> None:
        super().__init__(f"Job '{job_name}' is already running")
        self.job_name = job_name


class JobSchedulerService:
    """Runs the URL expiration and password reset cleanup jobs on timers.

    One instance per process. Every run, scheduled or manual, goes through
    :meth:`_execute`, which is the only writer of the per-job
    :class:`JobStatus` records. The running flag is checked and set without
    an intervening ``await``, so on a single event loop at most one run of a
    given job exists at a time.
    """

    def __init__(
        self,
        url_store: UrlStore,
        token_store: PasswordResetTokenStore,
        *,
        logger: Logger,
        config: Optional[ScheduleConfig] = None,
        expiration_config: Optional[ExpirationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Wire the jobs to their storage collaborators.

        :param url_store: Storage used by the URL expiration job and statistics.
        :param token_store: Storage used by the password reset cleanup job.
        :param logger: Logger for lifecycle, run and health messages.
        :param config: Default timer configuration used by :meth:`start_scheduler`.
        :param expiration_config: Paging/retry settings for URL expiration runs;
            defaults to the library defaults with the configured batch size.
        :param clock: Time source for health checks and synthesised results.
        :param sleep: Awaitable sleep passed to the expiration job's page retries.
        """
        self._url_store = url_store
        self._logger = logger
        self._default_config = config or ScheduleConfig()
        self._config = self._default_config
        self._expiration_config = expiration_config
        self._clock = clock or utcnow
        self._sleep = sleep

        self._cleanup_job = PasswordResetCleanupJob(token_store, logger)
        self._statuses: Dict[str, JobStatus] = {
            URL_EXPIRATION: JobStatus(),
            PASSWORD_RESET_CLEANUP: JobStatus(),
        }
        self._runners: Dict[str, Callable[[], Awaitable[JobResult]]] = {
            URL_EXPIRATION: self._run_url_expiration,
            PASSWORD_RESET_CLEANUP: self._run_password_reset_cleanup,
        }

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._started = False
        self._started_at: Optional[datetime] = None
        self._inflight: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ lifecycle

    def start_scheduler(self, config: Optional[ScheduleConfig] = None) -> bool:
        """Arm the periodic, initial and health-check timers.

        Must be called from inside a running event loop.

        :param config: Configuration for this start; defaults to the one given
            at construction.
        :return: ``True`` if the timers were armed.
        """
        if self._started:
            self._logger.warning("Job scheduler is already started")
            return False

        config = config or self._default_config
        if not config.enabled:
            self._logger.info("Job scheduler is disabled")
            return False

        self._logger.info(f"Starting job scheduler with interval: {config.interval_minutes} minutes")

        try:
            scheduler = build_scheduler()
            initial_delay = timedelta(seconds=config.initial_run_delay_seconds)

            add_interval_timer(
                scheduler, URL_EXPIRATION, self._on_timer,
                minutes=config.interval_minutes, args=(URL_EXPIRATION,), etl_logger=self._logger,
            )
            add_interval_timer(
                scheduler, PASSWORD_RESET_CLEANUP, self._on_timer,
                minutes=config.password_reset_cleanup_interval_minutes,
                args=(PASSWORD_RESET_CLEANUP,), etl_logger=self._logger,
            )
            add_interval_timer(
                scheduler, HEALTH_CHECK, self._on_health_timer,
                minutes=config.health_check_interval_minutes, etl_logger=self._logger,
            )

            for name in (URL_EXPIRATION, PASSWORD_RESET_CLEANUP):
                add_one_shot_timer(
                    scheduler, f"{name}__initial", self._on_timer,
                    delay=initial_delay, args=(name,), etl_logger=self._logger,
                )
            add_one_shot_timer(
                scheduler, f"{HEALTH_CHECK}__initial", self._on_health_timer,
                delay=timedelta(seconds=config.initial_health_check_delay_seconds),
                etl_logger=self._logger,
            )

            scheduler.add_listener(
                self._on_timer_event, EVENT_JOB_MISSED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES
            )
            scheduler.start()
        except Exception as e:
            log_exception(self._logger, e, context="start_scheduler")
            self._logger.error(f"Failed to start job scheduler: {e}")
            return False

        self._scheduler = scheduler
        self._config = config
        self._started = True
        self._started_at = self._clock()
        self._logger.info("Job scheduler started successfully")
        return True

    def stop_scheduler(self) -> bool:
        """Cancel every pending timer; in-flight runs are left to finish.

        :return: ``False`` if the scheduler was not running or teardown failed.
        """
        if not self._started:
            self._logger.warning("Job scheduler is not running")
            return False

        self._logger.info("Stopping job scheduler")
        scheduler = self._scheduler
        self._scheduler = None
        self._started = False

        try:
            scheduler.remove_all_jobs()
            scheduler.shutdown(wait=False)
        except Exception as e:
            log_exception(self._logger, e, context="stop_scheduler")
            return False

        self._logger.info("Job scheduler stopped successfully")
        return True

    async def shutdown(self, *, wait: bool = True) -> None:
        """Stop the timers and optionally wait for in-flight runs to finish.

        :param wait: Whether to await runs that were already executing.
        """
        self._logger.info("Gracefully shutting down job scheduler")
        if self._started:
            self.stop_scheduler()
        if wait and self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------ queries

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        """Expose the underlying ``AsyncIOScheduler`` while started."""
        return self._scheduler

    @property
    def config(self) -> ScheduleConfig:
        return self._config

    def job_status(self, name: str) -> JobStatus:
        """Return the live status record of ``name``; callers must not mutate it."""
        return self._statuses[self._resolve_name(name)]

    def get_scheduler_status(self) -> Dict[str, Any]:
        """Summarise scheduler state, per-job counters and configuration."""
        jobs = {}
        for name, status in self._statuses.items():
            payload = asdict(status)
            payload["next_execution"] = self._next_execution(name)
            jobs[name] = payload
        return {
            "is_started": self._started,
            "started_at": self._started_at,
            "jobs": jobs,
            "in_flight": len(self._inflight),
            "configuration": asdict(self._config),
        }

    def get_cleanup_job_stats(self) -> CleanupJobStats:
        return self._cleanup_job.stats()

    async def get_job_statistics(self) -> Dict[str, int]:
        """Return URL lifecycle counts from the URL store."""
        return await url_expiration.get_job_statistics(store=self._url_store, logger=self._logger)

    # ------------------------------------------------------------------ manual control

    async def trigger_url_expiration_job(self) -> JobResult:
        """Run the URL expiration job now, bypassing timers and the circuit breaker.

        :raises JobAlreadyRunningError: If a run is already in progress.
        """
        self._logger.info("Manually triggering URL expiration job")
        return await self._execute(URL_EXPIRATION, manual=True)

    async def trigger_password_reset_cleanup_job(self) -> bool:
        """Run the password reset cleanup job now.

        :raises JobAlreadyRunningError: If a run is already in progress.
        """
        self._logger.info("Manually triggering password reset cleanup job")
        result = await self._execute(PASSWORD_RESET_CLEANUP, manual=True)
        return result.success

    def reset_job_statistics(self, name: str = "all") -> None:
        """Zero the counters of one job or of every job.

        The running flag is never touched, so a run in progress still
        records its outcome afterwards.

        :param name: Job name, one of its aliases, or ``all``.
        :raises KeyError: If ``name`` is not a known job.
        """
        names = list(self._statuses) if name == "all" else [self._resolve_name(name)]
        for job_name in names:
            self._statuses[job_name].reset()
            if job_name == PASSWORD_RESET_CLEANUP:
                self._cleanup_job.reset_stats()
            self._logger.info(f"{_LABELS[job_name]} statistics reset")

    # ------------------------------------------------------------------ health

    async def perform_health_check(self) -> List[str]:
        """Log a consolidated report and return warnings about unhealthy jobs.

        Only reads state. Failures while collecting statistics are logged and
        do not prevent the failure-count and staleness checks.
        """
        self._logger.info("Performing job scheduler health check")
        try:
            stats = await self.get_job_statistics()
            self._logger.info(f"URL Statistics: {json.dumps(stats, sort_keys=True)}")
        except Exception as e:
            log_exception(self._logger, e, context="health_check")

        cleanup_stats = asdict(self._cleanup_job.stats())
        self._logger.info(f"Password Reset Cleanup Statistics: {json.dumps(cleanup_stats, default=str)}")
        self._logger.info(f"Scheduler Status: {json.dumps(self.get_scheduler_status(), default=str)}")

        warnings: List[str] = []
        now = self._clock()
        for name, status in self._statuses.items():
            if status.consecutive_failures >= HEALTH_WARNING_FAILURES:
                warnings.append(f"{_LABELS[name]} has {status.consecutive_failures} consecutive failures")
            if status.last_execution is not None and now - status.last_execution > STALE_RUN_THRESHOLD:
                hours = int(STALE_RUN_THRESHOLD.total_seconds() // 3600)
                warnings.append(f"{_LABELS[name]} has not run in over {hours} hours")

        for message in warnings:
            self._logger.warning(message)
        return warnings

    # ------------------------------------------------------------------ execution

    async def _execute(self, name: str, *, manual: bool) -> Optional[JobResult]:
        status = self._statuses[name]
        label = _LABELS[name]

        if status.is_running:
            if manual:
                raise JobAlreadyRunningError(name)
            self._logger.warning(f"{label} is already running, skipping this execution")
            return None

        if not manual and status.circuit_open:
            self._logger.error(
                f"{label} has failed {status.consecutive_failures} times consecutively, "
                "manual intervention required"
            )
            return None

        status.is_running = True
        if not manual:
            self._logger.info(f"Starting scheduled {label}")

        try:
            result = await self._runners[name]()
        except asyncio.CancelledError:
            status.is_running = False
            raise
        except Exception as e:
            log_exception(self._logger, e, context=f"job:{name}")
            result = JobResult.failed(str(e), timestamp=self._clock())

        status.record(result)

        if result.success:
            self._logger.info(
                f"{label} completed successfully: {result.expired_count} records updated "
                f"in {result.execution_time_ms}ms"
            )
        else:
            self._logger.error(f"{label} completed with errors: {', '.join(result.errors)}")
            if (
                not manual
                and self._config.retry_on_failure
                and status.consecutive_failures < RETRY_FAILURE_LIMIT
            ):
                self._schedule_retry(name)

        return result

    async def _run_url_expiration(self) -> JobResult:
        config = self._expiration_config or ExpirationConfig(batch_size=self._config.batch_size)
        return await url_expiration.run(
            store=self._url_store, logger=self._logger, config=config, sleep=self._sleep, clock=self._clock,
        )

    async def _run_password_reset_cleanup(self) -> JobResult:
        started = time_ms()
        timestamp = self._clock()
        ok = await self._cleanup_job.execute()
        stats = self._cleanup_job.stats()
        cleaned = stats.last_cleanup_count if ok else 0
        return JobResult(
            success=ok,
            processed_count=cleaned,
            expired_count=cleaned,
            errors=() if ok else (stats.last_error or "password reset cleanup failed",),
            execution_time_ms=max(0, int(time_ms() - started)),
            timestamp=timestamp,
        )

    def _schedule_retry(self, name: str) -> None:
        if not self._started or self._scheduler is None:
            return
        minutes = self._config.retry_delay_minutes
        self._logger.info(f"Scheduling retry of {name} in {minutes} minutes")
        add_one_shot_timer(
            self._scheduler, f"{name}__retry", self._on_timer,
            delay=timedelta(minutes=minutes), args=(name,), etl_logger=self._logger,
        )

    async def _on_timer(self, name: str) -> None:
        # shielded so that stopping the scheduler never cancels a run mid-batch
        task = asyncio.ensure_future(self._execute(name, manual=False))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _on_health_timer(self) -> None:
        await self.perform_health_check()

    def _on_timer_event(self, event: JobEvent) -> None:
        if event.code & EVENT_JOB_MAX_INSTANCES:
            self._logger.warning(f"Timer {event.job_id} fired while its previous run is still active, skipping")
        elif event.code & EVENT_JOB_MISSED:
            self._logger.warning(f"Timer {event.job_id} missed its run time {event.scheduled_run_time}")
        elif event.code & EVENT_JOB_ERROR:
            self._logger.error(f"Timer {event.job_id} raised: {event.exception!r}")

    def _next_execution(self, name: str) -> Optional[datetime]:
        if not self._started or self._scheduler is None:
            return None
        times = []
        for job_id in (name, f"{name}__initial", f"{name}__retry"):
            job = self._scheduler.get_job(job_id)
            run_at = getattr(job, "next_run_time", None) if job is not None else None
            if run_at is not None:
                times.append(run_at)
        return min(times) if times else None

    def _resolve_name(self, name: str) -> str:
        resolved = JOB_NAME_ALIASES.get(name, name)
        if resolved not in self._statuses:
            raise KeyError(name)
        return resolved
