"""Factory helpers for building and arming the in-process APScheduler instance."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

from apscheduler.job import Job
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shortlink_jobs.utils.logger.logger import Logger

DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 60,
}

UTC = timezone.utc


def build_scheduler() -> AsyncIOScheduler:
    """Create an ``AsyncIOScheduler`` backed by an in-memory job store."""
    jobstores = {"default": MemoryJobStore()}
    scheduler = AsyncIOScheduler(
        timezone=UTC,
        jobstores=jobstores,
        job_defaults=DEFAULTS,
    )
    return scheduler


def add_interval_timer(
    scheduler: AsyncIOScheduler,
    job_id: str,
    func: Callable[..., Any],
    *,
    minutes: int,
    args: Sequence[Any] = (),
    etl_logger: Optional[Logger] = None,
) -> Job:
    """Register ``func`` to fire every ``minutes`` minutes.

    :param scheduler: Target scheduler.
    :param job_id: Timer identifier; an existing timer with the same id is replaced.
    :param func: Coroutine function invoked on every fire.
    :param args: Positional arguments passed to ``func``.
    :param minutes: Interval length in minutes.
    :param etl_logger: Logger used for registration messages.
    """
    job = scheduler.add_job(
        func=func,
        trigger=IntervalTrigger(minutes=minutes, timezone=UTC),
        args=list(args),
        id=job_id,
        replace_existing=True,
    )
    if etl_logger is not None:
        etl_logger.info(f"Registered timer: {job_id} (interval={minutes}m)")
    return job


def add_one_shot_timer(
    scheduler: AsyncIOScheduler,
    job_id: str,
    func: Callable[..., Any],
    *,
    delay: timedelta,
    args: Sequence[Any] = (),
    now: Optional[datetime] = None,
    etl_logger: Optional[Logger] = None,
) -> Job:
    """Register ``func`` to fire once after ``delay``.

    :param scheduler: Target scheduler.
    :param job_id: Timer identifier; a pending timer with the same id is replaced.
    :param func: Coroutine function invoked once.
    :param args: Positional arguments passed to ``func``.
    :param delay: How long to wait from ``now``.
    :param now: Reference time; defaults to the current UTC time.
    :param etl_logger: Logger used for registration messages.
    """
    run_date = (now or datetime.now(tz=UTC)) + delay
    job = scheduler.add_job(
        func=func,
        trigger=DateTrigger(run_date=run_date, timezone=UTC),
        args=list(args),
        id=job_id,
        replace_existing=True,
        # a late one-shot still has to run
        misfire_grace_time=None,
    )
    if etl_logger is not None:
        etl_logger.info(f"Registered one-shot timer: {job_id} (at {run_date.isoformat()})")
    return job
