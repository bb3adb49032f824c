import asyncio
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from apscheduler.events import EVENT_JOB_MAX_INSTANCES

from shortlink_jobs.jobs import url_expiration
from shortlink_jobs.model.jobs import ExpirationConfig, ScheduleConfig
from shortlink_jobs.repository.memory import InMemoryPasswordResetTokenStore, InMemoryUrlStore
from shortlink_jobs.scheduler.service import (
    HEALTH_CHECK,
    PASSWORD_RESET_CLEANUP,
    URL_EXPIRATION,
    JobAlreadyRunningError,
    JobSchedulerService,
)


class BlockingUrlStore(InMemoryUrlStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_expired_candidates(self, limit, offset):
        self.entered.set()
        await self.release.wait()
        return await super().fetch_expired_candidates(limit, offset)


class FlakyUrlStore(InMemoryUrlStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.failing = True

    async def fetch_expired_candidates(self, limit, offset):
        if self.failing:
            raise ConnectionError("database unavailable")
        return await super().fetch_expired_candidates(limit, offset)

    async def fetch_aggregate_statistics(self):
        if self.failing:
            raise ConnectionError("database unavailable")
        return await super().fetch_aggregate_statistics()


QUIET_START = ScheduleConfig(initial_run_delay_seconds=3600, initial_health_check_delay_seconds=3600)


@pytest.fixture
def make_service(dummy_logger, no_sleep, fixed_now):
    def _factory(url_store=None, token_store=None, **overrides):
        kwargs = dict(
            logger=dummy_logger,
            config=QUIET_START,
            expiration_config=ExpirationConfig(max_retries=1, retry_delay_ms=0),
            clock=lambda: fixed_now,
            sleep=no_sleep,
        )
        kwargs.update(overrides)
        return JobSchedulerService(
            url_store or InMemoryUrlStore(now=lambda: fixed_now),
            token_store or InMemoryPasswordResetTokenStore(now=lambda: fixed_now),
            **kwargs,
        )

    return _factory


@pytest.mark.asyncio
async def test_start_arms_periodic_initial_and_health_timers(make_service):
    service = make_service()

    assert service.start_scheduler() is True
    try:
        job_ids = {job.id for job in service.scheduler.get_jobs()}
        assert job_ids == {
            URL_EXPIRATION,
            PASSWORD_RESET_CLEANUP,
            HEALTH_CHECK,
            f"{URL_EXPIRATION}__initial",
            f"{PASSWORD_RESET_CLEANUP}__initial",
            f"{HEALTH_CHECK}__initial",
        }
        status = service.get_scheduler_status()
        assert status["is_started"] is True
        assert status["jobs"][URL_EXPIRATION]["next_execution"] is not None
        assert status["configuration"]["interval_minutes"] == 60
    finally:
        assert service.stop_scheduler() is True

    assert service.is_started is False
    assert service.scheduler is None


@pytest.mark.asyncio
async def test_start_twice_and_stop_twice_are_rejected(make_service, dummy_logger):
    service = make_service()

    assert service.start_scheduler() is True
    assert service.start_scheduler() is False
    assert "Job scheduler is already started" in dummy_logger.messages("WARNING")

    assert service.stop_scheduler() is True
    assert service.stop_scheduler() is False
    assert "Job scheduler is not running" in dummy_logger.messages("WARNING")


@pytest.mark.asyncio
async def test_disabled_config_does_not_start(make_service, dummy_logger):
    service = make_service(config=ScheduleConfig(enabled=False))

    assert service.start_scheduler() is False
    assert service.is_started is False
    assert "Job scheduler is disabled" in dummy_logger.messages("INFO")


@pytest.mark.asyncio
async def test_status_before_start_has_no_next_execution(make_service):
    service = make_service()

    status = service.get_scheduler_status()

    assert status["is_started"] is False
    assert status["started_at"] is None
    assert status["jobs"][URL_EXPIRATION]["next_execution"] is None
    assert status["jobs"][PASSWORD_RESET_CLEANUP]["total_executions"] == 0


@pytest.mark.asyncio
async def test_manual_trigger_while_running_is_rejected(make_service, dummy_logger, fixed_now):
    store = BlockingUrlStore(now=lambda: fixed_now)
    service = make_service(url_store=store)

    first = asyncio.create_task(service.trigger_url_expiration_job())
    await store.entered.wait()
    assert service.job_status(URL_EXPIRATION).is_running is True

    with pytest.raises(JobAlreadyRunningError):
        await service.trigger_url_expiration_job()
    assert await service._execute(URL_EXPIRATION, manual=False) is None
    assert "URL expiration job is already running, skipping this execution" in dummy_logger.messages("WARNING")

    store.release.set()
    result = await first

    status = service.job_status(URL_EXPIRATION)
    assert result.success is True
    assert status.is_running is False
    assert status.total_executions == 1


@pytest.mark.asyncio
async def test_reset_during_run_keeps_running_flag(make_service, fixed_now):
    store = BlockingUrlStore(now=lambda: fixed_now)
    service = make_service(url_store=store)
    service.job_status(URL_EXPIRATION).total_failures = 4

    task = asyncio.create_task(service.trigger_url_expiration_job())
    await store.entered.wait()

    service.reset_job_statistics("all")
    status = service.job_status(URL_EXPIRATION)
    assert status.is_running is True
    assert status.total_failures == 0

    store.release.set()
    await task
    assert status.is_running is False
    assert status.total_executions == 1
    assert status.total_successes == 1


@pytest.mark.asyncio
async def test_circuit_breaker_blocks_scheduled_runs_only(make_service, dummy_logger, fixed_now):
    store = FlakyUrlStore(now=lambda: fixed_now)
    service = make_service(url_store=store)
    status = service.job_status(URL_EXPIRATION)

    for _ in range(5):
        result = await service._execute(URL_EXPIRATION, manual=False)
        assert result.success is False
    assert status.consecutive_failures == 5

    assert await service._execute(URL_EXPIRATION, manual=False) is None
    assert status.total_executions == 5
    assert (
        "URL expiration job has failed 5 times consecutively, manual intervention required"
        in dummy_logger.messages("ERROR")
    )

    store.failing = False
    result = await service.trigger_url_expiration_job()
    assert result.success is True
    assert status.consecutive_failures == 0
    assert status.total_executions == 6

    assert await service._execute(URL_EXPIRATION, manual=False) is not None


@pytest.mark.asyncio
async def test_job_body_exception_is_recorded_as_failure(make_service, dummy_logger, monkeypatch):
    monkeypatch.setattr(url_expiration, "run", AsyncMock(side_effect=RuntimeError("boom")))
    service = make_service()

    result = await service.trigger_url_expiration_job()

    status = service.job_status(URL_EXPIRATION)
    assert result.success is False
    assert result.errors == ("boom",)
    assert status.is_running is False
    assert status.total_failures == 1
    assert any(m.startswith("EXCEPTION in job:url_expiration") for m in dummy_logger.messages("ERROR"))


@pytest.mark.asyncio
async def test_scheduled_failure_arms_retry_until_limit(make_service, fixed_now):
    store = FlakyUrlStore(now=lambda: fixed_now)
    service = make_service(url_store=store)
    assert service.start_scheduler() is True
    retry_id = f"{URL_EXPIRATION}__retry"

    try:
        for _ in range(2):
            await service._execute(URL_EXPIRATION, manual=False)
            assert service.scheduler.get_job(retry_id) is not None
            service.scheduler.remove_job(retry_id)

        await service._execute(URL_EXPIRATION, manual=False)
        assert service.job_status(URL_EXPIRATION).consecutive_failures == 3
        assert service.scheduler.get_job(retry_id) is None
    finally:
        service.stop_scheduler()


@pytest.mark.asyncio
async def test_manual_failure_never_arms_retry(make_service, fixed_now):
    service = make_service(url_store=FlakyUrlStore(now=lambda: fixed_now))
    assert service.start_scheduler() is True

    try:
        result = await service.trigger_url_expiration_job()
        assert result.success is False
        assert service.scheduler.get_job(f"{URL_EXPIRATION}__retry") is None
    finally:
        service.stop_scheduler()


@pytest.mark.asyncio
async def test_stopping_does_not_cancel_in_flight_run(make_service, fixed_now):
    store = BlockingUrlStore(now=lambda: fixed_now)
    service = make_service(url_store=store)
    assert service.start_scheduler() is True

    timer = asyncio.create_task(service._on_timer(URL_EXPIRATION))
    await store.entered.wait()

    # what the executor does to pending timer callbacks on shutdown
    timer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await timer
    assert service.stop_scheduler() is True
    assert service.job_status(URL_EXPIRATION).is_running is True

    store.release.set()
    await service.shutdown(wait=True)

    status = service.job_status(URL_EXPIRATION)
    assert status.is_running is False
    assert status.total_successes == 1


@pytest.mark.asyncio
async def test_password_reset_trigger_records_status(make_service, fixed_now):
    tokens = InMemoryPasswordResetTokenStore(now=lambda: fixed_now)
    tokens.add_token("u1", "t1", fixed_now - timedelta(hours=1))
    service = make_service(token_store=tokens)

    assert await service.trigger_password_reset_cleanup_job() is True

    status = service.job_status(PASSWORD_RESET_CLEANUP)
    assert status.total_successes == 1
    assert service.get_cleanup_job_stats().total_tokens_cleaned_up == 1


@pytest.mark.asyncio
async def test_password_reset_failure_counts_as_failed_run(make_service):
    tokens = AsyncMock()
    tokens.cleanup_expired_password_reset_tokens.side_effect = ConnectionError("mongo down")
    service = make_service(token_store=tokens)

    assert await service.trigger_password_reset_cleanup_job() is False

    status = service.job_status(PASSWORD_RESET_CLEANUP)
    assert status.total_failures == 1
    assert status.consecutive_failures == 1


@pytest.mark.asyncio
async def test_reset_job_statistics_accepts_aliases_and_rejects_unknown(make_service):
    service = make_service()
    service.job_status(URL_EXPIRATION).consecutive_failures = 2
    service.job_status(PASSWORD_RESET_CLEANUP).consecutive_failures = 2

    service.reset_job_statistics("urlExpiration")
    assert service.job_status(URL_EXPIRATION).consecutive_failures == 0
    assert service.job_status(PASSWORD_RESET_CLEANUP).consecutive_failures == 2

    with pytest.raises(KeyError):
        service.reset_job_statistics("nope")


@pytest.mark.asyncio
async def test_health_check_warns_on_failures_and_staleness(make_service, dummy_logger, fixed_now):
    service = make_service()
    status = service.job_status(URL_EXPIRATION)
    status.consecutive_failures = 3
    status.last_execution = fixed_now - timedelta(hours=3)
    service.job_status(PASSWORD_RESET_CLEANUP).last_execution = fixed_now - timedelta(minutes=30)

    warnings = await service.perform_health_check()

    assert warnings == [
        "URL expiration job has 3 consecutive failures",
        "URL expiration job has not run in over 2 hours",
    ]
    assert set(warnings) <= set(dummy_logger.messages("WARNING"))
    assert any(m.startswith("URL Statistics: ") for m in dummy_logger.messages("INFO"))


@pytest.mark.asyncio
async def test_health_check_survives_statistics_failure(make_service, dummy_logger, fixed_now):
    service = make_service(url_store=FlakyUrlStore(now=lambda: fixed_now))
    service.job_status(PASSWORD_RESET_CLEANUP).consecutive_failures = 4

    warnings = await service.perform_health_check()

    assert warnings == ["Password reset cleanup job has 4 consecutive failures"]
    assert any(m.startswith("EXCEPTION in health_check") for m in dummy_logger.messages("ERROR"))


@pytest.mark.asyncio
async def test_url_expiration_result_uses_service_clock(make_service, fixed_now):
    later = fixed_now + timedelta(hours=1)
    service = make_service(clock=lambda: later)

    result = await service.trigger_url_expiration_job()

    assert result.timestamp == later
    assert service.job_status(URL_EXPIRATION).last_execution == later


@pytest.mark.asyncio
async def test_overlapping_timer_fire_is_logged(make_service, dummy_logger):
    service = make_service()

    service._on_timer_event(SimpleNamespace(code=EVENT_JOB_MAX_INSTANCES, job_id=URL_EXPIRATION))

    assert (
        f"Timer {URL_EXPIRATION} fired while its previous run is still active, skipping"
        in dummy_logger.messages("WARNING")
    )


@pytest.mark.asyncio
async def test_scheduler_build_failure_reports_not_started(make_service, dummy_logger, monkeypatch):
    monkeypatch.setattr(
        "shortlink_jobs.scheduler.service.build_scheduler", Mock(side_effect=RuntimeError("boom"))
    )
    service = make_service()

    assert service.start_scheduler() is False
    assert service.is_started is False
    assert service.scheduler is None
    assert "Failed to start job scheduler: boom" in dummy_logger.messages("ERROR")
