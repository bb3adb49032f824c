from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from shortlink_jobs.jobs.password_reset_cleanup import PasswordResetCleanupJob
from shortlink_jobs.repository.memory import InMemoryPasswordResetTokenStore


@pytest.mark.asyncio
async def test_execute_removes_only_expired_tokens(dummy_logger, fixed_now):
    store = InMemoryPasswordResetTokenStore(now=lambda: fixed_now)
    store.add_token("u1", "t1", fixed_now - timedelta(minutes=5))
    store.add_token("u2", "t2", fixed_now - timedelta(days=1))
    store.add_token("u3", "t3", fixed_now + timedelta(hours=1))
    job = PasswordResetCleanupJob(store, dummy_logger)

    ok = await job.execute()

    assert ok is True
    assert set(store.tokens) == {"u3"}
    stats = job.stats()
    assert stats.total_runs == 1
    assert stats.last_cleanup_count == 2
    assert stats.total_tokens_cleaned_up == 2
    assert stats.errors == 0
    assert "Password reset cleanup job completed: 2 expired tokens removed" in dummy_logger.messages("INFO")


@pytest.mark.asyncio
async def test_execute_accumulates_across_runs(dummy_logger, fixed_now):
    store = InMemoryPasswordResetTokenStore(now=lambda: fixed_now)
    store.add_token("u1", "t1", fixed_now - timedelta(minutes=5))
    job = PasswordResetCleanupJob(store, dummy_logger)

    await job.execute()
    await job.execute()

    stats = job.stats()
    assert stats.total_runs == 2
    assert stats.last_cleanup_count == 0
    assert stats.total_tokens_cleaned_up == 1
    assert "Password reset cleanup job completed: No expired tokens found" in dummy_logger.messages("DEBUG")


@pytest.mark.asyncio
async def test_execute_records_store_failures(dummy_logger):
    store = AsyncMock()
    store.cleanup_expired_password_reset_tokens.side_effect = ConnectionError("mongo down")
    job = PasswordResetCleanupJob(store, dummy_logger)

    ok = await job.execute()

    assert ok is False
    stats = job.stats()
    assert stats.errors == 1
    assert stats.last_error == "mongo down"
    assert stats.total_runs == 0
    assert "Password reset cleanup job failed: mongo down" in dummy_logger.messages("ERROR")


@pytest.mark.asyncio
async def test_stats_returns_copy_and_reset_clears(dummy_logger, fixed_now):
    store = InMemoryPasswordResetTokenStore(now=lambda: fixed_now)
    job = PasswordResetCleanupJob(store, dummy_logger)
    await job.execute()

    snapshot = job.stats()
    snapshot.total_runs = 99
    assert job.stats().total_runs == 1

    job.reset_stats()
    assert job.stats().total_runs == 0
    assert job.stats().last_run is None
