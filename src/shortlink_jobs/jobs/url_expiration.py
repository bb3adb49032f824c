"""Job that flips expired short URLs to inactive in bounded batches."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Sequence

from shortlink_jobs.model.jobs import ExpirationCandidate, ExpirationConfig, JobResult, utcnow
from shortlink_jobs.repository.base import UrlStore
from shortlink_jobs.utils.logger.logger import Logger
from shortlink_jobs.utils.logger_factory import log_exception
from shortlink_jobs.utils.misc import time_ms
from shortlink_jobs.utils.retry import RetryExhaustedError, RetryPolicy, SleepFn, retry_async


DEFAULT_CONFIG = ExpirationConfig()


@dataclass(frozen=True)
class BatchResult:
    processed_count: int
    expired_count: int


async def run(
    *,
    store: UrlStore,
    logger: Logger,
    config: ExpirationConfig = DEFAULT_CONFIG,
    sleep: SleepFn = asyncio.sleep,
    clock: Callable[[], datetime] = utcnow,
) -> JobResult:
    """Expire every URL whose expiry date has passed, one page at a time.

    Pages are fetched oldest expiry first. Each page (fetch, conditional
    update, audit log) is retried as a unit under a fixed-delay policy. A page
    that keeps failing is skipped; the scan only moves past it when some rows
    were already processed during this run.

    Besides an empty page and an unexpected error, the scan has a third stop
    condition: ``config.max_consecutive_skipped_batches`` skipped pages in a
    row end it, leaving any later pages to the next run.

    The run counts as successful when no page failed, or when at least one
    URL was expired despite failures.

    :param store: Storage collaborator holding the URLs.
    :param logger: Injected logger instance.
    :param config: Paging and retry settings.
    :param sleep: Awaitable sleep used between page attempts.
    :param clock: Source of the result timestamp.
    :return: Result describing the run.
    """
    started = time_ms()
    timestamp = clock()
    policy = RetryPolicy(max_attempts=config.max_retries, delay_ms=config.retry_delay_ms)

    errors: List[str] = []
    total_processed = 0
    total_expired = 0
    success = False

    logger.info("Starting URL expiration job")

    try:
        offset = 0
        skipped_in_row = 0

        while True:
            try:
                batch = await retry_async(
                    partial(_process_batch, store, config.batch_size, offset, logger),
                    policy,
                    sleep=sleep,
                    on_failure=partial(_log_batch_failure, logger, policy),
                )
            except RetryExhaustedError as exc:
                logger.error(
                    f"Batch processing failed after {exc.attempts} attempts, skipping batch at offset {offset}"
                )
                errors.append(f"Batch {offset}: {exc.last_error}")
                offset += config.batch_size
                skipped_in_row += 1
                if total_processed == 0:
                    break
                if skipped_in_row >= config.max_consecutive_skipped_batches:
                    logger.error(f"{skipped_in_row} consecutive batches skipped, stopping scan")
                    break
                continue

            skipped_in_row = 0
            total_processed += batch.processed_count
            total_expired += batch.expired_count

            if batch.processed_count == 0:
                break
            offset += config.batch_size

        success = not errors or total_expired > 0
        logger.info(
            f"URL expiration job completed: {total_expired} URLs expired out of "
            f"{total_processed} processed in {int(time_ms() - started)}ms"
        )
    except Exception as exc:
        log_exception(logger, exc, context="url_expiration")
        errors.append(str(exc))
        success = False

    return JobResult(
        success=success,
        processed_count=total_processed,
        expired_count=total_expired,
        errors=tuple(errors),
        execution_time_ms=max(0, int(time_ms() - started)),
        timestamp=timestamp,
    )


async def get_job_statistics(*, store: UrlStore, logger: Logger) -> Dict[str, int]:
    """Return URL lifecycle counts for monitoring.

    :raises Exception: Re-raises storage errors after logging them.
    """
    try:
        return await store.fetch_aggregate_statistics()
    except Exception as exc:
        logger.error(f"Error getting job statistics: {exc}")
        raise


async def cleanup_old_expired_records(*, store: UrlStore, logger: Logger, days_old: int = 90) -> int:
    """Soft-delete URLs that were auto-expired more than ``days_old`` days ago.

    :return: Number of records cleaned up.
    :raises ValueError: If ``days_old`` is not positive.
    """
    if days_old <= 0:
        raise ValueError("days_old must be greater than 0")
    try:
        cleaned = await store.cleanup_old_expired_records(days_old)
    except Exception as exc:
        logger.error(f"Error cleaning up old expired records: {exc}")
        raise
    if cleaned > 0:
        logger.info(f"Cleaned up {cleaned} old expired URL records (older than {days_old} days)")
    return cleaned

#################### Private Function ############################

async def _process_batch(store: UrlStore, batch_size: int, offset: int, logger: Logger) -> BatchResult:
    logger.info(f"Processing URL expiration batch: offset {offset}, limit {batch_size}")

    candidates = await store.fetch_expired_candidates(batch_size, offset)
    if not candidates:
        logger.info("No more expired URLs to process")
        return BatchResult(processed_count=0, expired_count=0)

    # affected rows, not fetched rows: a URL may have changed since the fetch
    updated = await store.conditionally_mark_expired([c.id for c in candidates])
    _log_expiration_events(candidates, updated, logger)

    return BatchResult(processed_count=len(candidates), expired_count=updated)


def _log_expiration_events(candidates: Sequence[ExpirationCandidate], updated: int, logger: Logger) -> None:
    logger.info(
        f"URL Expiration Job: Processed {len(candidates)} expired URLs, updated {updated} records"
    )

    user_stats: Dict[str, int] = {}
    for url in candidates:
        user = _user_key(url.user_id)
        logger.info(
            f"URL expired: {url.short_code} (ID: {url.id}, User: {user}, Expiry: {url.expiry_date.isoformat()})"
        )
        user_stats[user] = user_stats.get(user, 0) + 1

    logger.info(f"URL Expiration Summary: {json.dumps(user_stats, sort_keys=True)}")


def _user_key(user_id: Any) -> str:
    return "anonymous" if user_id in (None, "") else str(user_id)


def _log_batch_failure(logger: Logger, policy: RetryPolicy, attempt: int, exc: Exception) -> None:
    logger.warning(f"Batch processing failed (attempt {attempt}/{policy.max_attempts}): {exc}")
    if attempt < policy.max_attempts:
        logger.info(f"Retrying batch in {policy.delay_ms}ms...")
