from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from shortlink_jobs.model.jobs import ExpirationCandidate
from shortlink_jobs.repository.base import UrlStore


class DummyLogger:
    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def _log(self, level: str, msg: Any) -> None:
        self.records.append((level, str(msg)))

    def trace(self, msg: Any) -> None:
        self._log("TRACE", msg)

    def debug(self, msg: Any) -> None:
        self._log("DEBUG", msg)

    def info(self, msg: Any) -> None:
        self._log("INFO", msg)

    def warning(self, msg: Any) -> None:
        self._log("WARNING", msg)

    def error(self, msg: Any) -> None:
        self._log("ERROR", msg)

    def critical(self, msg: Any) -> None:
        self._log("CRITICAL", msg)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for lvl, m in self.records if level is None or lvl == level]


class SnapshotUrlStore(UrlStore):
    """Serves a fixed list of candidates by offset, like a snapshot read.

    ``fail_updates`` / ``fail_fetches`` map an offset (or ``"*"``) to the
    number of calls that should raise before succeeding; ``-1`` fails forever.
    """

    def __init__(
        self,
        candidates: Sequence[ExpirationCandidate],
        *,
        fail_updates: Optional[Dict[Any, int]] = None,
        fail_fetches: Optional[Dict[Any, int]] = None,
        affected: Optional[Dict[int, int]] = None,
    ) -> None:
        self.candidates = list(candidates)
        self.fail_updates = dict(fail_updates or {})
        self.fail_fetches = dict(fail_fetches or {})
        self.affected = dict(affected or {})
        self.fetch_calls: List[Tuple[int, int]] = []
        self.update_calls: List[List[Any]] = []
        self.statistics: Dict[str, int] = {"total_urls": len(self.candidates)}
        self._last_offset = 0

    def _should_fail(self, table: Dict[Any, int], offset: int) -> bool:
        key = offset if offset in table else "*" if "*" in table else None
        if key is None:
            return False
        remaining = table[key]
        if remaining == 0:
            return False
        if remaining > 0:
            table[key] = remaining - 1
        return True

    async def fetch_expired_candidates(self, limit, offset):
        self.fetch_calls.append((limit, offset))
        self._last_offset = offset
        if self._should_fail(self.fail_fetches, offset):
            raise ConnectionError(f"fetch failed at {offset}")
        return self.candidates[offset : offset + limit]

    async def conditionally_mark_expired(self, ids):
        self.update_calls.append(list(ids))
        if self._should_fail(self.fail_updates, self._last_offset):
            raise ConnectionError("connection reset")
        return self.affected.get(self._last_offset, len(ids))

    async def fetch_aggregate_statistics(self):
        return dict(self.statistics)

    async def cleanup_old_expired_records(self, days_old=90):
        return 0


def make_candidates(count: int, *, start: Optional[datetime] = None) -> List[ExpirationCandidate]:
    start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        ExpirationCandidate(
            id=f"url-{i}",
            short_code=f"c{i:05d}",
            user_id=None if i % 2 else f"user-{i % 7}",
            expiry_date=start + timedelta(minutes=i),
            original_url=f"https://example.com/{i}",
        )
        for i in range(count)
    ]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def dummy_logger() -> DummyLogger:
    return DummyLogger()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
