"""Dict-backed stores for local runs and tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from shortlink_jobs.model.jobs import ExpirationCandidate
from shortlink_jobs.repository.base import PasswordResetTokenStore, UrlStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryUrlStore(UrlStore):
    """``UrlStore`` holding URL rows as plain dictionaries keyed by id."""

    def __init__(self, *, now: Callable[[], datetime] = _utcnow) -> None:
        self._now = now
        self._ids = itertools.count(1)
        self.rows: Dict[Any, Dict[str, Any]] = {}

    def add_url(
        self,
        *,
        short_code: str,
        expiry_date: Optional[datetime],
        user_id: Optional[Any] = None,
        original_url: str = "https://example.com",
        is_active: bool = True,
        url_id: Optional[Any] = None,
    ) -> Any:
        """Insert a URL row and return its id."""
        url_id = next(self._ids) if url_id is None else url_id
        self.rows[url_id] = {
            "id": url_id,
            "short_code": short_code,
            "user_id": user_id,
            "expiry_date": expiry_date,
            "original_url": original_url,
            "is_active": is_active,
            "deleted_at": None,
            "auto_expired_at": None,
            "updated_at": None,
        }
        return url_id

    def _is_candidate(self, row: Dict[str, Any], now: datetime) -> bool:
        return (
            row["expiry_date"] is not None
            and row["expiry_date"] < now
            and row["is_active"]
            and row["deleted_at"] is None
            and row["auto_expired_at"] is None
        )

    async def fetch_expired_candidates(self, limit: int, offset: int) -> List[ExpirationCandidate]:
        now = self._now()
        rows = sorted(
            (r for r in self.rows.values() if self._is_candidate(r, now)),
            key=lambda r: (r["expiry_date"], str(r["id"])),
        )
        return [
            ExpirationCandidate(
                id=r["id"],
                short_code=r["short_code"],
                user_id=r["user_id"],
                expiry_date=r["expiry_date"],
                original_url=r["original_url"],
            )
            for r in rows[offset : offset + limit]
        ]

    async def conditionally_mark_expired(self, ids: Sequence[Any]) -> int:
        now = self._now()
        affected = 0
        for url_id in ids:
            row = self.rows.get(url_id)
            if row is None or not row["is_active"] or row["deleted_at"] is not None or row["auto_expired_at"] is not None:
                continue
            row["is_active"] = False
            row["auto_expired_at"] = now
            row["updated_at"] = now
            affected += 1
        return affected

    async def fetch_aggregate_statistics(self) -> Dict[str, int]:
        now = self._now()
        live = [r for r in self.rows.values() if r["deleted_at"] is None]
        soon = now + timedelta(days=7)
        return {
            "total_urls": len(live),
            "active_urls": sum(1 for r in live if r["is_active"]),
            "inactive_urls": sum(1 for r in live if not r["is_active"]),
            "expired_urls": sum(
                1 for r in live if r["expiry_date"] is not None and r["expiry_date"] < now
            ),
            "auto_expired_urls": sum(1 for r in live if r["auto_expired_at"] is not None),
            "expiring_soon_urls": sum(
                1 for r in live if r["expiry_date"] is not None and now < r["expiry_date"] < soon
            ),
        }

    async def cleanup_old_expired_records(self, days_old: int = 90) -> int:
        now = self._now()
        cutoff = now - timedelta(days=days_old)
        cleaned = 0
        for row in self.rows.values():
            if row["deleted_at"] is None and row["auto_expired_at"] is not None and row["auto_expired_at"] < cutoff:
                row["deleted_at"] = now
                cleaned += 1
        return cleaned


class InMemoryPasswordResetTokenStore(PasswordResetTokenStore):
    """Token store keeping ``user_id -> (token, expires_at)`` pairs."""

    def __init__(self, *, now: Callable[[], datetime] = _utcnow) -> None:
        self._now = now
        self.tokens: Dict[Any, Dict[str, Any]] = {}

    def add_token(self, user_id: Any, token: str, expires_at: datetime) -> None:
        self.tokens[user_id] = {"token": token, "expires_at": expires_at}

    async def cleanup_expired_password_reset_tokens(self) -> int:
        now = self._now()
        expired = [uid for uid, t in self.tokens.items() if t["expires_at"] < now]
        for uid in expired:
            del self.tokens[uid]
        return len(expired)
