"""Motor-backed URL storage used by the expiration job."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Sequence

from pymongo import ASCENDING

from shortlink_jobs.model.jobs import ExpirationCandidate
from shortlink_jobs.mongo.base import MongoClient
from shortlink_jobs.repository.base import UrlStore

_PROJECTION = {
    "_id": 1,
    "short_code": 1,
    "user_id": 1,
    "expiry_date": 1,
    "original_url": 1,
}


class MongoUrlStore(UrlStore):
    """``UrlStore`` over the ``urls`` collection.

    Documents carry ``is_active``, ``expiry_date``, ``deleted_at`` and
    ``auto_expired_at``; a URL is a candidate while it is active, undeleted,
    past ``expiry_date`` and not yet stamped with ``auto_expired_at``.
    """

    def __init__(self, mongo: MongoClient, *, now: Callable[[], datetime] | None = None):
        """Bind the store to a Mongo client.

        :param mongo: Client exposing the ``urls`` collection.
        :param now: Clock override, mainly for tests.
        """
        self._col = mongo.urls
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _candidate_filter(self, now: datetime) -> Dict[str, Any]:
        return {
            "expiry_date": {"$lt": now},
            "is_active": True,
            "deleted_at": None,
            "auto_expired_at": None,
        }

    async def fetch_expired_candidates(self, limit: int, offset: int) -> List[ExpirationCandidate]:
        cursor = (
            self._col.find(self._candidate_filter(self._now()), _PROJECTION)
            .sort([("expiry_date", ASCENDING), ("_id", ASCENDING)])
            .skip(offset)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [
            ExpirationCandidate(
                id=doc["_id"],
                short_code=doc.get("short_code", ""),
                user_id=doc.get("user_id"),
                expiry_date=doc["expiry_date"],
                original_url=doc.get("original_url", ""),
            )
            for doc in docs
        ]

    async def conditionally_mark_expired(self, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        now = self._now()
        res = await self._col.update_many(
            {"_id": {"$in": list(ids)}, "is_active": True, "deleted_at": None, "auto_expired_at": None},
            {"$set": {"is_active": False, "auto_expired_at": now, "updated_at": now}},
        )
        return res.modified_count

    async def fetch_aggregate_statistics(self) -> Dict[str, int]:
        now = self._now()
        live = {"deleted_at": None}
        filters = {
            "total_urls": live,
            "active_urls": {**live, "is_active": True},
            "inactive_urls": {**live, "is_active": False},
            "expired_urls": {**live, "expiry_date": {"$ne": None, "$lt": now}},
            "auto_expired_urls": {**live, "auto_expired_at": {"$ne": None}},
            "expiring_soon_urls": {
                **live,
                "expiry_date": {"$gt": now, "$lt": now + timedelta(days=7)},
            },
        }
        counts = await asyncio.gather(*(self._col.count_documents(f) for f in filters.values()))
        return dict(zip(filters.keys(), counts))

    async def cleanup_old_expired_records(self, days_old: int = 90) -> int:
        now = self._now()
        res = await self._col.update_many(
            {"auto_expired_at": {"$lt": now - timedelta(days=days_old)}, "deleted_at": None},
            {"$set": {"deleted_at": now}},
        )
        return res.modified_count
