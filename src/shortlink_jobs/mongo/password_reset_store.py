"""Motor-backed password reset token cleanup."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from shortlink_jobs.mongo.base import MongoClient
from shortlink_jobs.repository.base import PasswordResetTokenStore


class MongoPasswordResetTokenStore(PasswordResetTokenStore):
    """Clears ``password_reset_token`` fields on ``users`` once they expire."""

    def __init__(self, mongo: MongoClient, *, now: Callable[[], datetime] | None = None):
        self._col = mongo.users
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def cleanup_expired_password_reset_tokens(self) -> int:
        res = await self._col.update_many(
            {
                "password_reset_token": {"$ne": None},
                "password_reset_expires_at": {"$lt": self._now()},
            },
            {"$unset": {"password_reset_token": "", "password_reset_expires_at": ""}},
        )
        return res.modified_count
