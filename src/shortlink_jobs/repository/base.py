from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from shortlink_jobs.model.jobs import ExpirationCandidate


class UrlStore(ABC):
    """Storage surface the URL expiration job works against."""

    @abstractmethod
    async def fetch_expired_candidates(self, limit: int, offset: int) -> List[ExpirationCandidate]:
        """Return active, undeleted URLs past their expiry date, oldest expiry first."""
        raise NotImplementedError

    @abstractmethod
    async def conditionally_mark_expired(self, ids: Sequence[Any]) -> int:
        """Deactivate the given URLs if they are still active; return the affected count."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_aggregate_statistics(self) -> Dict[str, int]:
        """Return URL counts grouped by lifecycle state."""
        raise NotImplementedError

    @abstractmethod
    async def cleanup_old_expired_records(self, days_old: int = 90) -> int:
        """Soft-delete URLs auto-expired more than ``days_old`` days ago."""
        raise NotImplementedError


class PasswordResetTokenStore(ABC):
    """Storage surface the password reset cleanup job works against."""

    @abstractmethod
    async def cleanup_expired_password_reset_tokens(self) -> int:
        """Clear reset tokens whose expiry has passed; return how many were removed."""
        raise NotImplementedError
