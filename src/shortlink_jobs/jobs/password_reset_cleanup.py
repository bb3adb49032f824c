"""Job that removes expired password reset tokens."""

from dataclasses import replace

from shortlink_jobs.model.jobs import CleanupJobStats, utcnow
from shortlink_jobs.repository.base import PasswordResetTokenStore
from shortlink_jobs.utils.logger.logger import Logger


class PasswordResetCleanupJob:
    """Single-shot token cleanup with cumulative run statistics."""

    def __init__(self, store: PasswordResetTokenStore, logger: Logger) -> None:
        self._store = store
        self._logger = logger
        self._stats = CleanupJobStats()

    async def execute(self) -> bool:
        """Run one cleanup pass.

        Failures are recorded in the statistics and logged, never raised.

        :return: ``True`` when the store call succeeded.
        """
        try:
            self._logger.info("Starting password reset token cleanup job...")
            cleaned = await self._store.cleanup_expired_password_reset_tokens()

            self._stats.last_run = utcnow()
            self._stats.total_runs += 1
            self._stats.last_cleanup_count = cleaned
            self._stats.total_tokens_cleaned_up += cleaned

            if cleaned > 0:
                self._logger.info(f"Password reset cleanup job completed: {cleaned} expired tokens removed")
            else:
                self._logger.debug("Password reset cleanup job completed: No expired tokens found")
            return True
        except Exception as exc:
            self._stats.errors += 1
            self._stats.last_error = str(exc)
            self._logger.error(f"Password reset cleanup job failed: {exc}")
            return False

    def stats(self) -> CleanupJobStats:
        """Return a copy of the current statistics."""
        return replace(self._stats)

    def reset_stats(self) -> None:
        self._stats = CleanupJobStats()
        self._logger.info("Password reset cleanup job statistics reset")
