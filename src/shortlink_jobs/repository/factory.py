from typing import Optional, Tuple

from shortlink_jobs.configs.env_config import Env
from shortlink_jobs.repository.base import PasswordResetTokenStore, UrlStore
from shortlink_jobs.repository.memory import InMemoryPasswordResetTokenStore, InMemoryUrlStore


class StoreFactory:
    """Instantiate the storage collaborators for the configured backend.

    The factory owns any database client it opens; call :meth:`close` on
    shutdown.
    """

    def __init__(self, backend: Optional[str] = None):
        """Remember which backend to build.

        :param backend: ``mongo`` or ``memory``; defaults to ``Env.STORAGE_BACKEND``.
        """
        self.backend = (backend or Env.STORAGE_BACKEND).strip().lower()
        self._mongo = None

    def get_stores(self) -> Tuple[UrlStore, PasswordResetTokenStore]:
        """Return the URL store and password reset token store pair.

        :raises NotImplementedError: If the backend is not supported.
        """
        if self.backend == "mongo":
            from shortlink_jobs.mongo.base import MongoClient
            from shortlink_jobs.mongo.password_reset_store import MongoPasswordResetTokenStore
            from shortlink_jobs.mongo.url_store import MongoUrlStore

            if self._mongo is None:
                self._mongo = MongoClient()
            return MongoUrlStore(self._mongo), MongoPasswordResetTokenStore(self._mongo)
        elif self.backend == "memory":
            return InMemoryUrlStore(), InMemoryPasswordResetTokenStore()
        else:
            raise NotImplementedError(f"Unsupported storage backend: {self.backend}")

    def close(self) -> None:
        """Close the database client opened by :meth:`get_stores`, if any."""
        if self._mongo is not None:
            self._mongo.close()
            self._mongo = None
