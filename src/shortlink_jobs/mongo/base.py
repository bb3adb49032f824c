"""MongoDB connection helpers backed by Motor."""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from shortlink_jobs.configs.env_config import Env


class MongoClient:
    """Thin wrapper exposing the URL shortener database and its collections."""

    def __init__(self, uri: Optional[str] = None, db_name: Optional[str] = None):
        """Initialise the Motor client and select the application database.

        :param uri: Connection string; defaults to ``Env.MONGO_URI``.
        :param db_name: Database name; defaults to ``Env.MONGO_DB_NAME``.
        """

        self.client = AsyncIOMotorClient(uri or Env.MONGO_URI, tz_aware=True)
        self.DB = self.client[db_name or Env.MONGO_DB_NAME]

    @property
    def urls(self):
        return self.DB.urls

    @property
    def users(self):
        return self.DB.users

    def close(self) -> None:
        """Close the underlying Motor client."""
        self.client.close()
