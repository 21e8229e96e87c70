"""
Database client.

Async wrapper around the Supabase client. Queries are built with the usual
chained interface and executed in a worker thread.
"""

import asyncio
from typing import Any, Optional

from supabase import Client, create_client

from shared.config import settings
from shared.errors import ConfigError, PersistenceError
from shared.logging import get_logger

logger = get_logger(__name__)


class AsyncTableQueryBuilder:
    """Chainable query builder whose execute() is awaitable."""

    def __init__(self, builder: Any, table_name: str):
        self._builder = builder
        self._table_name = table_name

    def _chain(self, method: str, *args: Any, **kwargs: Any) -> "AsyncTableQueryBuilder":
        self._builder = getattr(self._builder, method)(*args, **kwargs)
        return self

    def select(self, *columns: str, count: Optional[str] = None) -> "AsyncTableQueryBuilder":
        if count:
            return self._chain("select", *(columns or ("*",)), count=count)
        return self._chain("select", *(columns or ("*",)))

    def insert(self, data: Any) -> "AsyncTableQueryBuilder":
        return self._chain("insert", data)

    def update(self, data: dict) -> "AsyncTableQueryBuilder":
        return self._chain("update", data)

    def upsert(self, data: Any) -> "AsyncTableQueryBuilder":
        return self._chain("upsert", data)

    def delete(self) -> "AsyncTableQueryBuilder":
        return self._chain("delete")

    def eq(self, column: str, value: Any) -> "AsyncTableQueryBuilder":
        return self._chain("eq", column, value)

    def in_(self, column: str, values: list) -> "AsyncTableQueryBuilder":
        return self._chain("in_", column, values)

    def order(self, column: str, desc: bool = False) -> "AsyncTableQueryBuilder":
        return self._chain("order", column, desc=desc)

    def limit(self, size: int) -> "AsyncTableQueryBuilder":
        return self._chain("limit", size)

    async def execute(self) -> Any:
        """
        Execute the query.

        Raises:
            PersistenceError: If the request fails
        """
        try:
            return await asyncio.to_thread(self._builder.execute)
        except Exception as e:
            logger.error("Database query failed", exc_info=e, extra={"table": self._table_name})
            raise PersistenceError(f"Database query on {self._table_name} failed: {str(e)}") from e


class DatabaseClient:
    """Supabase database client (connection created on first use)."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        self._url = url
        self._key = key
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            if not (self._url and self._key):
                settings.require_supabase()
            url = self._url or settings.supabase_url
            key = self._key or settings.supabase_service_key
            try:
                self._client = create_client(url, key)
            except Exception as e:
                raise ConfigError(f"Failed to initialize Supabase client: {str(e)}") from e
        return self._client

    def table(self, name: str) -> AsyncTableQueryBuilder:
        """Start a query on a table."""
        return AsyncTableQueryBuilder(self.client.table(name), name)

    async def health_check(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            await self.table("composite_videos").select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.warning("Database health check failed", exc_info=e)
            return False


# Singleton instance
db = DatabaseClient()
