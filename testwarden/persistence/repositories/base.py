"""Base repository class for database operations."""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import logging

import aiosqlite

logger = logging.getLogger(__name__)


class BaseRepository:
    """Base class for all repositories.

    Provides common database utilities and connection management.
    Each repository handles one table family (evidence, red flags, workflows...).

    Supports both synchronous (sqlite3) and asynchronous (aiosqlite) operations.
    Pipeline paths (detection, verification, workflow) use the async methods;
    CLI reads and flag resolution use the sync ones.
    """

    def __init__(
        self,
        sync_conn: Optional[sqlite3.Connection] = None,
        async_conn: Optional[aiosqlite.Connection] = None,
        database: Optional[Any] = None,
    ):
        """Initialize repository with database connections.

        Args:
            sync_conn: Synchronous sqlite3.Connection
            async_conn: Asynchronous aiosqlite.Connection
            database: Reference to parent Database instance

        Raises:
            ValueError: If neither connection is provided
        """
        if sync_conn is None and async_conn is None:
            raise ValueError("At least one connection (sync or async) must be provided")

        self.conn = sync_conn
        self._async_conn = async_conn
        self._database = database

    def _execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a query synchronously.

        Raises:
            RuntimeError: If sync connection is not available
        """
        if self.conn is None:
            raise RuntimeError("Sync connection not available, use async methods")
        return self.conn.execute(query, params)

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        cursor = self._execute(query, params)
        try:
            return cursor.fetchone()
        finally:
            # Release the read lock so the async connection can write
            cursor.close()

    def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        cursor = self._execute(query, params)
        return cursor.fetchall()

    def _commit(self) -> None:
        """Commit the current transaction synchronously.

        Raises:
            RuntimeError: If sync connection is not available
        """
        if self.conn is None:
            raise RuntimeError("Sync connection not available, use async methods")
        self.conn.commit()

    async def _execute_async(self, query: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a query asynchronously.

        Raises:
            RuntimeError: If async connection is not available
        """
        if self._async_conn is None:
            raise RuntimeError("Async connection not available, use sync methods")
        return await self._async_conn.execute(query, params)

    async def _fetchone_async(self, query: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        cursor = await self._execute_async(query, params)
        try:
            return await cursor.fetchone()
        finally:
            await cursor.close()

    async def _fetchall_async(self, query: str, params: tuple = ()) -> List[aiosqlite.Row]:
        cursor = await self._execute_async(query, params)
        return await cursor.fetchall()

    async def _commit_async(self) -> None:
        """Commit the current transaction asynchronously.

        Raises:
            RuntimeError: If async connection is not available
        """
        if self._async_conn is None:
            raise RuntimeError("Async connection not available, use sync methods")
        await self._async_conn.commit()

    def _row_to_dict(self, row: Union[sqlite3.Row, aiosqlite.Row]) -> Dict[str, Any]:
        """Convert a database row to a dictionary.

        Both sqlite3.Row and aiosqlite.Row support keys() and item access.
        """
        if row is None:
            return {}
        return {key: row[key] for key in row.keys()}

    def _parse_datetime(
        self,
        dt_str: Optional[str],
        field_name: str = "",
        row_id: Optional[int] = None,
    ) -> Optional[datetime]:
        """Parse a stored datetime string into a timezone-aware datetime.

        Raises:
            ValueError: If datetime string is malformed
        """
        if dt_str is None:
            return None

        try:
            parsed = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
        except (ValueError, AttributeError) as e:
            context = f" for {field_name}" if field_name else ""
            row_context = f" (row {row_id})" if row_id else ""
            logger.warning(f"Failed to parse datetime '{dt_str}'{context}{row_context}: {e}")
            raise ValueError(f"Invalid datetime format: {dt_str}") from e

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _format_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        """Format datetime object to ISO string for database storage."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()

    def _dump_json(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value, default=str)

    def _load_json(self, value: Optional[str], default: Any = None) -> Any:
        if value is None or value == "":
            return default
        return json.loads(value)
