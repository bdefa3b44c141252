"""Database management for testwarden state."""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from testwarden.persistence.repositories import (
    EvidenceRepository,
    RedFlagRepository,
    TimingHistoryRepository,
    VerificationReportRepository,
    WorkflowRepository,
)
from testwarden.persistence.schema_manager import SchemaManager

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager for evidence, red flags and workflow state.

    Supports both synchronous (sqlite3) and asynchronous (aiosqlite) operations.
    The sync connection owns schema creation; the async connection serves the
    detection/verification/workflow pipeline.

    Repositories are exposed as attributes once initialized:
        evidence, red_flags, timing, workflows, verification_reports

    Example:
        db = Database(".testwarden/state.db")
        db.initialize()

        async with db:
            flags = await db.red_flags.get_unresolved_flags("t-1", "epic-1")
        # Async connection automatically closed

    Note:
        ":memory:" is accepted for sync-only use. The sync and async connections
        would each see a separate in-memory database, so async work needs a file.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path) if db_path != ":memory:" else db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._async_conn: Optional[aiosqlite.Connection] = None
        self._async_lock = asyncio.Lock()

        self.evidence: Optional[EvidenceRepository] = None
        self.red_flags: Optional[RedFlagRepository] = None
        self.timing: Optional[TimingHistoryRepository] = None
        self.workflows: Optional[WorkflowRepository] = None
        self.verification_reports: Optional[VerificationReportRepository] = None

    def initialize(self) -> None:
        """Open the sync connection and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")

        SchemaManager(self.conn).create_schema()
        self._init_repositories()
        logger.debug(f"Database initialized at {self.db_path}")

    async def initialize_async(self) -> None:
        """Open the async connection (creating the schema first if needed).

        Protected by a lock so concurrent callers share one connection.
        """
        async with self._async_lock:
            if self.conn is None:
                self.initialize()
            if self._async_conn is None:
                self._async_conn = await aiosqlite.connect(str(self.db_path))
                self._async_conn.row_factory = aiosqlite.Row
                await self._async_conn.execute("PRAGMA foreign_keys = ON")
                self._init_repositories()
                logger.debug(f"Async connection initialized for {self.db_path}")

    def _init_repositories(self) -> None:
        kwargs = {"sync_conn": self.conn, "async_conn": self._async_conn, "database": self}
        self.evidence = EvidenceRepository(**kwargs)
        self.red_flags = RedFlagRepository(**kwargs)
        self.timing = TimingHistoryRepository(**kwargs)
        self.workflows = WorkflowRepository(**kwargs)
        self.verification_reports = VerificationReportRepository(**kwargs)

    def close(self) -> None:
        """Close database connection (sync only).

        Note: Call close_async() to close async connections.
        """
        if self.conn:
            self.conn.close()
            self.conn = None

    async def close_async(self) -> None:
        """Close async database connection."""
        if self._async_conn:
            await self._async_conn.close()
            self._async_conn = None
            if self.conn is not None:
                self._init_repositories()

    async def close_all(self) -> None:
        """Close both sync and async database connections."""
        await self.close_async()
        self.close()

    def __enter__(self) -> "Database":
        if not self.conn:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def __aenter__(self) -> "Database":
        """Async context manager entry: both connections are ready inside the block."""
        await self.initialize_async()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Closes the async connection; the sync connection stays open."""
        await self.close_async()
