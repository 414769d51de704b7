"""
Async SQLite database wrapper for the docsync document store.

This module provides a thin wrapper around aiosqlite. Driver failures are
re-raised as StoreError so callers see a single retryable error type.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Optional, List

import aiosqlite

from ..utils.errors import StoreError, error_context
from ..utils.logging import get_logger

logger = get_logger("docsync.storage.database")

_DRIVER_ERRORS = (sqlite3.Error, ValueError, OSError)


class Database:
    """Async SQLite database wrapper."""

    def __init__(
        self,
        db_path: Path | str,
        timeout: float = 30.0,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL",
    ):
        """
        Initialize database wrapper.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
            journal_mode: SQLite journal_mode pragma
            synchronous: SQLite synchronous pragma
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.synchronous = synchronous
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        if self._connection is not None:
            return

        with error_context("database", "connect", wrap=StoreError,
                           catch=_DRIVER_ERRORS, path=str(self.db_path)):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None  # Autocommit mode
            )
            await self._connection.execute(f"PRAGMA journal_mode={self.journal_mode}")
            await self._connection.execute(f"PRAGMA synchronous={self.synchronous}")

        logger.info("database_connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", path=str(self.db_path))

    async def execute(self, sql: str, parameters: tuple = ()) -> None:
        """
        Execute SQL statement.

        Args:
            sql: SQL statement
            parameters: Query parameters
        """
        async with self._lock:
            with error_context("database", "execute", wrap=StoreError, catch=_DRIVER_ERRORS):
                connection = await self._ensure_connection()
                await connection.execute(sql, parameters)

    async def executescript(self, script: str) -> None:
        async with self._lock:
            with error_context("database", "executescript", wrap=StoreError, catch=_DRIVER_ERRORS):
                connection = await self._ensure_connection()
                await connection.executescript(script)

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[tuple]:
        """
        Execute query and fetch one result.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            Single row or None
        """
        async with self._lock:
            with error_context("database", "fetchone", wrap=StoreError, catch=_DRIVER_ERRORS):
                connection = await self._ensure_connection()
                async with connection.execute(sql, parameters) as cursor:
                    return await cursor.fetchone()

    async def fetchall(self, sql: str, parameters: tuple = ()) -> List[tuple]:
        """
        Execute query and fetch all results.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            List of rows
        """
        async with self._lock:
            with error_context("database", "fetchall", wrap=StoreError, catch=_DRIVER_ERRORS):
                connection = await self._ensure_connection()
                async with connection.execute(sql, parameters) as cursor:
                    return list(await cursor.fetchall())

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreError(f"Database {self.db_path} is not connected")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
