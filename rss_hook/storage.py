"""
SQLite key/value storage for RSS Hook state.

Provides async get/set/delete of opaque string values so the feed
list and the processing flag survive restarts.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


class Storage:
    """
    Async SQLite key/value store.

    Values are opaque strings; callers encode their own structure.
    """

    def __init__(self, database_path: str | Path):
        """
        Initialize storage with database path.

        Parameters
        ----------
        database_path : str | Path
            Path to the SQLite database file, or ":memory:".
        """
        self.database_path = Path(database_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Initialize the database connection and create tables.

        Creates the database file and parent directories if they don't exist.
        """
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Initializing database at %s", self.database_path)

        self._connection = await aiosqlite.connect(self.database_path)
        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._connection.commit()
        logger.debug("Database tables created/verified")

    async def get(self, key: str) -> str | None:
        """
        Read the value stored under a key.

        Parameters
        ----------
        key : str
            Key to look up.

        Returns
        -------
        str | None
            The stored value, or None if the key is absent.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        cursor = await self._connection.execute(
            "SELECT value FROM kv_store WHERE key = ?",
            (key,),
        )
        result = await cursor.fetchone()
        return result[0] if result else None

    async def set(self, key: str, value: str) -> None:
        """
        Store a value under a key, replacing any previous value.

        Parameters
        ----------
        key : str
            Key to write.
        value : str
            Value to store.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        now = datetime.now(timezone.utc).isoformat()

        await self._connection.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, now),
        )
        await self._connection.commit()
        logger.debug("Stored key: %s", key)

    async def delete(self, key: str) -> None:
        """
        Remove a key. Deleting an absent key is a no-op.

        Parameters
        ----------
        key : str
            Key to remove.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await self._connection.commit()
        logger.debug("Deleted key: %s", key)

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def __aenter__(self) -> "Storage":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
