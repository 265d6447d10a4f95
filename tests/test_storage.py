"""
Unit tests for the storage module.

Tests cover async SQLite key/value operations and connection lifecycle.
"""

from pathlib import Path

import pytest

from rss_hook.storage import Storage


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_creates_db_file(self, tmp_path: Path) -> None:
        """Test that initialize creates the database file."""
        db_path = tmp_path / "data" / "test.db"
        storage = Storage(db_path)

        await storage.initialize()

        assert db_path.exists()
        await storage.close()

    async def test_creates_parent_directories(self, tmp_path: Path) -> None:
        """Test that initialize creates parent directories."""
        db_path = tmp_path / "nested" / "deep" / "test.db"
        storage = Storage(db_path)

        await storage.initialize()

        assert db_path.parent.exists()
        await storage.close()

    async def test_creates_table(self, in_memory_storage: Storage) -> None:
        """Test that initialize creates the kv_store table."""
        cursor = await in_memory_storage._connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='kv_store'"
        )
        result = await cursor.fetchone()
        assert result is not None


class TestStorageKeyValue:
    """Tests for get/set/delete."""

    async def test_get_absent_returns_none(self, in_memory_storage: Storage) -> None:
        """Test get returns None for unknown keys."""
        assert await in_memory_storage.get("missing") is None

    async def test_set_then_get(self, in_memory_storage: Storage) -> None:
        """Test a stored value can be read back."""
        await in_memory_storage.set("feeds", "[]")

        assert await in_memory_storage.get("feeds") == "[]"

    async def test_set_overwrites(self, in_memory_storage: Storage) -> None:
        """Test set replaces the previous value."""
        await in_memory_storage.set("key", "first")
        await in_memory_storage.set("key", "second")

        assert await in_memory_storage.get("key") == "second"

        cursor = await in_memory_storage._connection.execute("SELECT COUNT(*) FROM kv_store")
        assert (await cursor.fetchone())[0] == 1

    async def test_delete(self, in_memory_storage: Storage) -> None:
        """Test delete removes the key."""
        await in_memory_storage.set("processing", "1")

        await in_memory_storage.delete("processing")

        assert await in_memory_storage.get("processing") is None

    async def test_delete_absent_is_noop(self, in_memory_storage: Storage) -> None:
        """Test deleting a missing key does not raise."""
        await in_memory_storage.delete("missing")

        assert await in_memory_storage.get("missing") is None

    async def test_persists_across_connections(self, tmp_path: Path) -> None:
        """Test values survive closing and reopening the database."""
        db_path = tmp_path / "state.db"

        async with Storage(db_path) as storage:
            await storage.set("feeds", '[{"name": "a"}]')

        async with Storage(db_path) as storage:
            assert await storage.get("feeds") == '[{"name": "a"}]'


class TestStorageNotInitialized:
    """Tests for operations on uninitialized storage."""

    async def test_get_raises_runtime_error(self) -> None:
        """Test get raises RuntimeError when not initialized."""
        storage = Storage(":memory:")

        with pytest.raises(RuntimeError, match="Database not initialized"):
            await storage.get("key")

    async def test_set_raises_runtime_error(self) -> None:
        """Test set raises RuntimeError when not initialized."""
        storage = Storage(":memory:")

        with pytest.raises(RuntimeError, match="Database not initialized"):
            await storage.set("key", "value")

    async def test_delete_raises_runtime_error(self) -> None:
        """Test delete raises RuntimeError when not initialized."""
        storage = Storage(":memory:")

        with pytest.raises(RuntimeError, match="Database not initialized"):
            await storage.delete("key")


class TestStorageContextManager:
    """Tests for async context manager support."""

    async def test_context_manager_closes(self) -> None:
        """Test async context manager closes storage on exit."""
        storage = Storage(":memory:")
        async with storage:
            await storage.set("key", "value")

        assert storage._connection is None

    async def test_close_idempotent(self, in_memory_storage: Storage) -> None:
        """Test close can be called multiple times safely."""
        await in_memory_storage.close()
        await in_memory_storage.close()

        assert in_memory_storage._connection is None
