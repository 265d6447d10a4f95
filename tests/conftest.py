"""
Shared fixtures for RSS Hook tests.

Provides common test fixtures for use across all test modules.
"""

import json
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from rss_hook.detector import FeedEntry
from rss_hook.repository import FeedRepository, FeedSubscription, ProcessingLock
from rss_hook.storage import Storage


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_rss_content(fixtures_dir: Path) -> str:
    """Return contents of sample RSS feed."""
    return (fixtures_dir / "sample_rss.xml").read_text()


@pytest.fixture
def sample_atom_content(fixtures_dir: Path) -> str:
    """Return contents of sample Atom feed."""
    return (fixtures_dir / "sample_atom.xml").read_text()


@pytest.fixture
def feed_record() -> dict[str, Any]:
    """
    Create a stored subscription as written by the admin API.

    Returns
    -------
    dict
        A subscription with a watermark.
    """
    return {
        "name": "status",
        "url": "https://example.com/feed.xml",
        "hookUrl": "https://hooks.example/abc",
        "imageUrl": "",
        "lastItem": {"isoDate": "2024-01-01T00:00:00Z"},
    }


@pytest.fixture
def subscription(feed_record: dict[str, Any]) -> FeedSubscription:
    """Create a validated subscription with a watermark."""
    return FeedSubscription.model_validate(feed_record)


@pytest.fixture
def make_entry() -> Callable[..., FeedEntry]:
    """
    Return a factory for feed entries.

    Returns
    -------
    Callable
        Builds a FeedEntry dated at the given datetime.
    """

    def factory(
        published_at: datetime | None,
        title: str = "Entry",
        summary: str = "Summary",
        raw_content: str = "Content",
    ) -> FeedEntry:
        stamp = published_at.isoformat() if published_at else "undated"
        return FeedEntry(
            title=title,
            link=f"https://example.com/entries/{stamp}",
            published_at=published_at,
            summary=summary,
            raw_content=raw_content,
        )

    return factory


@pytest_asyncio.fixture
async def in_memory_storage() -> AsyncGenerator[Storage, None]:
    """
    Create an in-memory SQLite storage for testing.

    Yields
    ------
    Storage
        An initialized in-memory storage instance.
    """
    storage = Storage(":memory:")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def repository(in_memory_storage: Storage) -> FeedRepository:
    """Create a feed repository over the in-memory storage."""
    return FeedRepository(in_memory_storage)


@pytest.fixture
def processing_lock(in_memory_storage: Storage) -> ProcessingLock:
    """Create a processing lock over the in-memory storage."""
    return ProcessingLock(in_memory_storage)


@pytest.fixture
def store_feeds(in_memory_storage: Storage) -> Callable[..., Any]:
    """Return a coroutine function writing raw records under the feeds key."""

    async def store(records: Any) -> None:
        await in_memory_storage.set("feeds", json.dumps(records))

    return store
