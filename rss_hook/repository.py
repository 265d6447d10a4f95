"""
Typed access to the subscription list and the processing flag.

Both live in the key/value storage as JSON-encoded strings shared
with the admin API, which writes the feed list.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rss_hook.storage import Storage

logger = logging.getLogger(__name__)

FEEDS_KEY = "feeds"
PROCESSING_KEY = "processing"

WEBHOOK_URL_MAX_LENGTH = 300


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing "Z" is accepted and naive values are taken as UTC.

    Raises
    ------
    ValueError
        If the value is not a valid ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string ending in "Z"."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class LastItem(BaseModel):
    """
    Marker of the newest entry already announced for a feed.

    Attributes
    ----------
    iso_date : str
        ISO-8601 timestamp, or an empty string when unset.
    """

    model_config = ConfigDict(populate_by_name=True)

    iso_date: str = Field(default="", alias="isoDate")

    @field_validator("iso_date")
    @classmethod
    def check_timestamp(cls, v: str) -> str:
        """Validate that a non-empty date is a parseable timestamp."""
        if v:
            parse_timestamp(v)
        return v


class FeedSubscription(BaseModel):
    """
    A feed subscription as stored by the admin API.

    Attributes
    ----------
    name : str
        Display name, also used as the webhook username.
    source_url : str
        URL of the RSS/Atom feed.
    webhook_url : str
        Discord webhook receiving the notifications.
    image_url : str
        Optional thumbnail URL; empty string when unused.
    last_item : LastItem | None
        Watermark holder; None means the feed was never polled.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(min_length=1)
    source_url: str = Field(alias="url", min_length=1)
    webhook_url: str = Field(alias="hookUrl", min_length=1, max_length=WEBHOOK_URL_MAX_LENGTH)
    image_url: str = Field(default="", alias="imageUrl")
    last_item: LastItem | None = Field(default=None, alias="lastItem")

    @property
    def watermark(self) -> datetime | None:
        """Timestamp of the newest announced entry, if any."""
        if self.last_item is None or not self.last_item.iso_date:
            return None
        return parse_timestamp(self.last_item.iso_date)

    def advance_watermark(self, value: datetime) -> bool:
        """
        Move the watermark forward to ``value``.

        The watermark never moves backwards; an older or equal value
        leaves it untouched.

        Returns
        -------
        bool
            True if the watermark changed.
        """
        current = self.watermark
        if current is not None and value <= current:
            return False
        self.last_item = LastItem(iso_date=format_timestamp(value))
        return True

    def to_record(self) -> dict[str, Any]:
        """Serialize back to the stored JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class FeedRecord:
    """
    One stored subscription, validated or quarantined.

    Attributes
    ----------
    raw : Any
        The record exactly as it was read.
    feed : FeedSubscription | None
        The validated subscription, or None if the record is malformed.
    """

    raw: Any
    feed: FeedSubscription | None = None

    def to_raw(self) -> Any:
        """Return the value to write back; malformed records are kept as read."""
        if self.feed is None:
            return self.raw
        return self.feed.to_record()


class FeedRepository:
    """Load and save the subscription list."""

    def __init__(self, storage: Storage, key: str = FEEDS_KEY):
        self.storage = storage
        self.key = key

    async def get_feeds(self) -> list[FeedRecord]:
        """
        Read and validate the stored subscription list.

        Returns
        -------
        list[FeedRecord]
            One record per stored subscription, in stored order. Empty if
            the list is absent or unreadable.
        """
        value = await self.storage.get(self.key)
        if value is None:
            return []

        try:
            data = json.loads(value)
        except json.JSONDecodeError as e:
            logger.error("Stored feed list is not valid JSON: %s", e)
            return []

        if not isinstance(data, list):
            logger.error("Stored feed list is not a list (got %s)", type(data).__name__)
            return []

        records = []
        for index, raw in enumerate(data):
            try:
                feed = FeedSubscription.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed feed #%d: %d validation error(s)",
                    index,
                    e.error_count(),
                )
                records.append(FeedRecord(raw=raw))
                continue
            records.append(FeedRecord(raw=raw, feed=feed))

        return records

    async def save_feeds(self, records: list[FeedRecord]) -> None:
        """
        Write the full subscription list in one call.

        Parameters
        ----------
        records : list[FeedRecord]
            Records as returned by get_feeds, possibly with advanced watermarks.
        """
        await self.storage.set(self.key, json.dumps([r.to_raw() for r in records]))
        logger.debug("Saved %d feed(s)", len(records))


class ProcessingLock:
    """
    Single-flight guard stored under a well-known key.

    The flag is visible to other processes sharing the storage, such as
    the admin API refusing edits while a cycle runs.
    """

    def __init__(self, storage: Storage, key: str = PROCESSING_KEY):
        self.storage = storage
        self.key = key
        self._guard = asyncio.Lock()

    async def try_acquire(self) -> bool:
        """
        Set the flag if it is absent.

        Returns
        -------
        bool
            True if the flag was absent and is now set.
        """
        async with self._guard:
            if await self.storage.get(self.key) is not None:
                return False
            await self.storage.set(self.key, "1")
            return True

    async def release(self) -> None:
        """Clear the flag unconditionally."""
        async with self._guard:
            await self.storage.delete(self.key)

    async def is_held(self) -> bool:
        """Return True if the flag is currently set."""
        return await self.storage.get(self.key) is not None
