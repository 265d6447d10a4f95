"""
Discord embed formatting for feed entries.

Maps feed entries to notification payloads without any network access.
"""

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from rss_hook.detector import FeedEntry
from rss_hook.repository import FeedSubscription, format_timestamp

logger = logging.getLogger(__name__)

# Below Discord's embed limits (256 title, 4096 description)
TITLE_MAX_LENGTH = 250
DESCRIPTION_MAX_LENGTH = 4000
ELLIPSIS = "..."

RESOLVED_MARKER = "resolved"
RESOLVED_COLOR = 0x69FFC3  # green
PENDING_COLOR = 0xFFCA5F  # yellow

BOLD_PATTERN = re.compile(r"<(strong|b)>(.*?)</\1>", re.IGNORECASE | re.DOTALL)
SMALL_PATTERN = re.compile(r"<small>(.*?)</small>", re.IGNORECASE | re.DOTALL)
BREAK_PATTERN = re.compile(r"<br\s*/?>|</(p|div|li)>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]+>")


@dataclass
class NotificationPayload:
    """
    One Discord embed.

    Attributes
    ----------
    title : str
        Truncated entry title.
    description : str
        Converted and truncated entry summary.
    url : str
        Entry link.
    timestamp : datetime
        Entry publication time.
    color : int
        Embed colour as 0xRRGGBB.
    thumbnail_url : str | None
        Feed image, if the subscription has one.
    """

    title: str
    description: str
    url: str
    timestamp: datetime
    color: int
    thumbnail_url: str | None = None

    def to_embed(self) -> dict[str, Any]:
        """Return the Discord embed object."""
        embed: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "timestamp": format_timestamp(self.timestamp),
            "color": self.color,
        }
        if self.thumbnail_url:
            embed["thumbnail"] = {"url": self.thumbnail_url}
        return embed


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length characters, appending an ellipsis if cut."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def html_to_markdown(content: str) -> str:
    """
    Convert the inline tags found in status feeds to Discord markup.

    Bold tags become **text** and small tags become _text_. Line and
    paragraph breaks become newlines, every other tag is removed and
    entities are decoded.
    """
    content = BOLD_PATTERN.sub(r"**\2**", content)
    content = SMALL_PATTERN.sub(r"_\1_", content)
    content = BREAK_PATTERN.sub("\n", content)
    text = html.unescape(TAG_PATTERN.sub("", content))
    # Normalize whitespace, keeping single line breaks
    text = re.sub(r"[^\S\n]+", " ", text)
    text = re.sub(r" ?\n\s*", "\n", text)
    return text.strip()


def get_color(content: str) -> int:
    """Pick the embed colour from the entry content."""
    if RESOLVED_MARKER in content.lower():
        return RESOLVED_COLOR
    return PENDING_COLOR


def format_entry(entry: FeedEntry, feed: FeedSubscription) -> NotificationPayload:
    """
    Build the notification payload for one entry.

    Parameters
    ----------
    entry : FeedEntry
        A dated feed entry.
    feed : FeedSubscription
        The subscription the entry belongs to.

    Returns
    -------
    NotificationPayload
        The formatted payload.

    Raises
    ------
    ValueError
        If the entry has no publication date.
    """
    if entry.published_at is None:
        raise ValueError("Entry has no publication date")

    return NotificationPayload(
        title=truncate(entry.title, TITLE_MAX_LENGTH),
        description=truncate(html_to_markdown(entry.summary), DESCRIPTION_MAX_LENGTH),
        url=entry.link,
        timestamp=entry.published_at,
        color=get_color(entry.raw_content),
        thumbnail_url=feed.image_url or None,
    )


def format_entries(
    entries: list[FeedEntry], feed: FeedSubscription
) -> list[NotificationPayload]:
    """
    Format entries in order, dropping any entry that fails to format.

    Parameters
    ----------
    entries : list[FeedEntry]
        Entries to announce, oldest first.
    feed : FeedSubscription
        The subscription the entries belong to.

    Returns
    -------
    list[NotificationPayload]
        Payloads in the same order as the entries.
    """
    payloads = []
    for entry in entries:
        try:
            payloads.append(format_entry(entry, feed))
        except Exception as e:
            logger.warning(
                "Skipping entry '%s' in feed '%s': %s",
                str(entry.title)[:50],
                feed.name,
                e,
            )
    return payloads
