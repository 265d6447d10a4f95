"""
Change detection for fetched feed entries.

Decides which entries are newer than a feed's watermark and where the
watermark moves next.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class FeedEntry:
    """
    Normalized RSS/Atom entry.

    Attributes
    ----------
    title : str
        Entry title.
    link : str
        Entry URL.
    published_at : datetime | None
        Publication time in UTC, None if the feed gave no usable date.
    summary : str
        Entry summary, possibly containing HTML.
    raw_content : str
        Full entry content, falling back to the summary.
    """

    title: str = ""
    link: str = ""
    published_at: datetime | None = None
    summary: str = ""
    raw_content: str = ""

    @classmethod
    def from_feedparser(cls, entry: Any) -> "FeedEntry":
        """
        Create a FeedEntry from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.

        Returns
        -------
        FeedEntry
            Normalized entry instance.
        """
        summary = entry.get("summary", "") or ""

        content = summary
        if entry.get("content"):
            content = entry["content"][0].get("value", "") or summary

        # feedparser normalizes parsed dates to UTC struct_time
        published_at = None
        for key in ("published_parsed", "updated_parsed"):
            parsed = entry.get(key)
            if parsed:
                published_at = datetime(*parsed[:6], tzinfo=timezone.utc)
                break

        return cls(
            title=entry.get("title", "") or "",
            link=entry.get("link", "") or "",
            published_at=published_at,
            summary=summary,
            raw_content=content,
        )


@dataclass
class Detection:
    """
    Result of comparing fetched entries against a watermark.

    Attributes
    ----------
    entries : list[FeedEntry]
        New entries, oldest first.
    watermark : datetime | None
        Watermark after this check.
    first_observation : bool
        True if the feed had no watermark before this check.
    """

    entries: list[FeedEntry] = field(default_factory=list)
    watermark: datetime | None = None
    first_observation: bool = False


def detect_new_entries(
    entries: list[FeedEntry],
    watermark: datetime | None,
    now: datetime | None = None,
) -> Detection:
    """
    Select the entries published after the watermark.

    A feed without a watermark is being seen for the first time: nothing
    is announced and the watermark starts at the current time, so the
    existing backlog stays quiet.

    Parameters
    ----------
    entries : list[FeedEntry]
        Entries in the feed's own order.
    watermark : datetime | None
        Timestamp of the newest entry already announced.
    now : datetime | None
        Current time, defaults to the wall clock.

    Returns
    -------
    Detection
        New entries in ascending publication order and the next watermark.
    """
    if watermark is None:
        return Detection(
            watermark=now or datetime.now(timezone.utc),
            first_observation=True,
        )

    undated = sum(1 for e in entries if e.published_at is None)
    if undated:
        logger.debug("Ignoring %d entr%s without a date", undated, "y" if undated == 1 else "ies")

    new_entries = sorted(
        (e for e in entries if e.published_at is not None and e.published_at > watermark),
        key=lambda e: e.published_at,
    )

    if not new_entries:
        return Detection(watermark=watermark)

    return Detection(entries=new_entries, watermark=new_entries[-1].published_at)
