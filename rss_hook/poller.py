"""
Polling cycle for RSS Hook.

One cycle takes the processing lock, checks every subscription for
new entries, posts them to the webhooks and saves the advanced
watermarks before releasing the lock.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from rss_hook.detector import detect_new_entries
from rss_hook.formatter import format_entries
from rss_hook.repository import FeedRepository, FeedSubscription, ProcessingLock
from rss_hook.rss_parser import FeedFetchError, FeedParser
from rss_hook.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


class FeedOutcome(str, Enum):
    """What happened to one feed during a cycle."""

    NEW_FEED = "new_feed"
    UP_TO_DATE = "up_to_date"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    FETCH_FAILED = "fetch_failed"
    INVALID = "invalid"
    ERROR = "error"


# Whether the feed's watermark moves forward for each outcome. Watermarks
# follow detection, not delivery: a failed batch is not announced again.
ADVANCES_WATERMARK: dict[FeedOutcome, bool] = {
    FeedOutcome.NEW_FEED: True,
    FeedOutcome.UP_TO_DATE: False,
    FeedOutcome.DELIVERED: True,
    FeedOutcome.DELIVERY_FAILED: True,
    FeedOutcome.FETCH_FAILED: False,
    FeedOutcome.INVALID: False,
    FeedOutcome.ERROR: False,
}


@dataclass
class CycleReport:
    """
    Summary of one polling cycle.

    Attributes
    ----------
    skipped : bool
        True if another cycle held the lock.
    outcomes : list[tuple[str, FeedOutcome]]
        Feed name and outcome, in stored order.
    notifications : int
        Number of payloads handed to the webhooks.
    """

    skipped: bool = False
    outcomes: list[tuple[str, FeedOutcome]] = field(default_factory=list)
    notifications: int = 0


class FeedPoller:
    """
    Runs polling cycles over the stored subscriptions.

    Feeds are processed one at a time; a failure in one feed is logged
    and the cycle moves on to the next.
    """

    def __init__(
        self,
        repository: FeedRepository,
        lock: ProcessingLock,
        parser: FeedParser,
        dispatcher: WebhookDispatcher,
    ):
        self.repository = repository
        self.lock = lock
        self.parser = parser
        self.dispatcher = dispatcher

    async def run_cycle(self) -> CycleReport:
        """
        Run one polling cycle.

        The lock is released on every exit path. Storage errors abort the
        cycle and propagate to the caller.

        Returns
        -------
        CycleReport
            What the cycle did.
        """
        if not await self.lock.try_acquire():
            logger.info("Still processing, skipping cycle")
            return CycleReport(skipped=True)

        logger.info("Starting processing")
        report = CycleReport()
        try:
            records = await self.repository.get_feeds()
            if not records:
                logger.info("No feeds found")
                return report

            for index, record in enumerate(records):
                if record.feed is None:
                    report.outcomes.append((f"#{index}", FeedOutcome.INVALID))
                    continue

                feed = record.feed
                try:
                    outcome, sent = await self._process_feed(feed)
                except Exception:
                    logger.exception("Error processing feed '%s'", feed.name)
                    outcome, sent = FeedOutcome.ERROR, 0

                report.outcomes.append((feed.name, outcome))
                report.notifications += sent

            await self.repository.save_feeds(records)
        finally:
            await self.lock.release()
            logger.info("Ended processing")

        return report

    async def _process_feed(self, feed: FeedSubscription) -> tuple[FeedOutcome, int]:
        """
        Check one feed and announce its new entries.

        Parameters
        ----------
        feed : FeedSubscription
            The subscription to check; its watermark is updated in place.

        Returns
        -------
        tuple[FeedOutcome, int]
            The outcome and the number of payloads sent to the webhook.
        """
        logger.debug("Checking feed: %s", feed.name)

        try:
            entries = await self.parser.fetch_feed(feed.source_url, feed.name)
        except FeedFetchError as e:
            logger.warning("Failed to fetch feed '%s': %s", feed.name, e)
            return FeedOutcome.FETCH_FAILED, 0

        detection = detect_new_entries(entries, feed.watermark, datetime.now(timezone.utc))

        sent = 0
        if detection.first_observation:
            logger.info("New feed '%s', skipping existing entries", feed.name)
            outcome = FeedOutcome.NEW_FEED
        elif not detection.entries:
            logger.debug("No new entries in feed '%s'", feed.name)
            return FeedOutcome.UP_TO_DATE, 0
        else:
            logger.info(
                "Found %d new entr%s in '%s'",
                len(detection.entries),
                "y" if len(detection.entries) == 1 else "ies",
                feed.name,
            )
            payloads = format_entries(detection.entries, feed)
            dispatch = await self.dispatcher.dispatch(feed, payloads)
            sent = len(payloads)
            outcome = FeedOutcome.DELIVERY_FAILED if dispatch.failed else FeedOutcome.DELIVERED

        if ADVANCES_WATERMARK[outcome] and detection.watermark is not None:
            feed.advance_watermark(detection.watermark)

        return outcome, sent
