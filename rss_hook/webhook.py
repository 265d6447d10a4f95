"""
Discord webhook delivery.

Sends notification payloads to a feed's webhook in ordered batches.
"""

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import aiohttp
from aiohttp_socks import ProxyConnector

from rss_hook.formatter import NotificationPayload
from rss_hook.repository import FeedSubscription

logger = logging.getLogger(__name__)

# Discord accepts at most 10 embeds per message
BATCH_SIZE = 10


class WebhookError(Exception):
    """Raised when a webhook answers with a non-success status."""

    def __init__(self, status: int, reason: str | None = None):
        super().__init__(f"{status} {reason or ''}".strip())
        self.status = status
        self.reason = reason


@dataclass
class DispatchReport:
    """
    Outcome of delivering one feed's payloads.

    Attributes
    ----------
    delivered : int
        Number of batches accepted by the webhook.
    failed : int
        Number of batches that could not be delivered.
    """

    delivered: int = 0
    failed: int = 0


def chunked(payloads: list[NotificationPayload], size: int) -> Iterator[list[NotificationPayload]]:
    """Split payloads into consecutive lists of at most ``size`` items."""
    for start in range(0, len(payloads), size):
        yield payloads[start : start + size]


class WebhookDispatcher:
    """
    Discord webhook client.

    Delivers batches one at a time so messages arrive in order and the
    destination's rate limit is respected.
    """

    def __init__(
        self,
        timeout: int = 30,
        user_agent: str = "RSS-Hook/1.0",
        proxy_url: str | None = None,
        simple_mode: bool = False,
        batch_size: int = BATCH_SIZE,
    ):
        """
        Initialize the dispatcher.

        Parameters
        ----------
        timeout : int
            HTTP request timeout in seconds.
        user_agent : str
            User-Agent header for HTTP requests.
        proxy_url : str | None
            Optional SOCKS proxy URL.
        simple_mode : bool
            Send one plain-text line per batch instead of embeds.
        batch_size : int
            Maximum number of payloads per message.
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.proxy_url = proxy_url
        self.simple_mode = simple_mode
        self.batch_size = batch_size
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            headers = {"User-Agent": self.user_agent}

            connector = None
            if self.proxy_url:
                connector = ProxyConnector.from_url(self.proxy_url)

            self._session = aiohttp.ClientSession(
                timeout=timeout, headers=headers, connector=connector
            )
        return self._session

    def build_message(
        self, feed: FeedSubscription, batch: list[NotificationPayload]
    ) -> dict[str, Any]:
        """
        Build the webhook message body for one batch.

        Parameters
        ----------
        feed : FeedSubscription
            The subscription the batch belongs to.
        batch : list[NotificationPayload]
            Between one and batch_size payloads.

        Returns
        -------
        dict[str, Any]
            JSON-serializable message body.
        """
        if self.simple_mode:
            first = batch[0]
            return {"content": f"{first.title} {first.url}".strip()}

        return {
            "allowed_mentions": {"parse": []},
            "embeds": [payload.to_embed() for payload in batch],
            "username": feed.name,
        }

    async def dispatch(
        self, feed: FeedSubscription, payloads: list[NotificationPayload]
    ) -> DispatchReport:
        """
        Deliver payloads to the feed's webhook.

        A failed batch is logged and the remaining batches are still sent.

        Parameters
        ----------
        feed : FeedSubscription
            The subscription owning the webhook.
        payloads : list[NotificationPayload]
            Payloads to deliver, in delivery order.

        Returns
        -------
        DispatchReport
            Number of delivered and failed batches.
        """
        report = DispatchReport()

        for batch in chunked(payloads, self.batch_size):
            try:
                await self._execute(feed.webhook_url, self.build_message(feed, batch))
            except (WebhookError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                report.failed += 1
                logger.error(
                    "Failed to post webhook for '%s': %s: %s",
                    feed.name,
                    batch[0].url,
                    str(e) or type(e).__name__,
                )
                continue

            report.delivered += 1
            logger.info(
                "Sent %d notification(s) for '%s'",
                len(batch),
                feed.name,
            )

        return report

    async def _execute(self, webhook_url: str, message: dict[str, Any]) -> None:
        """
        POST one message and wait for Discord to accept it.

        Raises
        ------
        WebhookError
            If the webhook answers with a non-2xx status.
        """
        session = await self._get_session()

        async with session.post(webhook_url, params={"wait": "true"}, json=message) as response:
            if not 200 <= response.status < 300:
                raise WebhookError(response.status, response.reason)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("HTTP session closed")

    async def __aenter__(self) -> "WebhookDispatcher":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
