"""
Main entry point for RSS Hook.

Wires the components together and fires a polling cycle on a fixed
interval until stopped.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs

from rss_hook.config import AppConfig, load_config
from rss_hook.poller import CycleReport, FeedPoller
from rss_hook.repository import FeedRepository, ProcessingLock
from rss_hook.rss_parser import FeedParser
from rss_hook.storage import Storage
from rss_hook.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


class RSSHook:
    """
    Main RSS Hook application.

    Owns the storage, HTTP clients and the polling timer.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize the application.

        Parameters
        ----------
        config : AppConfig
            Validated application configuration.
        """
        self.config = config
        self.storage: Storage | None = None
        self.parser: FeedParser | None = None
        self.dispatcher: WebhookDispatcher | None = None
        self.poller: FeedPoller | None = None
        self._running = False
        self._cycles: set[asyncio.Task] = set()

    async def setup(self) -> None:
        """Create the components and clear a processing flag left by a crash."""
        self.storage = Storage(self.config.storage.database_path)
        await self.storage.initialize()

        defaults = self.config.defaults
        if defaults.proxy:
            logger.info("Using proxy: %s", redact_proxy_url(defaults.proxy))

        self.parser = FeedParser(
            timeout=defaults.request_timeout,
            max_retries=defaults.max_retries,
            user_agent=defaults.user_agent,
            proxy_url=defaults.proxy,
        )
        self.dispatcher = WebhookDispatcher(
            timeout=defaults.request_timeout,
            user_agent=defaults.user_agent,
            proxy_url=defaults.proxy,
            simple_mode=self.config.simple_mode,
        )

        lock = ProcessingLock(self.storage)
        self.poller = FeedPoller(FeedRepository(self.storage), lock, self.parser, self.dispatcher)

        await lock.release()

    async def start(self) -> None:
        """Start the polling timer and run until stopped."""
        logger.info("Starting RSS Hook")
        await self.setup()

        interval = self.config.interval * 60
        self._running = True
        logger.info("Polling feeds every %d minute(s)", self.config.interval)

        try:
            while self._running:
                await asyncio.sleep(interval)
                if not self._running:
                    break
                task = asyncio.create_task(self.run_cycle())
                self._cycles.add(task)
                task.add_done_callback(self._cycles.discard)
        except asyncio.CancelledError:
            logger.info("Polling timer cancelled")

    async def run_cycle(self) -> CycleReport | None:
        """
        Run one polling cycle, logging instead of raising on failure.

        Returns
        -------
        CycleReport | None
            The cycle report, or None if the cycle failed.
        """
        if not self.poller:
            raise RuntimeError("Components not initialized")

        try:
            report = await self.poller.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error processing feeds: %s", e)
            return None

        if not report.skipped:
            logger.info(
                "Cycle complete: %d feed(s) checked, %d notification(s)",
                len(report.outcomes),
                report.notifications,
            )
        return report

    async def stop(self) -> None:
        """Stop the timer, wait for a running cycle and close components."""
        logger.info("Stopping RSS Hook")
        self._running = False

        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)

        if self.parser:
            await self.parser.close()
        if self.dispatcher:
            await self.dispatcher.close()
        if self.storage:
            await self.storage.close()

        logger.info("RSS Hook stopped")


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


async def run_once(hook: RSSHook) -> None:
    """Run a single polling cycle and shut down."""
    try:
        await hook.setup()
        await hook.run_cycle()
    finally:
        await hook.stop()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Post new RSS/Atom entries to Discord webhooks",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to configuration file (default: read the environment)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single polling cycle and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    if args.config is not None and not Path(args.config).exists():
        logger.error("Configuration file not found: %s", args.config)
        sys.exit(1)

    hook = RSSHook(load_config(args.config))

    if args.once:
        asyncio.run(run_once(hook))
        return

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(hook.start())

    def signal_handler():
        logger.info("Received shutdown signal")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(hook.stop())
        loop.close()


if __name__ == "__main__":
    main()
