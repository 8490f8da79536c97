#!/usr/bin/env python3
"""
Main entry point for the web scraper.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from webscraper import __version__
from webscraper.crawler import CompositeSink, ContentParser, CrawlDispatcher, WebFetcher
from webscraper.errors import FetchError
from webscraper.processing import ContentProcessor
from webscraper.utils.config import Config, load_config
from webscraper.utils.logger import log_system_info, setup_logging
from webscraper.utils.monitoring import ScrapeStats


class ScraperApp:
    """Wires configuration, dispatcher and sinks together for one run."""

    def __init__(self):
        self.dispatcher: Optional[CrawlDispatcher] = None
        self.stats: Optional[ScrapeStats] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Stop the dispatcher on SIGINT/SIGTERM so in-flight work can drain."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.dispatcher:
                self.dispatcher.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def run(self, config_path: str, urls: Optional[List[str]] = None,
                  workers: Optional[int] = None, max_duration: Optional[float] = None,
                  json_logs: bool = False, dry_run: bool = False) -> int:
        """Run the scraper. Returns the process exit code."""
        try:
            config = load_config(config_path)
            if workers is not None:
                config.scraper.worker_count = workers
            if urls:
                config.scraper.seed_urls = list(urls)

            setup_logging(config.logging, enable_json=json_logs)
            log_system_info()

            self.logger.info("=== WEB SCRAPER STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Seed URLs: {config.scraper.seed_urls}")
            self.logger.info(f"Workers: {config.scraper.worker_count}")
            self.logger.info(f"Max retries: {config.scraper.max_retries}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual scraping will be performed")
                await self._dry_run(config)
                return 0

            await self._scrape(config, max_duration)

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            self.logger.info("=== WEB SCRAPER FINISHED ===")

        return 0

    async def _scrape(self, config: Config, max_duration: Optional[float]):
        self.stats = ScrapeStats()
        if config.monitoring.metrics_enabled:
            self.stats.start_metrics_server(config.monitoring.prometheus_port)

        processor = ContentProcessor(config.processing)

        async with WebFetcher(
            user_agent=config.scraper.user_agent,
            request_timeout=config.scraper.request_timeout,
            max_connections=config.scraper.worker_count,
            max_content_size=config.scraper.max_content_size
        ) as fetcher:
            self.dispatcher = CrawlDispatcher.from_config(
                config,
                fetcher,
                extractor=ContentParser(),
                sink=CompositeSink([processor, self.stats])
            )
            self.stats.start_session()
            self.stats.track_url_queued(self.dispatcher.frontier.pending_count)
            self.setup_signal_handlers()

            loop = asyncio.get_running_loop()
            deadline = None
            if max_duration:
                self.logger.info(f"Scraping will stop after {max_duration}s")
                deadline = loop.call_later(max_duration, self.dispatcher.stop)

            progress_task = asyncio.create_task(self._report_progress(config.scraper.poll_interval))
            try:
                await self.dispatcher.run()
            finally:
                progress_task.cancel()
                if deadline:
                    deadline.cancel()
                self.stats.end_session()
                self._log_final_stats(fetcher)

        processed = processor.get_processed()
        self.logger.info(f"Processed {len(processed)} pages")
        for outcome in processed:
            self.logger.debug(outcome.summary())

    def _log_final_stats(self, fetcher: WebFetcher):
        """Log dispatcher, frontier and fetcher statistics once a run is over."""
        dispatcher_stats = self.dispatcher.get_stats()
        self.logger.info("=== SCRAPE COMPLETED ===")
        self.logger.info(f"URLs remaining in queue: {dispatcher_stats['urls_in_queue']}")
        self.logger.info(f"URLs visited: {dispatcher_stats['urls_visited']}")
        self.logger.info(f"Fetcher stats: {fetcher.get_stats()}")

    def _progress_line(self) -> str:
        pending = self.dispatcher.frontier.pending_count if self.dispatcher else None
        return self.stats.get_progress_summary(pending)

    async def _report_progress(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            self.logger.info(self._progress_line())

    async def _dry_run(self, config: Config):
        """Validate configuration and try one fetch."""
        if not config.scraper.seed_urls:
            self.logger.warning("No seed URLs configured, skipping test fetch")
            return

        test_url = config.scraper.seed_urls[0]
        self.logger.info(f"Testing fetch of {test_url}...")
        async with WebFetcher(
            user_agent=config.scraper.user_agent,
            request_timeout=config.scraper.request_timeout,
            max_connections=1
        ) as fetcher:
            try:
                result = await fetcher.fetch(test_url)
                self.logger.info(
                    f"Test fetch successful: {result.status_code}, {result.content_length} characters"
                )
            except FetchError as e:
                self.logger.warning(f"Test fetch failed: {e}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Concurrent Web Scraper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                  # Run with default config.yaml
  python main.py --config my_config.yaml          # Run with custom config
  python main.py --url https://example.com/       # Scrape a specific URL
  python main.py --workers 4 --max-duration 600   # 4 workers, stop after 10 minutes
  python main.py --dry-run                        # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--url',
        action='append',
        dest='urls',
        help='URL to scrape instead of the configured seed URLs (repeatable)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Number of concurrent scrape tasks'
    )

    parser.add_argument(
        '--max-duration',
        type=float,
        help='Stop admitting URLs after this many seconds'
    )

    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit log records as JSON lines'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually scraping'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Web Scraper {__version__}'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = ScraperApp()
    try:
        return asyncio.run(app.run(
            config_path=args.config,
            urls=args.urls,
            workers=args.workers,
            max_duration=args.max_duration,
            json_logs=args.json_logs,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
