"""
Crawl dispatcher that schedules scrape tasks and collects their outcomes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..errors import ConfigurationError
from .frontier import URLFrontier
from .rate_limiter import DomainRateLimiter
from .retry import RetryPolicy
from .worker import FailureKind, ScrapeJob, ScrapeOutcome, ScrapeTask


class DispatcherState(Enum):
    """Lifecycle of a dispatcher run."""
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class OutcomeSink:
    """Receives every terminal ScrapeOutcome exactly once."""

    def on_outcome(self, outcome: ScrapeOutcome):
        raise NotImplementedError


class CompositeSink(OutcomeSink):
    """Fans outcomes out to several sinks. A failing sink does not affect the others."""

    def __init__(self, sinks: Iterable[OutcomeSink]):
        self.sinks = list(sinks)
        self.logger = logging.getLogger(__name__)

    def on_outcome(self, outcome: ScrapeOutcome):
        for sink in self.sinks:
            try:
                sink.on_outcome(outcome)
            except Exception as e:
                self.logger.error(f"Outcome sink {type(sink).__name__} failed for {outcome.url}: {e}",
                                  exc_info=True)


@dataclass
class DispatchStats:
    """Statistics for one dispatcher run."""
    start_time: float = field(default_factory=time.time)
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    aborted: int = 0
    max_in_flight: int = 0

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed + self.aborted

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.completed / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlDispatcher:
    """
    Bounded-concurrency scheduler.

    Pulls URLs from the frontier while fewer than `worker_count` tasks are
    in flight, waits for any task (or the stop signal) to finish, and hands
    each outcome to the sink. The dispatcher itself never fetches.
    """

    def __init__(self, settings, fetcher, extractor=None, sink: Optional[OutcomeSink] = None,
                 rate_limiter: Optional[DomainRateLimiter] = None,
                 frontier: Optional[URLFrontier] = None):
        if settings.worker_count is None or settings.worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")

        self.logger = logging.getLogger(__name__)

        self.worker_count = settings.worker_count
        self.request_timeout = settings.request_timeout
        self.poll_interval = settings.poll_interval
        self.shutdown_grace_period = settings.shutdown_grace_period

        # Components
        self.frontier = frontier or URLFrontier()
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.retry_policy = RetryPolicy(settings.max_retries, settings.backoff_base)
        self.fetcher = fetcher
        self.extractor = extractor
        self.sink = sink

        # Run state
        self.state = DispatcherState.IDLE
        self.stats = DispatchStats()
        self.results: List[ScrapeOutcome] = []
        self._stop_event = asyncio.Event()
        self._in_flight: Dict[asyncio.Task, ScrapeJob] = {}

    @classmethod
    def from_config(cls, config, fetcher, extractor=None,
                    sink: Optional[OutcomeSink] = None) -> 'CrawlDispatcher':
        """Build a dispatcher and its rate limiter from a loaded Config."""
        rate_limiter = DomainRateLimiter.from_settings(config.rate_limits)
        dispatcher = cls(config.scraper, fetcher, extractor, sink, rate_limiter=rate_limiter)
        dispatcher.add_urls(config.scraper.seed_urls)
        return dispatcher

    def add_url(self, url: str) -> bool:
        return self.frontier.add_url(url)

    def add_urls(self, urls: Iterable[str]) -> int:
        added_count = self.frontier.add_urls(urls)
        self.logger.info(f"Added {added_count} URLs to frontier")
        return added_count

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self.state in (DispatcherState.RUNNING, DispatcherState.DRAINING)

    async def run(self) -> List[ScrapeOutcome]:
        """
        Scrape until the frontier is empty and nothing is in flight, or until stop().

        Returns:
            The outcomes of this run, in completion order.
        """
        if self.is_running:
            self.logger.warning("Dispatcher is already running")
            return []

        self.state = DispatcherState.RUNNING
        self.stats = DispatchStats()
        self.results = []
        self._stop_event.clear()

        task_runner = ScrapeTask(
            self.fetcher,
            self.extractor,
            self.rate_limiter,
            self.retry_policy,
            request_timeout=self.request_timeout,
            cancel_event=self._stop_event
        )
        stop_waiter = asyncio.create_task(self._stop_event.wait())

        self.logger.info(f"Starting dispatcher with {self.worker_count} workers")

        try:
            await self._run_loop(task_runner, stop_waiter)
        except asyncio.CancelledError:
            self.logger.warning("Dispatcher cancelled, draining in-flight tasks")
            self._stop_event.set()
            await self._drain()
            raise
        else:
            await self._drain()
        finally:
            stop_waiter.cancel()
            self.state = DispatcherState.STOPPED
            self.logger.info(
                f"Dispatcher stopped. Successful: {self.stats.succeeded}, "
                f"Failed: {self.stats.failed}, Aborted: {self.stats.aborted}"
            )

        return self.results

    async def _run_loop(self, task_runner: ScrapeTask, stop_waiter: asyncio.Task):
        while not self._stop_event.is_set():
            self._fill_worker_budget(task_runner)

            if not self._in_flight:
                if self.frontier.is_empty():
                    break
                continue

            self.logger.debug(f"Queue size: {self.frontier.pending_count}, Active tasks: {self.in_flight}")

            done, _ = await asyncio.wait(
                [*self._in_flight, stop_waiter],
                timeout=self.poll_interval,
                return_when=asyncio.FIRST_COMPLETED
            )

            if not done:
                self.logger.warning(
                    f"No task completed in the last {self.poll_interval}s, still waiting..."
                )
                continue

            for task in done:
                if task in self._in_flight:
                    self._handle_completed(task)

        if self._stop_event.is_set():
            self.logger.info("Stop requested, no further URLs will be admitted")

    def _fill_worker_budget(self, task_runner: ScrapeTask):
        while len(self._in_flight) < self.worker_count and not self._stop_event.is_set():
            url = self.frontier.claim_next()
            if url is None:
                return

            job = ScrapeJob(url=url)
            task = asyncio.create_task(task_runner.run(job), name=f"scrape:{url}")
            self._in_flight[task] = job

            self.stats.submitted += 1
            self.stats.max_in_flight = max(self.stats.max_in_flight, len(self._in_flight))
            self.logger.debug(f"Submitted task for URL: {url}")

    def _handle_completed(self, task: asyncio.Task):
        job = self._in_flight.pop(task)

        try:
            outcome = task.result()
        except asyncio.CancelledError:
            outcome = ScrapeOutcome.aborted(job.url, "Cancelled during shutdown", attempts_used=job.attempt)
        except Exception as e:
            self.logger.error(f"Error executing scrape task for {job.url}: {e}", exc_info=True)
            outcome = ScrapeOutcome.errored(job.url, f"Unexpected error: {e}", attempts_used=job.attempt + 1)

        self._deliver(outcome)

    def _deliver(self, outcome: ScrapeOutcome):
        self.results.append(outcome)

        if outcome.success:
            self.stats.succeeded += 1
            self.logger.info(f"Successfully scraped: {outcome.url}")
        elif outcome.failure is FailureKind.SHUTDOWN_ABORTED:
            self.stats.aborted += 1
        else:
            self.stats.failed += 1

        if self.sink is None:
            return

        try:
            self.sink.on_outcome(outcome)
        except Exception as e:
            self.logger.error(f"Outcome sink failed for {outcome.url}: {e}", exc_info=True)

    async def _drain(self):
        """Give in-flight tasks the grace period, then cancel whatever is left."""
        self.state = DispatcherState.DRAINING

        if not self._in_flight:
            return

        self.logger.info(
            f"Waiting up to {self.shutdown_grace_period}s for {self.in_flight} in-flight tasks"
        )
        done, pending = await asyncio.wait(list(self._in_flight), timeout=self.shutdown_grace_period)

        for task in done:
            self._handle_completed(task)

        if pending:
            self.logger.warning(f"Cancelling {len(pending)} tasks still running after grace period")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                self._handle_completed(task)

    def stop(self):
        """Stop admitting URLs and begin draining. Safe to call from signal handlers."""
        if not self.is_running:
            self.logger.info("Dispatcher is not running")
            return

        self.logger.info("Stopping dispatcher...")
        self._stop_event.set()

    def get_stats(self) -> Dict:
        """Get current dispatch statistics."""
        frontier_stats = self.frontier.get_stats()
        return {
            'state': self.state.value,
            'submitted': self.stats.submitted,
            'completed': self.stats.completed,
            'succeeded': self.stats.succeeded,
            'failed': self.stats.failed,
            'aborted': self.stats.aborted,
            'in_flight': self.in_flight,
            'max_in_flight': self.stats.max_in_flight,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'urls_in_queue': frontier_stats['total_queued'],
            'urls_visited': frontier_stats['total_visited'],
        }
