"""Tests for CrawlDispatcher."""

import asyncio
import logging
import time
from collections import Counter
from types import SimpleNamespace

import pytest

from webscraper.crawler import (
    CompositeSink,
    ContentParser,
    CrawlDispatcher,
    DispatcherState,
    DomainRateLimiter,
    FailureKind,
    OutcomeSink,
    RateLimitRule,
)
from webscraper.errors import ConfigurationError
from webscraper.utils.config import Config, RateLimitSettings, ScraperConfig

from .conftest import FakeFetcher, RecordingSink


class ExplodingSink(OutcomeSink):
    def on_outcome(self, outcome):
        raise RuntimeError("sink is broken")


class CrashingFetcher:
    async def fetch(self, url, timeout=None):
        raise RuntimeError("unexpected bug")


def urls_for(count, domain="example.com"):
    return [f"https://{domain}/page/{i}" for i in range(count)]


class TestDispatcherSetup:
    """Construction and configuration."""

    def test_zero_workers_rejected(self):
        settings = SimpleNamespace(worker_count=0)
        with pytest.raises(ConfigurationError):
            CrawlDispatcher(settings, FakeFetcher())

    def test_initial_state(self, fast_settings):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher())

        assert dispatcher.state is DispatcherState.IDLE
        assert not dispatcher.is_running
        assert dispatcher.in_flight == 0

    def test_add_urls_deduplicates(self, fast_settings):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher())

        assert dispatcher.add_urls(["https://example.com/a", "https://example.com/a"]) == 1
        assert dispatcher.add_url("https://example.com/a") is False

    def test_stop_when_idle_is_harmless(self, fast_settings):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher())
        dispatcher.stop()
        assert dispatcher.state is DispatcherState.IDLE

    @pytest.mark.asyncio
    async def test_from_config(self, recording_sink):
        config = Config(
            scraper=ScraperConfig(
                seed_urls=["https://example.com/a", "https://example.com/b"],
                worker_count=2,
                backoff_base=0.01,
                poll_interval=0.05,
            ),
            rate_limits=RateLimitSettings(default=RateLimitRule(1000, 1.0)),
        )
        dispatcher = CrawlDispatcher.from_config(config, FakeFetcher(), sink=recording_sink)

        assert dispatcher.frontier.pending_count == 2
        assert dispatcher.rate_limiter.rule_for("example.com").requests_per_period == 1000

        await dispatcher.run()
        assert sorted(recording_sink.urls) == ["https://example.com/a", "https://example.com/b"]


class TestDispatcherRun:
    """Running a dispatcher to completion."""

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, fast_settings, open_limiter, recording_sink):
        """Never more than worker_count fetches at once."""
        fetcher = FakeFetcher(delay=0.02)
        dispatcher = CrawlDispatcher(fast_settings, fetcher, sink=recording_sink, rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(20))

        results = await dispatcher.run()

        assert len(results) == 20
        assert fetcher.max_active <= fast_settings.worker_count
        assert dispatcher.stats.max_in_flight == fast_settings.worker_count
        assert dispatcher.state is DispatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_each_url_reported_exactly_once(self, fast_settings, open_limiter, recording_sink):
        fetcher = FakeFetcher(delay=0.005, fail_urls={"https://example.com/page/3"})
        dispatcher = CrawlDispatcher(fast_settings, fetcher, ContentParser(),
                                     sink=recording_sink, rate_limiter=open_limiter)
        urls = urls_for(10)
        dispatcher.add_urls(urls + urls)

        await dispatcher.run()

        assert Counter(recording_sink.urls) == Counter(urls)
        assert dispatcher.stats.succeeded == 9
        assert dispatcher.stats.failed == 1

        failed = [outcome for outcome in recording_sink.outcomes if not outcome.success]
        assert failed[0].failure is FailureKind.RETRY_EXHAUSTED
        assert failed[0].attempts_used == fast_settings.max_retries

    @pytest.mark.asyncio
    async def test_empty_frontier_finishes_immediately(self, fast_settings):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher())

        assert await dispatcher.run() == []
        assert dispatcher.state is DispatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_run(self, fast_settings, open_limiter):
        recording = RecordingSink()
        sink = CompositeSink([ExplodingSink(), recording])
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher(), sink=ExplodingSink(), rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(5))

        results = await dispatcher.run()
        assert len(results) == 5

        dispatcher.sink = sink
        dispatcher.add_urls(urls_for(3, domain="other.com"))
        await dispatcher.run()
        assert len(recording.outcomes) == 3

    @pytest.mark.asyncio
    async def test_unexpected_task_error_becomes_outcome(self, fast_settings, open_limiter, recording_sink):
        dispatcher = CrawlDispatcher(fast_settings, CrashingFetcher(), sink=recording_sink,
                                     rate_limiter=open_limiter)
        dispatcher.add_url("https://example.com/a")

        await dispatcher.run()

        outcome = recording_sink.outcomes[0]
        assert not outcome.success
        assert outcome.failure is FailureKind.UNEXPECTED_ERROR
        assert "unexpected bug" in outcome.error_message

    @pytest.mark.asyncio
    async def test_duplicate_run_is_ignored(self, fast_settings, open_limiter):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher(delay=0.05), rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(6))

        first = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.01)

        assert await dispatcher.run() == []
        assert len(await first) == 6

    @pytest.mark.asyncio
    async def test_run_again_after_stop(self, fast_settings, open_limiter):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher(), rate_limiter=open_limiter)
        dispatcher.add_url("https://example.com/a")
        await dispatcher.run()

        dispatcher.add_url("https://example.com/b")
        results = await dispatcher.run()

        assert [outcome.url for outcome in results] == ["https://example.com/b"]
        assert dispatcher.stats.submitted == 1

    @pytest.mark.asyncio
    async def test_poll_timeout_keeps_waiting(self, open_limiter, recording_sink, caplog):
        """A poll interval that passes with nothing completed is not a failure."""
        settings = ScraperConfig(worker_count=2, poll_interval=0.02, shutdown_grace_period=1.0)
        dispatcher = CrawlDispatcher(settings, FakeFetcher(delay=0.1), sink=recording_sink,
                                     rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(4))

        with caplog.at_level(logging.WARNING, logger="webscraper.crawler.dispatcher"):
            results = await dispatcher.run()

        assert len(results) == 4
        assert all(outcome.success for outcome in results)
        assert dispatcher.stats.failed == 0
        assert any("still waiting" in message for message in caplog.messages)

    @pytest.mark.asyncio
    async def test_restart_not_paced_by_aborted_jobs(self, recording_sink):
        """Jobs aborted while waiting for admission do not slow down the next run."""
        settings = ScraperConfig(worker_count=4, poll_interval=0.05, shutdown_grace_period=1.0)
        limiter = DomainRateLimiter(RateLimitRule(1, 1.0, 1.0))
        dispatcher = CrawlDispatcher(settings, FakeFetcher(), sink=recording_sink, rate_limiter=limiter)
        dispatcher.add_urls(urls_for(4))

        run_task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.05)
        dispatcher.stop()
        results = await run_task

        assert Counter(outcome.failure for outcome in results)[FailureKind.SHUTDOWN_ABORTED] == 3
        assert limiter.get_wait_time("example.com") < 1.0

        await asyncio.sleep(1.1)
        dispatcher.add_url("https://example.com/later")
        start = time.monotonic()
        results = await dispatcher.run()

        assert time.monotonic() - start < 0.5
        assert [outcome.success for outcome in results] == [True]

    @pytest.mark.asyncio
    async def test_get_stats(self, fast_settings, open_limiter):
        dispatcher = CrawlDispatcher(fast_settings, FakeFetcher(), rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(4))
        await dispatcher.run()

        stats = dispatcher.get_stats()

        assert stats['state'] == 'stopped'
        assert stats['submitted'] == 4
        assert stats['completed'] == 4
        assert stats['in_flight'] == 0
        assert stats['urls_in_queue'] == 0
        assert stats['urls_visited'] == 4


class TestDispatcherShutdown:
    """Stopping and draining."""

    @pytest.mark.asyncio
    async def test_stop_drains_in_flight(self, open_limiter, recording_sink):
        """In-flight work finishes within the grace period; nothing new is admitted."""
        settings = ScraperConfig(worker_count=2, poll_interval=0.05, shutdown_grace_period=1.0)
        dispatcher = CrawlDispatcher(settings, FakeFetcher(delay=0.05), sink=recording_sink,
                                     rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(10))

        run_task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.02)
        dispatcher.stop()
        results = await run_task

        assert len(results) == 2
        assert all(outcome.success for outcome in results)
        assert dispatcher.frontier.pending_count == 8
        assert dispatcher.state is DispatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_grace_period_expiry_aborts(self, open_limiter, recording_sink):
        settings = ScraperConfig(worker_count=2, poll_interval=0.05, shutdown_grace_period=0.1)
        dispatcher = CrawlDispatcher(settings, FakeFetcher(delay=5.0), sink=recording_sink,
                                     rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(5))

        run_task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.05)
        start = time.monotonic()
        dispatcher.stop()
        results = await run_task

        assert time.monotonic() - start < 2.0
        assert len(results) == 2
        assert all(outcome.failure is FailureKind.SHUTDOWN_ABORTED for outcome in results)
        assert dispatcher.stats.aborted == 2
        assert len(recording_sink.outcomes) == 2

    @pytest.mark.asyncio
    async def test_stop_interrupts_rate_limit_wait(self, recording_sink):
        """Jobs waiting on a slow domain are aborted as soon as stop() is called."""
        settings = ScraperConfig(worker_count=3, poll_interval=0.05, shutdown_grace_period=1.0)
        limiter = DomainRateLimiter(RateLimitRule(1, 10.0, 10.0))
        dispatcher = CrawlDispatcher(settings, FakeFetcher(), sink=recording_sink, rate_limiter=limiter)
        dispatcher.add_urls(urls_for(3))

        run_task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.05)
        start = time.monotonic()
        dispatcher.stop()
        await run_task

        assert time.monotonic() - start < 1.0
        kinds = Counter(outcome.failure for outcome in recording_sink.outcomes)
        assert kinds[None] == 1
        assert kinds[FailureKind.SHUTDOWN_ABORTED] == 2

    @pytest.mark.asyncio
    async def test_cancelling_run_still_drains(self, open_limiter, recording_sink):
        settings = ScraperConfig(worker_count=2, poll_interval=0.05, shutdown_grace_period=0.1)
        dispatcher = CrawlDispatcher(settings, FakeFetcher(delay=5.0), sink=recording_sink,
                                     rate_limiter=open_limiter)
        dispatcher.add_urls(urls_for(4))

        run_task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.05)
        run_task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run_task

        assert dispatcher.state is DispatcherState.STOPPED
        assert len(recording_sink.outcomes) == dispatcher.stats.submitted == 2
