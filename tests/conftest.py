"""Shared fakes and fixtures for the scraper tests."""

import asyncio
from typing import Dict, List, Optional, Set

import pytest

from webscraper.crawler import (
    DomainRateLimiter,
    FetchResult,
    OutcomeSink,
    RateLimitRule,
    ScrapeOutcome,
)
from webscraper.errors import FetchError
from webscraper.utils.config import ScraperConfig


class FakeFetcher:
    """In-memory fetcher that records concurrency and can fail on demand."""

    def __init__(self, delay: float = 0.0, fail_urls: Optional[Set[str]] = None,
                 fail_times: Optional[Dict[str, int]] = None):
        self.delay = delay
        self.fail_urls = fail_urls or set()
        self.fail_times = dict(fail_times or {})
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            if url in self.fail_urls:
                raise FetchError(url, "HTTP error fetching URL. Status=500", status_code=500)
            if self.fail_times.get(url, 0) > 0:
                self.fail_times[url] -= 1
                raise FetchError(url, "Connection error: reset by peer")

            html = f"<html><head><title>Page {url}</title></head><body><p>Content of {url}</p></body></html>"
            return FetchResult(url=url, status_code=200, content=html,
                               headers={'Content-Type': 'text/html'}, content_type='text/html')
        finally:
            self.active -= 1


class RecordingSink(OutcomeSink):
    """Collects every outcome it is handed."""

    def __init__(self):
        self.outcomes: List[ScrapeOutcome] = []

    def on_outcome(self, outcome: ScrapeOutcome):
        self.outcomes.append(outcome)

    @property
    def urls(self) -> List[str]:
        return [outcome.url for outcome in self.outcomes]


@pytest.fixture
def fast_settings():
    """Scraper settings with short timings."""
    return ScraperConfig(
        worker_count=3,
        request_timeout=1.0,
        max_retries=2,
        backoff_base=0.01,
        poll_interval=0.05,
        shutdown_grace_period=0.5,
    )


@pytest.fixture
def open_limiter():
    """Rate limiter that never makes anyone wait."""
    return DomainRateLimiter(RateLimitRule(requests_per_period=10000, period=1.0, min_delay=0.0))


@pytest.fixture
def recording_sink():
    return RecordingSink()
