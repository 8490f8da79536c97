"""
Scrape jobs, their outcomes, and the task that turns one into the other.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from ..errors import RetryExhausted, ShutdownAborted
from .fetcher import FetchResult
from .frontier import extract_domain
from .parser import ParsedPage
from .rate_limiter import DomainRateLimiter
from .retry import RetryPolicy


@dataclass
class ScrapeJob:
    """One URL being scraped. `attempt` counts failed fetch attempts."""
    url: str
    attempt: int = 0

    @property
    def domain(self) -> Optional[str]:
        return extract_domain(self.url)


class FailureKind(Enum):
    """Why a job ended without a result."""
    RETRY_EXHAUSTED = "retry_exhausted"
    SHUTDOWN_ABORTED = "shutdown_aborted"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True)
class ExtractionWarning:
    """Non-fatal problem while extracting fields from a fetched page."""
    url: str
    message: str


@dataclass(frozen=True)
class ScrapeOutcome:
    """Terminal result for one URL."""
    url: str
    success: bool
    payload: Optional[ParsedPage] = None
    error_message: Optional[str] = None
    duration_ms: int = 0
    attempts_used: int = 0
    failure: Optional[FailureKind] = None
    warnings: Tuple[ExtractionWarning, ...] = ()
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def succeeded(cls, url: str, payload: ParsedPage, duration_ms: int, attempts_used: int,
                  warnings: Tuple[ExtractionWarning, ...] = ()) -> 'ScrapeOutcome':
        return cls(url=url, success=True, payload=payload, duration_ms=duration_ms,
                   attempts_used=attempts_used, warnings=tuple(warnings))

    @classmethod
    def failed(cls, url: str, error_message: str, duration_ms: int = 0,
               attempts_used: int = 0) -> 'ScrapeOutcome':
        return cls(url=url, success=False, error_message=error_message, duration_ms=duration_ms,
                   attempts_used=attempts_used, failure=FailureKind.RETRY_EXHAUSTED)

    @classmethod
    def aborted(cls, url: str, reason: str, duration_ms: int = 0,
                attempts_used: int = 0) -> 'ScrapeOutcome':
        return cls(url=url, success=False, error_message=reason, duration_ms=duration_ms,
                   attempts_used=attempts_used, failure=FailureKind.SHUTDOWN_ABORTED)

    @classmethod
    def errored(cls, url: str, error_message: str, attempts_used: int = 0) -> 'ScrapeOutcome':
        return cls(url=url, success=False, error_message=error_message,
                   attempts_used=attempts_used, failure=FailureKind.UNEXPECTED_ERROR)

    @property
    def domain(self) -> Optional[str]:
        return extract_domain(self.url)

    @property
    def title(self) -> Optional[str]:
        return self.payload.title if self.payload else None

    @property
    def content(self) -> Optional[str]:
        return self.payload.content if self.payload else None

    def has_content(self) -> bool:
        return self.success and bool(self.content)

    def content_preview(self, max_length: int = 200) -> str:
        content = self.content
        if not content:
            return ""
        return content if len(content) <= max_length else content[:max_length] + "..."

    def summary(self) -> str:
        return (
            f"URL: {self.url}\n"
            f"Title: {self.title}\n"
            f"Scrape Date: {self.completed_at.isoformat()}\n"
            f"Status: {'Success' if self.success else 'Failed'}\n"
            f"Content Length: {len(self.content or '')}"
        )


class ScrapeTask:
    """
    Fetch-and-process unit run by a worker.

    Admission is acquired once per job, then the fetch is retried under the
    retry policy, then the extractor runs. Always returns exactly one
    ScrapeOutcome; fetch and shutdown errors never escape.
    """

    def __init__(self, fetcher, extractor, rate_limiter: DomainRateLimiter,
                 retry_policy: RetryPolicy, request_timeout: Optional[float] = None,
                 cancel_event: Optional[asyncio.Event] = None):
        self.fetcher = fetcher
        self.extractor = extractor
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.request_timeout = request_timeout
        self.cancel_event = cancel_event
        self.logger = logging.getLogger(__name__)

    async def run(self, job: ScrapeJob) -> ScrapeOutcome:
        start_time = time.monotonic()

        try:
            await self.rate_limiter.acquire_url(job.url, self.cancel_event)
            # Durations are measured from admission
            start_time = time.monotonic()

            self.logger.info(f"Scraping URL: {job.url}")
            fetch_result = await self.retry_policy.execute(job, self._fetch, self.cancel_event)

        except RetryExhausted as e:
            self.logger.error(f"Failed to scrape {job.url}: {e.last_message}")
            return ScrapeOutcome.failed(job.url, e.last_message, self._elapsed_ms(start_time), e.attempts)

        except ShutdownAborted as e:
            self.logger.info(f"Aborted {job.url}: {e.reason}")
            return ScrapeOutcome.aborted(job.url, e.reason, self._elapsed_ms(start_time), job.attempt)

        page, warnings = self._extract(job.url, fetch_result)
        return ScrapeOutcome.succeeded(
            job.url,
            page,
            self._elapsed_ms(start_time),
            job.attempt + 1,
            warnings
        )

    async def _fetch(self, job: ScrapeJob) -> FetchResult:
        return await self.fetcher.fetch(job.url, self.request_timeout)

    def _extract(self, url: str, fetch_result: FetchResult) -> Tuple[ParsedPage, Tuple[ExtractionWarning, ...]]:
        if self.extractor is None:
            return ParsedPage.from_fetch(fetch_result), ()

        try:
            return self.extractor.extract(url, fetch_result), ()
        except Exception as e:
            self.logger.error(f"Error extracting content from {url}: {e}")
            page = ParsedPage.from_fetch(fetch_result)
            page.metadata['extraction_error'] = str(e)
            return page, (ExtractionWarning(url=url, message=str(e)),)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
