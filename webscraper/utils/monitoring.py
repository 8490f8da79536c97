"""
Statistics collection and reporting for scrape sessions.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from ..crawler.dispatcher import OutcomeSink
from ..crawler.worker import FailureKind, ScrapeOutcome


@dataclass
class DomainStats:
    """Per-domain counters."""
    success_count: int = 0
    failure_count: int = 0
    total_bytes: int = 0
    total_time_ms: int = 0

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def failure_rate(self) -> float:
        return self.failure_count / self.total_count if self.total_count else 0.0

    @property
    def average_bytes(self) -> float:
        return self.total_bytes / self.success_count if self.success_count else 0.0

    @property
    def average_time_ms(self) -> float:
        return self.total_time_ms / self.success_count if self.success_count else 0.0


def categorize_error(error_message: Optional[str]) -> str:
    """Map an error message to a coarse error category."""
    if not error_message:
        return "Unknown"

    lower = error_message.lower()
    if "timeout" in lower:
        return "Timeout"
    if "404" in lower:
        return "Not Found (404)"
    if "403" in lower:
        return "Forbidden (403)"
    if "connection" in lower:
        return "Connection Error"
    if "ssl" in lower or "certificate" in lower:
        return "SSL/Certificate Error"
    if any(word in lower for word in ("shutdown", "shutting down", "cancelled")):
        return "Shutdown"
    return "Other"


def format_bytes(size: int) -> str:
    """Human readable byte count."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


class ScrapeStats(OutcomeSink):
    """
    Outcome sink that aggregates scrape statistics.

    Counters are mirrored into a Prometheus registry owned by this instance,
    which can be exposed over HTTP with start_metrics_server().
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

        self.registry = registry or CollectorRegistry()
        self.prometheus_metrics = {
            'outcomes_total': Counter(
                'scraper_outcomes_total',
                'Terminal scrape outcomes',
                ['result'],
                registry=self.registry
            ),
            'errors_total': Counter(
                'scraper_errors_total',
                'Failed scrapes by error category',
                ['error_type'],
                registry=self.registry
            ),
            'bytes_downloaded_total': Counter(
                'scraper_bytes_downloaded_total',
                'Characters of page content downloaded',
                registry=self.registry
            ),
            'scrape_duration_seconds': Histogram(
                'scraper_scrape_duration_seconds',
                'Time from admission to outcome for successful scrapes',
                registry=self.registry
            ),
            'urls_queued': Gauge(
                'scraper_urls_queued',
                'URLs reported as queued',
                registry=self.registry
            ),
        }

        self.reset()

    def reset(self):
        """Clear all counters and restart the session clock."""
        with self._lock:
            self.total_processed = 0
            self.successful = 0
            self.failed = 0
            self.urls_queued = 0
            self.total_bytes = 0
            self.total_processing_time_ms = 0
            self.domain_stats: Dict[str, DomainStats] = {}
            self.content_types: Dict[str, int] = {}
            self.error_types: Dict[str, int] = {}
            self.start_time = time.time()
            self.end_time: Optional[float] = None

    def start_session(self):
        self.reset()
        self.logger.info(f"Scraper statistics tracking started at {datetime.now().isoformat()}")

    def end_session(self):
        with self._lock:
            self.end_time = time.time()
        self.logger.info(f"Scraper statistics tracking ended at {datetime.now().isoformat()}")
        self.logger.info(self.get_summary())

    def start_metrics_server(self, port: int):
        """Expose the Prometheus registry over HTTP."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

    # Tracking

    def on_outcome(self, outcome: ScrapeOutcome):
        if outcome.success:
            self.track_success(outcome)
        else:
            self.track_failure(outcome)

    def track_url_queued(self, count: int = 1):
        with self._lock:
            self.urls_queued += count
            queued = self.urls_queued
        self.prometheus_metrics['urls_queued'].set(queued)

    def track_success(self, outcome: ScrapeOutcome):
        content_size = len(outcome.content or '')
        content_type = outcome.payload.content_type if outcome.payload else None

        with self._lock:
            self.successful += 1
            self.total_processed += 1
            self.total_bytes += content_size
            self.total_processing_time_ms += outcome.duration_ms

            if content_type:
                self.content_types[content_type] = self.content_types.get(content_type, 0) + 1

            stats = self._domain(outcome)
            stats.success_count += 1
            stats.total_bytes += content_size
            stats.total_time_ms += outcome.duration_ms

        self.prometheus_metrics['outcomes_total'].labels(result='success').inc()
        self.prometheus_metrics['bytes_downloaded_total'].inc(content_size)
        self.prometheus_metrics['scrape_duration_seconds'].observe(outcome.duration_ms / 1000)

    def track_failure(self, outcome: ScrapeOutcome):
        if outcome.failure is FailureKind.SHUTDOWN_ABORTED:
            error_type = "Shutdown"
        else:
            error_type = categorize_error(outcome.error_message)

        with self._lock:
            self.failed += 1
            self.total_processed += 1
            self.error_types[error_type] = self.error_types.get(error_type, 0) + 1
            self._domain(outcome).failure_count += 1

        self.prometheus_metrics['outcomes_total'].labels(result='failure').inc()
        self.prometheus_metrics['errors_total'].labels(error_type=error_type).inc()

    def _domain(self, outcome: ScrapeOutcome) -> DomainStats:
        domain = outcome.domain or 'unknown'
        stats = self.domain_stats.get(domain)
        if stats is None:
            stats = DomainStats()
            self.domain_stats[domain] = stats
        return stats

    # Reporting

    @property
    def total_duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    @property
    def success_rate(self) -> float:
        return self.successful * 100 / self.total_processed if self.total_processed else 0.0

    @property
    def average_processing_time(self) -> float:
        return self.total_processing_time_ms / self.successful if self.successful else 0.0

    def most_scraped_domain(self) -> str:
        with self._lock:
            if not self.domain_stats:
                return "None"
            return max(self.domain_stats.items(), key=lambda item: item[1].success_count)[0]

    def highest_failure_domain(self, min_samples: int = 5) -> str:
        with self._lock:
            candidates = [(domain, stats) for domain, stats in self.domain_stats.items()
                          if stats.total_count >= min_samples]
        if not candidates:
            return "None"
        return max(candidates, key=lambda item: item[1].failure_rate)[0]

    def most_common_error(self) -> str:
        with self._lock:
            if not self.error_types:
                return "None"
            error_type, count = max(self.error_types.items(), key=lambda item: item[1])
        return f"{error_type} ({count} occurrences)"

    def most_common_content_type(self) -> str:
        with self._lock:
            if not self.content_types:
                return "None"
            content_type, count = max(self.content_types.items(), key=lambda item: item[1])
        return f"{content_type} ({count} occurrences)"

    def get_progress_summary(self, pending: Optional[int] = None) -> str:
        """One-line progress report; `pending` is the number of URLs still waiting, if known."""
        duration = self.total_duration
        rate = self.total_processed / duration if duration > 0 else 0
        summary = (
            f"Progress: {self.total_processed} processed ({self.successful} successful, "
            f"{self.failed} failed) at {rate:.2f} URLs/sec, {self.urls_queued} queued"
        )
        if pending is not None:
            summary += f", {pending} pending"
        return summary

    def get_summary(self) -> str:
        duration = self.total_duration
        minutes, seconds = divmod(int(duration), 60)
        rate = self.total_processed / duration if duration > 0 else 0

        return "\n".join([
            "Scraping Statistics Summary:",
            "-----------------------------",
            f"Total Duration: {minutes} minutes {seconds} seconds",
            f"URLs Processed: {self.total_processed} ({rate:.2f} URLs/second)",
            f"Successful: {self.successful} ({self.success_rate:.2f}%)",
            f"Failed: {self.failed} ({100 - self.success_rate if self.total_processed else 0:.2f}%)",
            f"URLs Queued: {self.urls_queued}",
            "",
            f"Data Downloaded: {format_bytes(self.total_bytes)}",
            f"Average Processing Time: {self.average_processing_time:.2f} ms per URL",
            "",
            "Domain Statistics:",
            f"- Most Scraped Domain: {self.most_scraped_domain()}",
            f"- Highest Failure Rate: {self.highest_failure_domain()}",
            "",
            "Error Analysis:",
            f"- Most Common Error: {self.most_common_error()}",
            "",
            "Content Analysis:",
            f"- Most Common Content Type: {self.most_common_content_type()}",
        ])
