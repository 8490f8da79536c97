"""
Post-processing of successful scrape outcomes: truncation, filtering and
sanitization of page content.
"""

import logging
import re
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Pattern

from ..crawler.dispatcher import OutcomeSink
from ..crawler.worker import ScrapeOutcome
from ..utils.config import ProcessingConfig
from ..utils.logger import get_scrape_logger


ProcessingListener = Callable[[ScrapeOutcome], None]


class ContentProcessor(OutcomeSink):
    """
    Outcome sink that cleans up page content and keeps the processed results.

    Failed outcomes are ignored here. Each processed outcome is a new
    ScrapeOutcome; the original one is left untouched.
    """

    def __init__(self, config: Optional[ProcessingConfig] = None):
        self.config = config or ProcessingConfig()
        self.logger = get_scrape_logger(__name__)

        self._lock = threading.Lock()
        self._processed: List[ScrapeOutcome] = []
        self._domain_stats: Dict[str, int] = {}
        self._listeners: List[ProcessingListener] = []
        self._filters: Dict[str, Pattern] = {}

        for name, regex in self.config.filters.items():
            self.add_content_filter(name, regex)

        self.tag_pattern = re.compile(r'<[^>]*>')
        self.whitespace_pattern = re.compile(r'\s+')

    def on_outcome(self, outcome: ScrapeOutcome):
        self.process(outcome)

    def process(self, outcome: ScrapeOutcome) -> Optional[ScrapeOutcome]:
        """
        Process one outcome.

        Returns:
            The processed outcome, or None if it was skipped.
        """
        if not outcome.success or outcome.payload is None:
            self.logger.debug(f"Not processing failed outcome for {outcome.url}")
            return None

        if self.config.remove_empty_content and not outcome.has_content():
            self.logger.debug(f"Skipping empty content from URL: {outcome.url}")
            return None

        page = replace(outcome.payload, metadata=dict(outcome.payload.metadata))

        if page.content and len(page.content) > self.config.max_content_length:
            page.content = page.content[:self.config.max_content_length]
            self.logger.debug(f"Content truncated for URL: {outcome.url}")

        if page.content:
            page.content = self._apply_filters(page.content)
            if self.config.sanitize_content:
                page.content = self.sanitize(page.content)

        page.metadata['word_count'] = str(page.word_count)
        if page.price:
            page.metadata['price'] = page.price
        if page.discount:
            page.metadata['discount'] = page.discount

        processed = replace(outcome, payload=page)

        domain = outcome.domain or 'unknown'
        with self._lock:
            self._processed.append(processed)
            self._domain_stats[domain] = self._domain_stats.get(domain, 0) + 1
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(processed)
            except Exception as e:
                self.logger.error(f"Error notifying listener for {outcome.url}: {e}", exc_info=True)

        self.logger.log_url_event(logging.INFO, outcome.url, "Processed scraped content", domain)
        return processed

    def _apply_filters(self, content: str) -> str:
        with self._lock:
            filters = list(self._filters.values())
        for pattern in filters:
            content = pattern.sub('', content)
        return content

    def sanitize(self, content: str) -> str:
        """Strip leftover tags, collapse whitespace and drop non-printable characters."""
        content = self.tag_pattern.sub('', content)
        content = self.whitespace_pattern.sub(' ', content).strip()
        return ''.join(ch for ch in content if ch.isprintable())

    # Configuration

    def add_content_filter(self, name: str, regex: str):
        """Remove every match of `regex` from processed content."""
        with self._lock:
            self._filters[name] = re.compile(regex)

    def remove_content_filter(self, name: str):
        with self._lock:
            self._filters.pop(name, None)

    def add_listener(self, listener: ProcessingListener):
        """Call `listener` with every processed outcome."""
        with self._lock:
            self._listeners.append(listener)

    # Results

    def get_processed(self) -> List[ScrapeOutcome]:
        with self._lock:
            return list(self._processed)

    def get_domain_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._domain_stats)

    def get_filtered(self, predicate: Callable[[ScrapeOutcome], bool]) -> List[ScrapeOutcome]:
        return [outcome for outcome in self.get_processed() if predicate(outcome)]
