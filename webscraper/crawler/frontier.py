"""
URL Frontier implementation for managing URLs to scrape.
Keeps an ordered pending queue plus the append-only record of dispatched URLs.
"""

import logging
import threading
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Set
from urllib.parse import urlparse, urlunparse


def normalize_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a URL for deduplication.

    Lowercases scheme and host and drops the fragment. Returns None for
    empty or non-HTTP(S) URLs.
    """
    if not url:
        return None

    url = url.strip()
    if not url:
        return None

    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in ('http', 'https') or not parsed.netloc:
        return None

    return urlunparse((
        scheme,
        parsed.netloc.lower(),
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''  # Remove fragment
    ))


def extract_domain(url: str) -> Optional[str]:
    """Extract the host name from a URL, or None if it has none."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


class URLFrontier:
    """
    Deduplicated FIFO queue of URLs waiting to be scraped.

    A URL is recorded as visited when the dispatcher commits to scheduling
    it (see claim_next), not when it is queued. The visited set never
    shrinks. Producers may add URLs from any thread; a single consumer
    takes them. All state is guarded by one lock that is never held while
    waiting on anything.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._pending: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._visited: Set[str] = set()
        self._resubmitted: Set[str] = set()

    def add_url(self, url: str) -> bool:
        """
        Add a URL to the frontier.
        Returns True if the URL was queued, False if it was invalid,
        already queued or already visited.
        """
        normalized = normalize_url(url)
        if normalized is None:
            self.logger.debug(f"Ignoring invalid URL: {url!r}")
            return False

        with self._lock:
            if normalized in self._visited or normalized in self._queued:
                return False
            self._pending.append(normalized)
            self._queued.add(normalized)

        self.logger.debug(f"Added URL to frontier: {normalized}")
        return True

    def add_urls(self, urls: Iterable[str]) -> int:
        """Add multiple URLs to the frontier. Returns count of added URLs."""
        added_count = 0
        for url in urls:
            if self.add_url(url):
                added_count += 1
        return added_count

    def resubmit(self, url: str) -> bool:
        """
        Queue a URL again after its terminal outcome.

        The URL stays in the visited record; it is allowed past the visited
        check once more. Returns False if it is already pending.
        """
        normalized = normalize_url(url)
        if normalized is None:
            return False

        with self._lock:
            if normalized in self._queued:
                return False
            if normalized in self._visited:
                self._resubmitted.add(normalized)
            self._pending.append(normalized)
            self._queued.add(normalized)

        self.logger.info(f"Resubmitted URL: {normalized}")
        return True

    def take(self) -> Optional[str]:
        """Remove and return the next pending URL, or None when empty."""
        with self._lock:
            if not self._pending:
                return None
            url = self._pending.popleft()
            self._queued.discard(url)
            return url

    def claim_next(self) -> Optional[str]:
        """
        Take the next URL that has not been visited and mark it visited.

        Visited URLs found at the head of the queue are dropped. Returns
        None when no schedulable URL remains.
        """
        with self._lock:
            while self._pending:
                url = self._pending.popleft()
                self._queued.discard(url)

                if url in self._resubmitted:
                    self._resubmitted.discard(url)
                elif url in self._visited:
                    self.logger.debug(f"Skipping already visited URL: {url}")
                    continue

                self._visited.add(url)
                return url
        return None

    def mark_visited(self, url: str) -> bool:
        """
        Record a URL as visited.
        Returns True if it was not visited before.
        """
        normalized = normalize_url(url)
        if normalized is None:
            return False

        with self._lock:
            if normalized in self._visited:
                return False
            self._visited.add(normalized)
            return True

    def is_visited(self, url: str) -> bool:
        """Check whether a URL has been dispatched."""
        normalized = normalize_url(url)
        with self._lock:
            return normalized in self._visited

    def is_empty(self) -> bool:
        """Check if the pending queue is drained."""
        with self._lock:
            return not self._pending

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def visited_count(self) -> int:
        with self._lock:
            return len(self._visited)

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        with self._lock:
            return {
                'total_queued': len(self._pending),
                'total_visited': len(self._visited),
                'domains_with_urls': len({extract_domain(url) for url in self._pending}),
            }
