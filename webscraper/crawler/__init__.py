"""
Web scraper core components.
"""

from .frontier import URLFrontier, normalize_url, extract_domain
from .rate_limiter import DomainRateLimiter, RateLimitRule, DomainState
from .retry import RetryPolicy
from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedPage
from .worker import ScrapeJob, ScrapeOutcome, ScrapeTask, FailureKind, ExtractionWarning
from .dispatcher import CrawlDispatcher, DispatcherState, OutcomeSink, CompositeSink

__all__ = [
    'URLFrontier', 'normalize_url', 'extract_domain',
    'DomainRateLimiter', 'RateLimitRule', 'DomainState',
    'RetryPolicy',
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedPage',
    'ScrapeJob', 'ScrapeOutcome', 'ScrapeTask', 'FailureKind', 'ExtractionWarning',
    'CrawlDispatcher', 'DispatcherState', 'OutcomeSink', 'CompositeSink'
]
