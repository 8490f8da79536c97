"""
Web Scraper

A concurrent web scraper with per-domain rate limiting and bounded retries.
"""

__version__ = "1.0.0"
__description__ = "Concurrent web scraper with per-domain admission control"
