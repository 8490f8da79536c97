"""
HTTP page fetching on top of a shared aiohttp session.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from ..errors import FetchError


DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

TEXT_MIME_TYPES = frozenset({
    'text/html',
    'text/plain',
    'text/xml',
    'application/xml',
    'application/xhtml+xml',
})

READ_CHUNK_SIZE = 8192


@dataclass
class FetchResult:
    """A page body that was fetched and decoded successfully."""
    url: str
    status_code: int
    content: str
    headers: Optional[Dict[str, str]] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def content_length(self) -> int:
        return len(self.content) if self.content else 0


@dataclass
class FetchStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_bytes_downloaded: int = 0


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Decode with the declared charset, falling back to utf-8, cp1252 and finally latin-1."""
    for encoding in (charset, 'utf-8', 'cp1252'):
        if not encoding:
            continue
        try:
            return body.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return body.decode('latin-1')


class WebFetcher:
    """
    Fetches web pages over HTTP.

    Any failure (transport error, timeout, HTTP status >= 400, non-text
    or oversized body) is raised as FetchError so the retry policy can
    treat them alike.
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, request_timeout: float = 10.0,
                 max_connections: int = 20, max_content_size: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_connections = max_connections
        self.max_content_size = max_content_size

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None
        self._stats = FetchStats()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the shared session. Does nothing if it is already open."""
        if self.session is not None:
            return

        connector = aiohttp.TCPConnector(limit=self.max_connections, ttl_dns_cache=300)
        self.session = ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=self.request_timeout),
            headers={'User-Agent': self.user_agent}
        )
        self.logger.info(f"HTTP session opened (max {self.max_connections} connections)")

    async def close(self):
        if self.session is None:
            return
        await self.session.close()
        self.session = None
        self.logger.info("HTTP session closed")

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch
            timeout: Total timeout in seconds, defaults to request_timeout

        Raises:
            FetchError: on any failure
        """
        if self.session is None:
            await self.start()

        self._stats.total_requests += 1
        started = time.time()
        total = timeout if timeout is not None else self.request_timeout

        try:
            async with self.session.get(url, timeout=ClientTimeout(total=total)) as response:
                self._check_response(url, response)
                content = await self._read_body(url, response)

                result = FetchResult(
                    url=url,
                    status_code=response.status,
                    content=content,
                    headers=dict(response.headers),
                    fetch_time=time.time() - started,
                    content_type=response.headers.get('content-type', '').lower(),
                    encoding=response.charset
                )
        except FetchError:
            self._stats.failed_requests += 1
            raise
        except asyncio.TimeoutError as e:
            self._stats.failed_requests += 1
            self.logger.warning(f"Timed out after {total}s fetching {url}")
            raise FetchError(url, "Request timeout") from e
        except ClientError as e:
            self._stats.failed_requests += 1
            self.logger.warning(f"Connection problem fetching {url}: {e}")
            raise FetchError(url, f"Connection error: {e}") from e

        self._stats.successful_requests += 1
        self._stats.total_bytes_downloaded += result.content_length
        self.logger.debug(f"Fetched {url}: {result.status_code} ({result.content_length} chars "
                          f"in {result.fetch_time:.2f}s)")
        return result

    def _check_response(self, url: str, response: ClientResponse):
        if response.status >= 400:
            raise FetchError(url, f"HTTP error fetching URL. Status={response.status}",
                             status_code=response.status)

        content_type = response.headers.get('content-type', '')
        if content_type and response.content_type not in TEXT_MIME_TYPES:
            raise FetchError(url, f"Unhandled content type: {content_type}", status_code=response.status)

    async def _read_body(self, url: str, response: ClientResponse) -> str:
        """Read and decode the body, refusing anything above max_content_size."""
        if response.content_length is not None and response.content_length > self.max_content_size:
            raise FetchError(url, f"Content too large ({response.content_length} bytes)",
                             status_code=response.status)

        body = bytearray()
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > self.max_content_size:
                raise FetchError(url, "Content exceeded size limit during reading", status_code=response.status)

        return decode_body(bytes(body), response.charset)

    def get_stats(self) -> Dict[str, int]:
        return asdict(self._stats)

    def reset_stats(self):
        self._stats = FetchStats()
