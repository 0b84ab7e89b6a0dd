"""
Web page fetcher used by the HTML page parser.
"""

import asyncio
import aiohttp
import logging
import time
from pathlib import Path
from typing import Optional, Dict
from urllib.parse import urlparse
from urllib.request import url2pathname
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10MB


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None
    encoding: Optional[str] = None


class WebFetcher:
    """
    Fetches web pages over HTTP(S), and local pages through file:// URLs.

    The aiohttp session is opened lazily by start() inside the running event
    loop and must be released with close() before that loop ends.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None
        self.semaphore: Optional[asyncio.Semaphore] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.semaphore = asyncio.Semaphore(self.max_concurrent_requests)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.semaphore = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult object containing the response data or error information
        """
        if urlparse(url).scheme == 'file':
            return await self._fetch_file(url)

        await self.start()
        start_time = time.time()

        async with self.semaphore:
            try:
                self.stats['total_requests'] += 1

                async with self.session.get(url) as response:
                    fetch_time = time.time() - start_time

                    headers = dict(response.headers)
                    content_type = response.headers.get('content-type', '').lower()

                    if not self._is_text_content(content_type):
                        self.stats['failed_requests'] += 1
                        self.logger.debug(f"Skipping non-text content: {url} ({content_type})")
                        return FetchResult(
                            url=url,
                            status_code=response.status,
                            headers=headers,
                            content_type=content_type,
                            error="Non-text content type",
                            fetch_time=fetch_time
                        )

                    if response.status >= 400:
                        self.stats['failed_requests'] += 1
                        return FetchResult(
                            url=url,
                            status_code=response.status,
                            headers=headers,
                            content_type=content_type,
                            error=f"HTTP {response.status}",
                            fetch_time=fetch_time
                        )

                    content = await self._read_content_safely(response)

                    if content:
                        self.stats['total_bytes_downloaded'] += len(content)
                        self.stats['successful_requests'] += 1

                    self.logger.debug(f"Fetched {url}: {response.status} ({len(content) if content else 0} bytes)")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        content=content,
                        headers=headers,
                        content_type=content_type,
                        encoding=response.charset,
                        fetch_time=fetch_time
                    )

            except asyncio.TimeoutError:
                self.stats['failed_requests'] += 1
                error_msg = "Request timeout"
                self.logger.warning(f"Timeout fetching {url}")

            except ClientError as e:
                self.stats['failed_requests'] += 1
                error_msg = f"Client error: {str(e)}"
                self.logger.warning(f"Client error fetching {url}: {e}")

            return FetchResult(
                url=url,
                status_code=0,
                error=error_msg,
                fetch_time=time.time() - start_time
            )

    async def _fetch_file(self, url: str) -> FetchResult:
        """Read a file:// URL from the local disk."""
        start_time = time.time()
        path = Path(url2pathname(urlparse(url).path))
        self.stats['total_requests'] += 1

        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Could not read {url}: {e}")
            return FetchResult(
                url=url,
                status_code=404,
                error=f"File error: {e}",
                fetch_time=time.time() - start_time
            )

        if len(raw) > MAX_CONTENT_SIZE:
            self.stats['failed_requests'] += 1
            return FetchResult(
                url=url,
                status_code=413,
                error="Content too large",
                fetch_time=time.time() - start_time
            )

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(raw)
        return FetchResult(
            url=url,
            status_code=200,
            content=self._decode(raw, None),
            content_type='text/html',
            fetch_time=time.time() - start_time
        )

    def _is_text_content(self, content_type: str) -> bool:
        """Check if content type is text-based."""
        text_types = [
            'text/html',
            'text/plain',
            'text/xml',
            'application/xml',
            'application/xhtml+xml'
        ]

        return any(text_type in content_type for text_type in text_types)

    async def _read_content_safely(self, response, max_size: int = MAX_CONTENT_SIZE) -> Optional[str]:
        """
        Safely read response content with size limit.

        Args:
            response: aiohttp response object
            max_size: Maximum content size in bytes (default 10MB)

        Returns:
            Content string or None if too large
        """
        content_length = response.headers.get('content-length')
        if content_length and int(content_length) > max_size:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        # Read content in chunks to respect size limit
        content_bytes = b''
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > max_size:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None

        return self._decode(content_bytes, response.charset)

    @staticmethod
    def _decode(content_bytes: bytes, charset: Optional[str]) -> str:
        encoding = charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Try common encodings
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            # latin-1 maps every byte
            return content_bytes.decode('latin-1')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()

    def reset_stats(self):
        """Reset statistics counters."""
        for key in self.stats:
            self.stats[key] = 0
