"""
Page parsers that turn a URL into word counts and outbound links.
"""

import asyncio
import re
import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Awaitable, Dict, Iterable, List, Optional, Union
from urllib.parse import urljoin, urlparse, urlunparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment

from .fetcher import WebFetcher
from ..utils.profiler import profiled


DEFAULT_USER_AGENT = "WebCrawler/1.0"

SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.ico', '.woff', '.woff2', '.ttf', '.eot'
)


class PageFetchError(Exception):
    """Raised when a page could not be fetched."""


@dataclass
class ParseResult:
    """Word counts and outbound links found on one page."""
    word_counts: Dict[str, int] = field(default_factory=dict)
    links: List[str] = field(default_factory=list)


class PageParser(ABC):
    """
    Source of word counts and links for the crawler.

    parse() may be a plain method or a coroutine. Plain implementations are
    run on the crawler's worker threads.
    """

    @abstractmethod
    def parse(self, url: str) -> Union[ParseResult, Awaitable[ParseResult]]:
        """Return the words and links found at url."""

    async def close(self):
        """Release resources held between crawls."""


class HtmlPageParser(PageParser):
    """
    Fetches HTML pages and extracts normalized words and absolute links.
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, request_timeout: int = 30,
                 max_concurrent_requests: int = 10,
                 ignored_words: Optional[Iterable[Union[str, re.Pattern]]] = None):
        self.fetcher = WebFetcher(
            user_agent=user_agent,
            request_timeout=request_timeout,
            max_concurrent_requests=max_concurrent_requests
        )
        self.ignored_words = [re.compile(p) for p in (ignored_words or [])]
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')
        self.non_word_pattern = re.compile(r'\W')

    @profiled
    async def parse(self, url: str) -> ParseResult:
        """
        Fetch a page and extract its words and links.

        Raises:
            PageFetchError: if the page could not be downloaded
        """
        fetch_result = await self.fetcher.fetch(url)
        if fetch_result.error or fetch_result.content is None:
            raise PageFetchError(f"Failed to fetch {url}: {fetch_result.error or 'no content'}")

        return await asyncio.to_thread(self.parse_html, url, fetch_result.content)

    def parse_html(self, url: str, html_content: str) -> ParseResult:
        """
        Extract words and links from already downloaded HTML.

        Args:
            url: The URL the HTML was loaded from, used to resolve relative links
            html_content: Raw HTML content

        Returns:
            ParseResult with word counts and deduplicated absolute links
        """
        soup = BeautifulSoup(html_content, 'lxml')

        # Remove script and style elements
        for script in soup(["script", "style", "noscript"]):
            script.decompose()

        # Remove comments
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        result = ParseResult(
            word_counts=self._count_words(soup),
            links=self._extract_links(soup, url)
        )

        self.logger.debug(f"Parsed {url}: {sum(result.word_counts.values())} words, "
                          f"{len(result.links)} links")
        return result

    async def close(self):
        await self.fetcher.close()

    def _count_words(self, soup: BeautifulSoup) -> Dict[str, int]:
        content_element = soup.find('body') or soup
        text = content_element.get_text(separator=' ', strip=True)

        counts = Counter()
        for token in self.whitespace_pattern.split(text):
            word = self.non_word_pattern.sub('', token).lower()
            if not word or self._is_ignored(word):
                continue
            counts[word] += 1
        return dict(counts)

    def _is_ignored(self, word: str) -> bool:
        return any(pattern.fullmatch(word) for pattern in self.ignored_words)

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract and normalize links, keeping document order."""
        links = {}

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith('#'):
                continue

            normalized_url = self._normalize_url(urljoin(base_url, href))
            if self._is_valid_url(normalized_url):
                links.setdefault(normalized_url, None)

        return list(links)

    def _normalize_url(self, url: str) -> str:
        """Normalize URL by lower-casing the host and removing the fragment."""
        parsed = urlparse(url)
        return urlunparse((
            parsed.scheme,
            parsed.netloc.lower(),
            parsed.path,
            parsed.params,
            parsed.query,
            ''
        ))

    def _is_valid_url(self, url: str) -> bool:
        """Check if URL is a crawlable page."""
        parsed = urlparse(url)

        if parsed.scheme == 'file':
            return bool(parsed.path) and not parsed.path.lower().endswith(SKIP_EXTENSIONS)

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return False

        return not parsed.path.lower().endswith(SKIP_EXTENSIONS)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.fetcher.get_stats()
