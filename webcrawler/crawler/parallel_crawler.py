"""
Parallel crawler that walks links recursively and aggregates word counts.
"""

import asyncio
import inspect
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import psutil

from .page_parser import PageParser, ParseResult
from .word_counts import WordCount, rank
from ..utils.logger import get_crawler_logger
from ..utils.profiler import profiled


@dataclass(frozen=True)
class CrawlPolicy:
    """Limits applied to every task of one crawl."""
    deadline: float
    max_depth: int
    skip_patterns: Tuple[re.Pattern, ...]
    popular_word_count: int

    def is_skipped(self, url: str) -> bool:
        return any(pattern.fullmatch(url) for pattern in self.skip_patterns)


@dataclass(frozen=True)
class CrawlTask:
    """One URL to visit with the depth budget left for it."""
    url: str
    remaining_depth: int
    deadline: float

    def child(self, url: str) -> 'CrawlTask':
        return CrawlTask(url=url, remaining_depth=self.remaining_depth - 1, deadline=self.deadline)


class CrawlArena:
    """
    Visited URLs and word counts shared by all tasks of one crawl.
    """

    def __init__(self):
        self._visited_lock = threading.Lock()
        self._counts_lock = threading.Lock()
        self._visited: Set[str] = set()
        self._word_counts: Dict[str, int] = {}

    def mark_visited(self, url: str) -> bool:
        """Add url to the visited set. Returns False if it was already there."""
        with self._visited_lock:
            if url in self._visited:
                return False
            self._visited.add(url)
            return True

    def merge(self, word_counts: Mapping[str, int]):
        with self._counts_lock:
            for word, count in word_counts.items():
                self._word_counts[word] = self._word_counts.get(word, 0) + count

    @property
    def visited_count(self) -> int:
        with self._visited_lock:
            return len(self._visited)

    def word_counts(self) -> Dict[str, int]:
        with self._counts_lock:
            return dict(self._word_counts)


@dataclass(frozen=True)
class CrawlResult:
    """Most popular words, in rank order, and the number of URLs visited."""
    word_counts: List[WordCount] = field(default_factory=list)
    urls_visited: int = 0

    def to_dict(self) -> dict:
        return {
            'wordCounts': dict(self.word_counts),
            'urlsVisited': self.urls_visited
        }


class ParallelWebCrawler:
    """
    Crawls from a set of seed URLs, following links up to a maximum depth
    until a deadline passes.

    Every URL becomes a coroutine that parses the page and then waits for one
    child coroutine per outbound link. Parser calls are limited to
    `parallelism` at a time; synchronous parsers run on a thread pool of the
    same size.
    """

    def __init__(self, page_parser: PageParser, timeout: float, max_depth: int,
                 popular_word_count: int, parallelism: int,
                 ignored_urls: Optional[Iterable[Union[str, re.Pattern]]] = None,
                 clock: Callable[[], float] = time.monotonic):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")

        self.page_parser = page_parser
        self.timeout = timeout
        self.max_depth = max_depth
        self.popular_word_count = popular_word_count
        self.parallelism = min(parallelism, self.max_parallelism)
        self.skip_patterns = tuple(re.compile(p) for p in (ignored_urls or []))
        self.clock = clock

        self.logger = get_crawler_logger(__name__, component='parallel_crawler')

    @property
    def max_parallelism(self) -> int:
        """Number of CPUs available on this host."""
        return psutil.cpu_count() or 1

    @profiled
    def crawl(self, seed_urls: List[str]) -> CrawlResult:
        """Run a crawl on a fresh event loop and block until it finishes."""
        return asyncio.run(self.crawl_async(seed_urls))

    async def crawl_async(self, seed_urls: List[str]) -> CrawlResult:
        """
        Crawl from seed_urls and rank the words found.

        Args:
            seed_urls: Starting pages, each crawled with the full depth budget

        Returns:
            CrawlResult with the top popular_word_count words and the number
            of distinct URLs visited
        """
        start_time = time.time()
        policy = CrawlPolicy(
            deadline=self.clock() + self.timeout,
            max_depth=self.max_depth,
            skip_patterns=self.skip_patterns,
            popular_word_count=self.popular_word_count
        )
        arena = CrawlArena()

        self.logger.info(f"Starting crawl of {len(seed_urls)} seed URLs "
                         f"(max depth {self.max_depth}, parallelism {self.parallelism})")

        with ThreadPoolExecutor(max_workers=self.parallelism,
                                thread_name_prefix='crawl-worker') as executor:
            runner = _CrawlRunner(self, policy, arena, executor)
            try:
                await runner.run_all([
                    CrawlTask(url=url, remaining_depth=policy.max_depth, deadline=policy.deadline)
                    for url in seed_urls
                ])
            finally:
                try:
                    await self.page_parser.close()
                except Exception as e:
                    self.logger.warning(f"Failed to close page parser: {e}")

        word_counts = arena.word_counts()
        result = CrawlResult(
            word_counts=rank(word_counts, policy.popular_word_count),
            urls_visited=arena.visited_count
        )

        self.logger.info(f"Crawl completed in {time.time() - start_time:.2f}s: "
                         f"{result.urls_visited} URLs visited, {len(word_counts)} distinct words")
        self.logger.log_crawler_stat('urls_visited', result.urls_visited)
        return result


class _CrawlRunner:
    """Executes the tasks of a single crawl against its arena."""

    def __init__(self, crawler: ParallelWebCrawler, policy: CrawlPolicy,
                 arena: CrawlArena, executor: ThreadPoolExecutor):
        self.crawler = crawler
        self.policy = policy
        self.arena = arena
        self.executor = executor
        self.semaphore = asyncio.Semaphore(crawler.parallelism)
        self.logger = crawler.logger

    async def run_all(self, tasks: List[CrawlTask]):
        results = await asyncio.gather(*(self.run(task) for task in tasks), return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                self.logger.error(f"Crawl task for {task.url} failed: {result}", exc_info=result)

    async def run(self, task: CrawlTask):
        try:
            if not self._should_process(task):
                return

            self.logger.log_url_event(logging.DEBUG, task.url, f"Processing {task.url}")
            parse_result = await self._parse(task.url)

            self.arena.merge(parse_result.word_counts)
            if parse_result.links:
                await self.run_all([task.child(link) for link in parse_result.links])

        except Exception as e:
            self.logger.error(f"Error processing {task.url}: {e}", exc_info=True)

    def _should_process(self, task: CrawlTask) -> bool:
        if task.remaining_depth <= 0:
            return False

        if self.crawler.clock() > task.deadline:
            self.logger.log_url_event(logging.DEBUG, task.url, f"Deadline passed, skipping {task.url}")
            return False

        if self.policy.is_skipped(task.url):
            self.logger.log_url_event(logging.DEBUG, task.url, f"Skipping ignored URL: {task.url}")
            return False

        return self.arena.mark_visited(task.url)

    async def _parse(self, url: str) -> ParseResult:
        """Call the page parser; failures count as an empty page."""
        parser = self.crawler.page_parser
        async with self.semaphore:
            try:
                if inspect.iscoroutinefunction(parser.parse):
                    return await parser.parse(url)

                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self.executor, parser.parse, url)

            except Exception as e:
                self.logger.warning(f"Failed to parse {url}: {e}")
                return ParseResult()
