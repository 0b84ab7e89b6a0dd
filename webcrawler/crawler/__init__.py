"""
Web crawler core components.
"""

from .page_parser import PageParser, HtmlPageParser, ParseResult, PageFetchError
from .fetcher import WebFetcher, FetchResult
from .parallel_crawler import ParallelWebCrawler, CrawlArena, CrawlPolicy, CrawlResult, CrawlTask
from .word_counts import rank, sort_word_counts

__all__ = [
    'PageParser', 'HtmlPageParser', 'ParseResult', 'PageFetchError',
    'WebFetcher', 'FetchResult',
    'ParallelWebCrawler', 'CrawlArena', 'CrawlPolicy', 'CrawlResult', 'CrawlTask',
    'rank', 'sort_word_counts'
]
