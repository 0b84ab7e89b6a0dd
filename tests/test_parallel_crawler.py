"""Tests for the parallel crawler, using in-memory link graphs."""

import asyncio
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import psutil
import pytest

from webcrawler.crawler.page_parser import PageParser, ParseResult
from webcrawler.crawler.parallel_crawler import CrawlArena, CrawlResult, ParallelWebCrawler


class GraphPageParser(PageParser):
    """Synchronous parser serving a fixed link graph."""

    def __init__(self, links=None, words=None, failing=()):
        self.links = links or {}
        self.words = words or {}
        self.failing = set(failing)
        self.calls = Counter()
        self.closed = 0
        self._lock = threading.Lock()

    def parse(self, url):
        with self._lock:
            self.calls[url] += 1
        if url in self.failing:
            raise ConnectionError(f"cannot reach {url}")
        return ParseResult(word_counts=dict(self.words.get(url, {})),
                           links=list(self.links.get(url, [])))

    async def close(self):
        self.closed += 1


class AsyncGraphPageParser(GraphPageParser):
    """Coroutine parser serving a fixed link graph."""

    async def parse(self, url):
        await asyncio.sleep(0)
        return GraphPageParser.parse(self, url)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_crawler(parser, max_depth=10, timeout=60, popular_word_count=5,
                 parallelism=4, ignored_urls=None, clock=None):
    kwargs = {}
    if clock is not None:
        kwargs['clock'] = clock
    return ParallelWebCrawler(
        page_parser=parser,
        timeout=timeout,
        max_depth=max_depth,
        popular_word_count=popular_word_count,
        parallelism=parallelism,
        ignored_urls=ignored_urls,
        **kwargs
    )


DIAMOND = {
    "http://a": ["http://b", "http://c"],
    "http://b": ["http://d", "http://a"],
    "http://c": ["http://d", "http://b"],
    "http://d": ["http://a", "http://e"],
    "http://e": [],
}


class TestConstruction:
    """Tests for construction-time validation."""

    def test_negative_depth_rejected(self):
        with pytest.raises(ValueError):
            make_crawler(GraphPageParser(), max_depth=-1)

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_non_positive_timeout_rejected(self, timeout):
        with pytest.raises(ValueError):
            make_crawler(GraphPageParser(), timeout=timeout)

    def test_zero_parallelism_rejected(self):
        with pytest.raises(ValueError):
            make_crawler(GraphPageParser(), parallelism=0)

    def test_parallelism_capped_at_cpu_count(self):
        crawler = make_crawler(GraphPageParser(), parallelism=100_000)
        assert crawler.parallelism == crawler.max_parallelism
        assert crawler.max_parallelism == (psutil.cpu_count() or 1)

    def test_small_parallelism_kept(self):
        crawler = make_crawler(GraphPageParser(), parallelism=1)
        assert crawler.parallelism == 1


class TestCrawl:
    """Tests for traversal, deduplication and limits."""

    def test_empty_seed_list(self):
        parser = GraphPageParser()
        result = make_crawler(parser).crawl([])
        assert result == CrawlResult(word_counts=[], urls_visited=0)
        assert not parser.calls

    def test_zero_depth_visits_nothing(self):
        parser = GraphPageParser(words={"https://x": {"word": 1}})
        result = make_crawler(parser, max_depth=0).crawl(["https://x"])
        assert result.urls_visited == 0
        assert result.word_counts == []
        assert not parser.calls

    def test_expired_deadline_visits_nothing(self):
        class ExpiringClock:
            calls = 0

            def __call__(self):
                # First call computes the deadline, every later one is past it
                self.calls += 1
                return 0.0 if self.calls == 1 else 1_000.0

        parser = GraphPageParser(links=DIAMOND)
        result = make_crawler(parser, timeout=1, clock=ExpiringClock()).crawl(
            ["http://a", "http://b", "http://c"])
        assert result.urls_visited == 0
        assert not parser.calls

    def test_deadline_passing_mid_crawl_stops_new_tasks(self):
        clock = FakeClock()

        class SlowParser(GraphPageParser):
            def parse(self, url):
                clock.now += 100
                return super().parse(url)

        parser = SlowParser(links=DIAMOND, words={"http://a": {"seed": 1}})
        result = make_crawler(parser, timeout=10, clock=clock).crawl(["http://a"])
        assert result.urls_visited == 1
        assert result.word_counts == [("seed", 1)]
        assert set(parser.calls) == {"http://a"}

    def test_skipped_seed_not_visited(self):
        parser = GraphPageParser(links={"http://skip.me/page": ["http://other"]})
        crawler = make_crawler(parser, ignored_urls=[r"http://skip\.me/.*"])
        result = crawler.crawl(["http://skip.me/page"])
        assert result.urls_visited == 0
        assert not parser.calls

    def test_skip_pattern_must_match_whole_url(self):
        parser = GraphPageParser()
        crawler = make_crawler(parser, ignored_urls=["skip"])
        result = crawler.crawl(["http://skip.example"])
        assert result.urls_visited == 1

    def test_skipped_links_are_not_followed(self):
        links = {"http://a": ["http://a/image.png", "http://b"]}
        parser = GraphPageParser(links=links)
        result = make_crawler(parser, ignored_urls=[r".*\.png"]).crawl(["http://a"])
        assert result.urls_visited == 2
        assert "http://a/image.png" not in parser.calls

    def test_each_url_parsed_once(self):
        parser = GraphPageParser(links=DIAMOND)
        result = make_crawler(parser, max_depth=10).crawl(["http://a", "http://d", "http://a"])
        assert result.urls_visited == 5
        assert set(parser.calls) == set(DIAMOND)
        assert all(count == 1 for count in parser.calls.values())

    def test_depth_bound(self):
        chain = {
            "http://1": ["http://2"],
            "http://2": ["http://3"],
            "http://3": ["http://4"],
            "http://4": [],
        }
        parser = GraphPageParser(links=chain)
        result = make_crawler(parser, max_depth=2).crawl(["http://1"])
        assert result.urls_visited == 2
        assert set(parser.calls) == {"http://1", "http://2"}

    @pytest.mark.parametrize("parallelism", [1, 2, 8])
    def test_visited_count_independent_of_parallelism(self, parallelism):
        # 12 reachable nodes (n0..n11) plus an unreachable one; the depth
        # budget exceeds any simple path, so every reachable node is visited
        links = {f"http://n{i}": [f"http://n{(i * 3 + j) % 12}" for j in range(1, 4)]
                 for i in range(12)}
        links["http://island"] = ["http://n0"]
        words = {f"http://n{i}": {"page": 1, f"w{i % 5}": 2} for i in range(12)}

        parser = GraphPageParser(links=links, words=words)
        result = make_crawler(parser, max_depth=20, popular_word_count=10,
                              parallelism=parallelism).crawl(["http://n0"])

        assert result.urls_visited == 12
        assert "http://island" not in parser.calls
        assert all(count == 1 for count in parser.calls.values())
        assert result.word_counts == [
            ("page", 12), ("w0", 6), ("w1", 6), ("w2", 4), ("w3", 4), ("w4", 4)
        ]

    def test_word_counts_are_summed_and_ranked(self):
        words = {
            "http://a": {"crawler": 2, "web": 1},
            "http://b": {"crawler": 1, "web": 2, "python": 1},
            "http://c": {"python": 1, "go": 3},
        }
        links = {"http://a": ["http://b", "http://c"]}
        parser = GraphPageParser(links=links, words=words)
        result = make_crawler(parser, popular_word_count=3).crawl(["http://a"])
        assert result.word_counts == [("crawler", 3), ("web", 3), ("go", 3)]
        assert result.urls_visited == 3

    def test_failing_page_still_counts_as_visited(self):
        links = {"http://a": ["http://broken", "http://b"], "http://broken": ["http://c"]}
        words = {"http://b": {"fine": 1}}
        parser = GraphPageParser(links=links, words=words, failing={"http://broken"})
        result = make_crawler(parser).crawl(["http://a"])
        assert result.urls_visited == 3
        assert result.word_counts == [("fine", 1)]
        assert "http://c" not in parser.calls

    def test_all_pages_failing_returns_empty_result(self):
        parser = GraphPageParser(failing={"http://a", "http://b"})
        result = make_crawler(parser).crawl(["http://a", "http://b"])
        assert result == CrawlResult(word_counts=[], urls_visited=2)

    def test_coroutine_parser(self):
        parser = AsyncGraphPageParser(links=DIAMOND, words={"http://e": {"leaf": 4}})
        result = make_crawler(parser).crawl(["http://a"])
        assert result.urls_visited == 5
        assert result.word_counts == [("leaf", 4)]
        assert all(count == 1 for count in parser.calls.values())

    def test_parser_closed_after_crawl(self):
        parser = GraphPageParser(links=DIAMOND)
        crawler = make_crawler(parser)
        crawler.crawl(["http://a"])
        crawler.crawl([])
        assert parser.closed == 2

    def test_failing_close_does_not_abort_crawl(self, caplog):
        class FailingCloseParser(GraphPageParser):
            async def close(self):
                raise RuntimeError("session already gone")

        parser = FailingCloseParser(links=DIAMOND, words={"http://a": {"kept": 2}})
        with caplog.at_level("WARNING"):
            result = make_crawler(parser).crawl(["http://a"])

        assert result == CrawlResult(word_counts=[("kept", 2)], urls_visited=5)
        assert "Failed to close page parser" in caplog.text

    def test_state_does_not_leak_between_crawls(self):
        parser = GraphPageParser(words={"http://a": {"once": 1}})
        crawler = make_crawler(parser)
        first = crawler.crawl(["http://a"])
        second = crawler.crawl(["http://a"])
        assert first == second == CrawlResult(word_counts=[("once", 1)], urls_visited=1)
        assert parser.calls["http://a"] == 2

    def test_crawl_async(self):
        parser = GraphPageParser(links=DIAMOND)
        result = asyncio.run(make_crawler(parser).crawl_async(["http://c"]))
        assert result.urls_visited == 5

    def test_to_dict(self):
        result = CrawlResult(word_counts=[("beta", 3), ("alpha", 3)], urls_visited=7)
        assert result.to_dict() == {"wordCounts": {"beta": 3, "alpha": 3}, "urlsVisited": 7}
        assert list(result.to_dict()["wordCounts"]) == ["beta", "alpha"]


class TestCrawlArena:
    """Tests for the shared visited set and word counts."""

    def test_mark_visited_only_once(self):
        arena = CrawlArena()
        assert arena.mark_visited("http://a") is True
        assert arena.mark_visited("http://a") is False
        assert arena.visited_count == 1

    def test_concurrent_mark_visited_has_single_winner(self):
        arena = CrawlArena()
        barrier = threading.Barrier(16)

        def attempt(_):
            barrier.wait()
            return arena.mark_visited("http://contended")

        with ThreadPoolExecutor(max_workers=16) as executor:
            outcomes = list(executor.map(attempt, range(16)))

        assert outcomes.count(True) == 1
        assert arena.visited_count == 1

    def test_concurrent_merge_loses_no_updates(self):
        arena = CrawlArena()

        def merge(_):
            for _ in range(200):
                arena.merge({"shared": 1, "other": 2})

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(merge, range(8)))

        assert arena.word_counts() == {"shared": 1600, "other": 3200}

    def test_word_counts_returns_copy(self):
        arena = CrawlArena()
        arena.merge({"word": 1})
        snapshot = arena.word_counts()
        snapshot["word"] = 100
        assert arena.word_counts() == {"word": 1}
