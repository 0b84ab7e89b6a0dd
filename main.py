#!/usr/bin/env python3
"""
Main entry point for the web crawler system.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from webcrawler.utils.config import load_config, Config
from webcrawler.utils.logger import setup_logging, log_system_info
from webcrawler.utils.profiler import Profiler
from webcrawler.utils.result_writer import CrawlResultWriter
from webcrawler.crawler.page_parser import HtmlPageParser
from webcrawler.crawler.parallel_crawler import ParallelWebCrawler, CrawlResult


class CrawlerApp:
    """Main application class for the web crawler."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.profiler = Profiler()

    def build_crawler(self, config: Config) -> ParallelWebCrawler:
        """Create the page parser and crawler, both wrapped by the profiler."""
        crawler_config = config.crawler
        page_parser = self.profiler.wrap(HtmlPageParser(
            user_agent=crawler_config.user_agent,
            request_timeout=crawler_config.request_timeout,
            max_concurrent_requests=crawler_config.parallelism,
            ignored_words=crawler_config.ignored_words
        ))
        crawler = ParallelWebCrawler(
            page_parser=page_parser,
            timeout=crawler_config.timeout_seconds,
            max_depth=crawler_config.max_depth,
            popular_word_count=crawler_config.popular_word_count,
            parallelism=crawler_config.parallelism,
            ignored_urls=crawler_config.ignored_urls
        )
        return self.profiler.wrap(crawler)

    def run(self, config_path: str, result_path: Optional[str] = None,
            profile_path: Optional[str] = None) -> int:
        """Run the web crawler."""
        try:
            config = load_config(config_path)
            setup_logging(config.logging)
            log_system_info()

            self.logger.info("=== WEB CRAWLER STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Start pages: {config.crawler.start_pages}")
            self.logger.info(f"Max depth: {config.crawler.max_depth}")
            self.logger.info(f"Timeout: {config.crawler.timeout_seconds}s")
            self.logger.info(f"Requested parallelism: {config.crawler.parallelism}")

            if config.monitoring.metrics_enabled:
                self.profiler.start_metrics_server(config.monitoring.prometheus_port)

            crawler = self.build_crawler(config)
            result = crawler.crawl(config.crawler.start_pages)

            self._write_result(result, result_path or config.crawler.result_path)
            self._write_profile(profile_path or config.crawler.profile_output_path)

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            self.logger.info("=== WEB CRAWLER FINISHED ===")

        return 0

    def _write_result(self, result: CrawlResult, path: str):
        writer = CrawlResultWriter(result)
        if path:
            writer.write(path)
        else:
            writer.write_to(sys.stdout)

    def _write_profile(self, path: str):
        if path:
            self.profiler.write_data(path)
        else:
            self.profiler.write_data_to(sys.stdout)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Parallel Web Crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                  # Run with default config.yaml
  python main.py --config my_config.yaml          # Run with custom config
  python main.py --result-path out/result.json    # Append the result to a file
  python main.py --profile-path out/profile.txt   # Append timing data to a file
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file, YAML or JSON (default: config.yaml)'
    )

    parser.add_argument(
        '--result-path',
        help='File to append the crawl result to (overrides crawler.result_path)'
    )

    parser.add_argument(
        '--profile-path',
        help='File to append profiling data to (overrides crawler.profile_output_path)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Web Crawler System 1.0.0'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = CrawlerApp()
    try:
        return app.run(
            config_path=args.config,
            result_path=args.result_path,
            profile_path=args.profile_path
        )
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
