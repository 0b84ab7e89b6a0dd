"""
JSON output for crawl results.
"""

import json
import logging
from pathlib import Path
from typing import TextIO, Union

from ..crawler.parallel_crawler import CrawlResult


class CrawlResultWriter:
    """Writes a CrawlResult as {"wordCounts": {...}, "urlsVisited": n}."""

    def __init__(self, result: CrawlResult):
        if result is None:
            raise ValueError("result must not be None")
        self.result = result
        self.logger = logging.getLogger(__name__)

    def write(self, path: Union[str, Path]):
        """Append the result to the file at path, creating it if needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'a', encoding='utf-8') as file:
            self.write_to(file)
        self.logger.info(f"Crawl result written to {path}")

    def write_to(self, stream: TextIO):
        """Write the result to an open stream, leaving it open."""
        json.dump(self.result.to_dict(), stream, indent=2, ensure_ascii=False)
        stream.write("\n")
