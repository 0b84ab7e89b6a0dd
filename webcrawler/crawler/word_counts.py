"""
Ranking of aggregated word counts.
"""

import heapq
import logging
from typing import Dict, Iterable, List, Mapping, Tuple, Union

logger = logging.getLogger(__name__)

WordCount = Tuple[str, int]


def _rank_key(entry: WordCount) -> Tuple[int, int, str]:
    """More frequent words first, then longer words, then alphabetical order."""
    word, count = entry
    return (-count, -len(word), word)


def rank(counts: Union[Mapping[str, int], Iterable[WordCount]],
         popular_word_count: int) -> List[WordCount]:
    """
    Select the most popular words from a frequency mapping.

    Args:
        counts: Mapping of word to occurrence count, or an iterable of
            (word, count) pairs
        popular_word_count: Number of entries to keep

    Returns:
        New list of (word, count) pairs in rank order, at most
        popular_word_count long
    """
    if popular_word_count <= 0:
        return []

    entries = counts.items() if isinstance(counts, Mapping) else counts
    ranked = heapq.nsmallest(popular_word_count, entries, key=_rank_key)

    logger.debug(f"Ranked top {len(ranked)} of requested {popular_word_count} words")
    return [(word, count) for word, count in ranked]


def sort_word_counts(counts: Mapping[str, int], popular_word_count: int) -> Dict[str, int]:
    """Same ranking as rank(), returned as an insertion-ordered dict."""
    return dict(rank(counts, popular_word_count))
