"""
Popularity ranking.

Raw engagement numbers are heavily skewed (one viral post can out-favorite a
whole list), so each metric is first mapped onto a decile bucket. The buckets
are combined into a composite with bookmarks most significant, then retweets,
then favorites, and the composite is bucketed again into the final 1-10 rank.
"""

import math
import logging
from typing import List, Sequence

from aggregator.models import ArticleRecord

logger = logging.getLogger(__name__)

SEGMENTS = 10


def get_standardized_segments(values: Sequence[float], segments: int = SEGMENTS) -> List[float]:
    """
    Upper boundaries of `segments` equal-population buckets over values.

    Fewer values than buckets are left-padded with zeros. With a fractional
    bucket width each boundary is nudged up by a tenth of itself.
    """
    ordered = sorted(values)
    if len(ordered) < segments:
        ordered = [0] * (segments - len(ordered)) + ordered

    width = len(ordered) / segments
    fractional = not width.is_integer()

    boundaries = []
    position = 0.0
    for _ in range(segments):
        position += width
        index = min(max(int(math.floor(position)) - 1, 0), len(ordered) - 1)
        value = ordered[index]
        if fractional:
            value += value / 10
        boundaries.append(value)
    return boundaries


def get_segment_position(value: float, segments: Sequence[float]) -> int:
    """Index of the first boundary value does not exceed; past the end maps to the last bucket."""
    for index, boundary in enumerate(segments):
        if value <= boundary:
            return index
    return len(segments) - 1


def rank(records: Sequence[ArticleRecord]) -> List[ArticleRecord]:
    """Annotates records with rank_raw and rank (1-10) and returns them best first."""
    records = list(records)
    if not records:
        return []

    favorite_segments = get_standardized_segments([r.favorite_count for r in records])
    retweet_segments = get_standardized_segments([r.retweet_count for r in records])
    bookmark_segments = get_standardized_segments([r.bookmark_count for r in records])

    for record in records:
        bookmark_bucket = get_segment_position(record.bookmark_count, bookmark_segments)
        retweet_bucket = get_segment_position(record.retweet_count, retweet_segments)
        favorite_bucket = get_segment_position(record.favorite_count, favorite_segments)
        record.rank_raw = int(f"{bookmark_bucket}{retweet_bucket}{favorite_bucket}") * 1000

    records.sort(
        key=lambda r: (r.rank_raw, r.retweet_count, r.favorite_count, r.best_time or 0),
        reverse=True,
    )

    rank_segments = get_standardized_segments(sorted({r.rank_raw for r in records}))
    for record in records:
        record.rank = get_segment_position(record.rank_raw, rank_segments) + 1

    logger.info(f"Ranked {len(records)} records")
    return records
