import time
import logging
from typing import Callable, Iterable, List, Optional

from aggregator.models import ArticleRecord

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def freshest_time(record: ArticleRecord) -> int:
    """Newest of published time, last mention and bookmark saves."""
    times = [record.published_time or 0, record.last_mention_time or 0]
    times.extend(b.get("saved_at") or 0 for b in record.bookmarks)
    return max(times)


def best_time(record: ArticleRecord) -> int:
    return record.best_time or 0


def filter_stale(
    records: Iterable[ArticleRecord],
    max_age_days: float,
    now: Optional[int] = None,
    key: Callable[[ArticleRecord], int] = freshest_time,
    rank_bonus_days: float = 0,
) -> List[ArticleRecord]:
    """
    Drops records whose key time is older than max_age_days.
    Each rank point buys rank_bonus_days of extra life. Unknown times (0) are kept.
    """
    now = now if now is not None else now_ms()
    kept = []
    for record in records:
        timestamp = key(record)
        allowed_ms = (max_age_days + (record.rank or 0) * rank_bonus_days) * DAY_MS
        if timestamp and now - timestamp > allowed_ms:
            logger.debug(f"Dropping stale record {record.url}")
            continue
        kept.append(record)
    return kept
