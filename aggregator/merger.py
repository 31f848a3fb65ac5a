import copy
import logging
from typing import Iterable, List, Optional

from aggregator.categories import get_categories_from_text
from aggregator.models import (
    ArticleRecord,
    BookmarkMention,
    CategoryRule,
    Mention,
    PageMetadata,
    SocialMention,
    SOCIAL,
    BOOKMARK,
)

logger = logging.getLogger(__name__)


def _add_unique(items: List, values: Iterable):
    for value in values:
        if value not in items:
            items.append(value)


def applied_count(record: ArticleRecord) -> int:
    return len(record.mention_ids) + len(record.bookmark_ids)


def already_applied(record: ArticleRecord, mention: Mention) -> bool:
    if isinstance(mention, SocialMention):
        return mention.mention_id in record.mention_ids
    return mention.bookmark_id in record.bookmark_ids


def mention_time(mention: Mention) -> int:
    if isinstance(mention, SocialMention):
        return mention.created_at
    return mention.saved_at


def apply_metadata(record: ArticleRecord, metadata: PageMetadata) -> ArticleRecord:
    """Fills a fresh record with scraped page metadata."""
    record.title = metadata.title or record.title
    record.excerpt = metadata.excerpt or record.excerpt
    record.published_time = metadata.published_time or None
    record.author = metadata.author or None
    return record


def categorize(record: ArticleRecord, rules: Iterable[CategoryRule]) -> List[str]:
    """
    Categories from URL + title; the excerpt is only consulted when those match nothing.
    """
    rules = list(rules)
    found = get_categories_from_text(f"{record.url} {record.title}", rules)
    if not found:
        found = get_categories_from_text(record.excerpt, rules)
    return found


def merge(record: Optional[ArticleRecord], mention: Mention, rules: Iterable[CategoryRule] = ()) -> ArticleRecord:
    """
    Applies one source mention to a record and returns the updated copy.
    A mention id that was already applied leaves the record unchanged.
    """
    if record is None:
        url = mention.url if isinstance(mention, BookmarkMention) else (mention.urls[0] if mention.urls else "")
        record = ArticleRecord(url=url)

    if already_applied(record, mention):
        logger.debug(f"Mention already applied to {record.url}, skipping")
        return record

    merged = copy.deepcopy(record)
    when = mention_time(mention)

    if isinstance(mention, SocialMention):
        _add_unique(merged.sources, [SOCIAL])
        _add_unique(merged.source_details, [f"{mention.source_owner}/{mention.source_list_name}"])
        merged.mention_ids.append(mention.mention_id)
        _add_unique(merged.texts, [f"@{mention.author_handle}: {mention.text}"])
        _add_unique(merged.hashtags, mention.hashtags)
        _add_unique(merged.media, mention.media)
        merged.mention_count += 1
        merged.retweet_count += mention.retweet_count
        merged.favorite_count += mention.favorite_count
    else:
        _add_unique(merged.sources, [BOOKMARK])
        _add_unique(merged.source_details, [mention.collector_username])
        merged.bookmark_ids.append(mention.bookmark_id)
        merged.bookmarks.append({
            "tag": mention.tag,
            "saved_at": mention.saved_at,
            "bookmark_id": mention.bookmark_id,
        })
        if not merged.title and mention.title:
            merged.title = mention.title
        if not merged.excerpt and mention.excerpt:
            merged.excerpt = mention.excerpt

    if when:
        if not merged.first_mention_time or when < merged.first_mention_time:
            merged.first_mention_time = when
        if not merged.last_mention_time or when > merged.last_mention_time:
            merged.last_mention_time = when

    if not merged.best_time:
        merged.best_time = merged.published_time or when or None

    _add_unique(merged.categories, categorize(merged, rules))
    return merged
