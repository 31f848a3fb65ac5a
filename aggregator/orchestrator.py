import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from aggregator.cache import ArticleCache
from aggregator.categories import matches_ignore_word
from aggregator.config import Settings
from aggregator.freshness import filter_stale, freshest_time
from aggregator.merger import applied_count
from aggregator.models import ArticleRecord, Mention, SocialMention
from aggregator.urls import canonicalize, is_on_domain

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    def __init__(self, cache: ArticleCache, settings: Settings):
        self.cache = cache
        self.settings = settings

    def candidate_urls(self, mention: Mention) -> List[str]:
        """Canonical URLs worth resolving for one mention, in mention order."""
        raw = list(mention.urls) if isinstance(mention, SocialMention) else [mention.url]
        text = f"@{mention.author_handle}: {mention.text}" if isinstance(mention, SocialMention) else ""

        urls = []
        for url in raw:
            url = canonicalize(url, self.settings.junk_rules)
            if not url or url in urls:
                continue
            if is_on_domain(url, self.settings.platform_domains):
                logger.debug(f"Skipping non-article link {url}")
                continue
            ignored = matches_ignore_word(f"{url} {text}", self.settings.ignore_patterns)
            if ignored:
                logger.debug(f"Skipping {url}: matches ignore word {ignored!r}")
                continue
            urls.append(url)
        return urls

    async def fetch_all(self, mentions: Sequence[Mention], now: Optional[int] = None) -> List[ArticleRecord]:
        """
        Resolves every mention's URLs through the cache with bounded concurrency.
        Output order is unspecified.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.fetch_concurrency))

        async def _one(url: str, mention: Mention) -> Optional[ArticleRecord]:
            async with semaphore:
                try:
                    return await self.cache.resolve(url, mention)
                except Exception as e:
                    logger.error(f"Failed to resolve {url}: {e}")
                    return None

        jobs: List[Tuple[str, Mention]] = [
            (url, mention) for mention in mentions for url in self.candidate_urls(mention)
        ]
        logger.info(f"Resolving {len(jobs)} link(s) from {len(mentions)} mention(s)")
        results = await asyncio.gather(*(_one(url, mention) for url, mention in jobs))

        # Same URL resolved by several mentions: the record with the most mentions applied is the latest.
        by_url: Dict[str, ArticleRecord] = {}
        for record in results:
            if record is None:
                continue
            ignored = matches_ignore_word(f"{record.title} {record.excerpt}", self.settings.ignore_patterns)
            if ignored:
                logger.debug(f"Dropping {record.url}: matches ignore word {ignored!r}")
                continue
            current = by_url.get(record.url)
            if current is None or applied_count(record) > applied_count(current):
                by_url[record.url] = record

        fresh = filter_stale(by_url.values(), self.settings.max_age_days, now=now, key=freshest_time)
        logger.info(f"Fetched {len(fresh)} record(s) ({len(by_url) - len(fresh)} stale)")
        return fresh