import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

import httpx

from aggregator.config import Settings
from aggregator.extractor import extract_metadata
from aggregator.merger import apply_metadata, merge
from aggregator.models import ArticleRecord, CacheEntry, Mention, PageResponse
from aggregator.store import Store
from aggregator.urls import canonicalize

logger = logging.getLogger(__name__)

URL_LIST = "urls"
MAX_REDIRECTS = 5
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TRANSIENT_STATUSES = {408, 429}


class ArticleCache:
    """
    Canonical URL -> CacheEntry, persisted in the store.

    Every outcome of a fetch is remembered (resolved record, redirect pointer,
    terminal error) so a URL hits the network at most once for the lifetime of
    the store. Transient failures are the exception: they are not remembered
    and get retried on a later run.
    """

    def __init__(self, store: Store, http_client, settings: Settings):
        self.store = store
        self.http_client = http_client
        self.settings = settings
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _locked(self, url: str):
        """Holds the lock for url; the lock is dropped once nobody holds or waits for it."""
        lock, users = self._locks.get(url) or (asyncio.Lock(), 0)
        self._locks[url] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[url]
            if users > 1:
                self._locks[url] = (lock, users - 1)
            else:
                del self._locks[url]

    def get_entry(self, url: str) -> Optional[CacheEntry]:
        data = self.store.get(self.store.key(url))
        return CacheEntry.from_dict(data) if data else None

    def _put(self, url: str, entry: CacheEntry):
        self.store.set(self.store.key(url), entry.to_dict())

    def remove(self, url: str):
        """Tombstones url: it will never be fetched or returned again."""
        self._put(url, CacheEntry(kind=CacheEntry.REMOVED))
        logger.info(f"Marked {url} as removed")

    def known_urls(self):
        return self.store.lrange(self.store.key(URL_LIST))

    async def resolve(self, url: str, mention: Mention) -> Optional[ArticleRecord]:
        """
        Returns the record for url with mention merged in, or None when the
        URL is unusable (error, removed, circular redirect, transient failure).
        """
        pending: Optional[PageResponse] = None
        for _ in range(MAX_REDIRECTS + 1):
            record, target, pending = await self._resolve_one(url, mention, pending)
            if target is None:
                return record
            url = target
        logger.warning(f"Too many redirects resolving {url}, dropping mention")
        return None

    async def _resolve_one(
        self, url: str, mention: Mention, response: Optional[PageResponse]
    ) -> Tuple[Optional[ArticleRecord], Optional[str], Optional[PageResponse]]:
        """
        Handles one URL under its lock.
        Returns (record, None, None) when done or (None, next_url, response) to follow a redirect;
        response is the already fetched page for next_url, if any.
        """
        async with self._locked(url):
            entry = self.get_entry(url)

            if entry is None:
                if response is None:
                    response = await self._fetch(url)
                    if response is None:
                        return None, None, None

                    reason = self._classify(response)
                    if reason:
                        if reason.startswith("transient"):
                            logger.warning(f"Not caching {url}: {reason}")
                        else:
                            logger.info(f"Caching scrape error for {url}: {reason}")
                            self._put(url, CacheEntry(kind=CacheEntry.ERROR, reason=reason))
                        return None, None, None

                    final_url = canonicalize(response.final_url, self.settings.junk_rules)
                    if final_url and final_url != url:
                        logger.info(f"{url} redirects to {final_url}")
                        self._put(url, CacheEntry(kind=CacheEntry.REDIRECT, target=final_url))
                        return None, final_url, response

                record = await self._scrape(url, response, mention)
                return record, None, None

            if entry.is_terminal:
                logger.debug(f"Skipping {url}: cached {entry.kind}")
                return None, None, None

            if entry.kind == CacheEntry.REDIRECT:
                if entry.target == url:
                    logger.warning(f"Circular redirect for {url}, dropping mention")
                    return None, None, None
                return None, entry.target, None

            record = merge(entry.record, mention, self.settings.categories)
            self._put(url, CacheEntry(kind=CacheEntry.RESOLVED, record=record))
            return record, None, None

    async def _fetch(self, url: str) -> Optional[PageResponse]:
        try:
            return await self.http_client.fetch_page(url)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch {url}: {e!r}")
            return None

    def _classify(self, response: PageResponse) -> Optional[str]:
        """None when the page is usable, else a reason. Reasons starting with 'transient' are not cached."""
        status = response.status
        if status in TRANSIENT_STATUSES or status >= 500:
            return f"transient HTTP status {status}"
        if not 200 <= status < 300:
            return f"HTTP status {status}"
        content_type = response.content_type.lower()
        if content_type and not any(t in content_type for t in HTML_CONTENT_TYPES):
            return f"not HTML: {content_type}"
        return None

    async def _scrape(self, url: str, response: PageResponse, mention: Mention) -> ArticleRecord:
        metadata = await asyncio.to_thread(extract_metadata, response.body, url)
        record = apply_metadata(ArticleRecord(url=url), metadata)
        record = merge(record, mention, self.settings.categories)
        self._put(url, CacheEntry(kind=CacheEntry.RESOLVED, record=record))
        self.store.unique_lpush(self.store.key(URL_LIST), url)
        logger.info(f"Cached {url}: {record.title!r}")
        return record
