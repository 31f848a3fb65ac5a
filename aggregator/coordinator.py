import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from aggregator.config import Settings
from aggregator.errors import NoSourcesError, RunInProgressError
from aggregator.freshness import best_time, filter_stale, freshest_time, now_ms
from aggregator.merger import applied_count
from aggregator.models import ArticleRecord
from aggregator.orchestrator import FetchOrchestrator
from aggregator.ranking import rank
from aggregator.store import Store

logger = logging.getLogger(__name__)

RUN_FLAG = "running"
SNAPSHOT = "snapshot"


class RunCoordinator:
    """
    Drives one fetch cycle: every source -> orchestrator -> merge with the
    previous snapshot -> staleness filter -> rank -> staleness filter again
    (with rank buying extra life) -> new snapshot.
    """

    def __init__(self, store: Store, orchestrator: FetchOrchestrator, sources: Sequence, settings: Settings):
        self.store = store
        self.orchestrator = orchestrator
        self.sources = list(sources)
        self.settings = settings

    def is_running(self) -> bool:
        return bool(self.store.get(self.store.key(RUN_FLAG)))

    def load_snapshot(self) -> List[ArticleRecord]:
        data = self.store.get(self.store.key(SNAPSHOT)) or []
        return [ArticleRecord.from_dict(item) for item in data]

    async def run(self, previous: Optional[List[ArticleRecord]] = None, now: Optional[int] = None) -> List[ArticleRecord]:
        """
        Runs one cycle and returns the ranked snapshot.
        Raises RunInProgressError immediately if another run holds the flag.
        """
        flag = self.store.key(RUN_FLAG)
        now = now if now is not None else now_ms()
        if not self.store.claim(flag, now):
            raise RunInProgressError("A run is already in progress")

        try:
            return await self._run(previous, now)
        finally:
            self.store.delete(flag)

    async def _fetch_source(self, source, semaphore: asyncio.Semaphore, now: int) -> Optional[List[ArticleRecord]]:
        async with semaphore:
            logger.info(f"Running source: {source.name}")
            try:
                mentions = await source.fetch_mentions()
            except Exception as e:
                logger.error(f"Source {source.name} failed: {e}")
                return None
        logger.info(f"Found {len(mentions)} mentions from {source.name}")
        return await self.orchestrator.fetch_all(mentions, now=now)

    async def _run(self, previous: Optional[List[ArticleRecord]], now: int) -> List[ArticleRecord]:
        semaphore = asyncio.Semaphore(max(1, self.settings.source_concurrency))
        results = await asyncio.gather(*(self._fetch_source(s, semaphore, now) for s in self.sources))
        batches = [batch for batch in results if batch is not None]

        if previous is None:
            previous = self.load_snapshot()
        if not batches and not previous:
            raise NoSourcesError("No source could be fetched and there is no previous snapshot")
        if len(batches) < len(self.sources):
            logger.warning(f"{len(self.sources) - len(batches)} of {len(self.sources)} source(s) failed")

        merged: Dict[str, ArticleRecord] = {}
        for record in previous:
            entry = self.orchestrator.cache.get_entry(record.url)
            if entry is not None and entry.is_terminal:
                logger.debug(f"Dropping {record.url} from previous snapshot: {entry.kind}")
                continue
            merged[record.url] = record
        fresh: Dict[str, ArticleRecord] = {}
        for batch in batches:
            for record in batch:
                current = fresh.get(record.url)
                if current is None or applied_count(record) > applied_count(current):
                    fresh[record.url] = record
        merged.update(fresh)

        records = filter_stale(merged.values(), self.settings.max_age_days, now=now, key=freshest_time)
        records = rank(records)
        records = filter_stale(
            records,
            self.settings.max_age_days,
            now=now,
            key=best_time,
            rank_bonus_days=self.settings.rank_bonus_days,
        )

        self.store.set(self.store.key(SNAPSHOT), [r.to_dict() for r in records])
        logger.info(f"Run complete: {len(records)} records in snapshot")
        return records
