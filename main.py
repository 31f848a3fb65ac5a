import argparse
import logging
import asyncio
import os
from typing import List
from dotenv import load_dotenv

from aggregator.cache import ArticleCache, URL_LIST
from aggregator.config import Settings, load_settings
from aggregator.coordinator import RunCoordinator
from aggregator.errors import AggregatorError
from aggregator.http_client import HTTPClient
from aggregator.orchestrator import FetchOrchestrator
from aggregator.store import Store
from aggregator.urls import canonicalize

from sources.base import BaseSource
from sources.pocket import PocketSource
from sources.twitter_list import TwitterListSource


# Load env
load_dotenv()

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_sources(settings: Settings, http: HTTPClient) -> List[BaseSource]:
    sources: List[BaseSource] = []
    for config in settings.sources:
        kind = config.get("type")
        if kind == "twitter_list":
            token = os.getenv("TWITTER_BEARER_TOKEN")
            if not token:
                logger.warning("No TWITTER_BEARER_TOKEN found. Skipping Twitter list source.")
                continue
            sources.append(TwitterListSource(http, config["owner"], config["name"], token,
                                             count=config.get("count", 100)))
        elif kind == "pocket":
            consumer_key = os.getenv("POCKET_CONSUMER_KEY")
            access_token = os.getenv("POCKET_ACCESS_TOKEN")
            if not consumer_key or not access_token:
                logger.warning("No Pocket credentials found. Skipping Pocket source.")
                continue
            sources.append(PocketSource(http, consumer_key, access_token, config["username"],
                                        tag=config.get("tag", ""), timeout=settings.list_timeout))
        else:
            logger.warning(f"Unknown source type: {kind}")
    return sources


async def main(args):
    settings = load_settings(args.config)
    store = Store(settings.db_path, prefix=settings.key_prefix)

    if args.flush_cache:
        deleted = store.flush(store.key(URL_LIST))
        logger.info(f"Flushed {deleted} cache entries")
        return

    http = HTTPClient(timeout=settings.page_timeout)
    cache = ArticleCache(store, http, settings)

    if args.remove:
        for url in args.remove:
            cache.remove(canonicalize(url, settings.junk_rules))
        await http.close()
        return

    logger.info("Starting link aggregator run...")
    sources = build_sources(settings, http)
    coordinator = RunCoordinator(store, FetchOrchestrator(cache, settings), sources, settings)

    try:
        records = await coordinator.run()
    except AggregatorError as e:
        logger.error(f"Run failed: {e}")
        raise SystemExit(1)
    finally:
        await http.close()

    for record in records[:args.limit]:
        categories = f" [{', '.join(record.categories)}]" if record.categories else ""
        print(f"{record.rank:>2}  {record.title or record.url}{categories}")
        print(f"    {record.url}")


def parse_args():
    parser = argparse.ArgumentParser(description="Rank the links mentioned in your feeds.")
    parser.add_argument("--config", help="YAML config file (default: $LA_CONFIG or config.yaml)")
    parser.add_argument("--limit", type=int, default=50, help="Number of links to print")
    parser.add_argument("--flush-cache", action="store_true", help="Delete every cached URL and exit")
    parser.add_argument("--remove", nargs="+", metavar="URL", help="Never show these URLs again")
    return parser.parse_args()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
