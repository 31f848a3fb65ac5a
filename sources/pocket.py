from typing import Any, Dict, List
import asyncio
import logging

import httpx

from aggregator.errors import SourceError
from aggregator.http_client import HTTPClient
from aggregator.models import BookmarkMention
from sources.base import BaseSource

logger = logging.getLogger(__name__)


class PocketSource(BaseSource):
    """A user's Pocket list, optionally limited to one tag. Already curated, so no keyword filtering here."""

    API_URL = "https://getpocket.com/v3/get"

    def __init__(self, http_client: HTTPClient, consumer_key: str, access_token: str,
                 username: str, tag: str = "", timeout: float = 8.0):
        super().__init__(http_client)
        self.consumer_key = consumer_key
        self.access_token = access_token
        self.username = username
        self.tag = tag
        self.timeout = timeout
        self.name = f"pocket:{username}" + (f"/{tag}" if tag else "")

    async def fetch_mentions(self) -> List[BookmarkMention]:
        payload = {
            "consumer_key": self.consumer_key,
            "access_token": self.access_token,
            "detailType": "simple",
        }
        if self.tag:
            payload["tag"] = self.tag

        try:
            reply = await asyncio.wait_for(
                self.http_client.request_json(
                    "POST", self.API_URL, json=payload,
                    headers={"X-Accept": "application/json"},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise SourceError(f"{self.name}: request timeout") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceError(f"{self.name}: {e}") from e

        if not isinstance(reply, dict):
            raise SourceError(f"{self.name}: unexpected reply {reply!r}")
        return self.format_list(reply.get("list") or {})

    def format_list(self, items: Dict[str, Any]) -> List[BookmarkMention]:
        """Pocket items -> mentions, newest first."""
        # Pocket returns [] instead of {} for an empty list
        values = items.values() if isinstance(items, dict) else items
        mentions = []
        for item in values:
            url = item.get("resolved_url") or item.get("given_url")
            if not url:
                continue
            mentions.append(BookmarkMention(
                collector_username=self.username,
                tag=self.tag,
                saved_at=int(item.get("time_added") or 0) * 1000,
                bookmark_id=str(item["item_id"]),
                url=url,
                title=item.get("resolved_title") or item.get("given_title") or "",
                excerpt=item.get("excerpt") or "",
            ))
        mentions.sort(key=lambda m: m.saved_at, reverse=True)
        return mentions
