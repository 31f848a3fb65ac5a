from typing import Any, Dict, List, Optional, Tuple
import logging

import httpx
from dateutil import parser as date_parser

from aggregator.errors import SourceError
from aggregator.http_client import HTTPClient
from aggregator.models import SocialMention
from sources.base import BaseSource

logger = logging.getLogger(__name__)


class TwitterListSource(BaseSource):
    """Links posted to a Twitter list. https://developer.twitter.com/en/docs/twitter-api/v1/accounts-and-users/create-manage-lists/api-reference/get-lists-statuses"""

    API_URL = "https://api.twitter.com/1.1/lists/statuses.json"

    def __init__(self, http_client: HTTPClient, owner: str, slug: str, token: str,
                 count: int = 100, max_pages: int = 5):
        super().__init__(http_client)
        self.owner = owner
        self.slug = slug
        self.token = token
        self.count = count
        self.max_pages = max_pages
        self.name = f"twitter:{owner}/{slug}"

    async def _fetch_page(self, max_id: Optional[int]) -> List[Dict[str, Any]]:
        params = {
            "owner_screen_name": self.owner,
            "slug": self.slug,
            "count": self.count,
            "include_entities": "true",
            "tweet_mode": "extended",
        }
        if max_id is not None:
            params["max_id"] = max_id

        try:
            reply = await self.http_client.request_json(
                "GET", self.API_URL, params=params,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except (httpx.HTTPError, ValueError) as e:
            raise SourceError(f"{self.name}: {e}") from e

        if isinstance(reply, dict):
            raise SourceError(f"{self.name}: {reply.get('errors') or reply}")
        return reply

    async def fetch_mentions(self) -> List[SocialMention]:
        """Walks the list newest to oldest until the page cap or an empty page."""
        tweets: List[Dict[str, Any]] = []
        max_id = None
        for page in range(self.max_pages):
            reply = await self._fetch_page(max_id)
            if not reply:
                if page == 0:
                    raise SourceError(f"{self.name}: reply is 0 length - hit a rate limit?")
                break
            tweets.extend(reply)
            max_id = reply[-1]["id"] - 1

        mentions = []
        for tweet in tweets:
            try:
                mention = self.to_mention(tweet)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error parsing tweet: {e}")
                continue
            if mention.urls:
                mentions.append(mention)
        logger.info(f"{self.name}: {len(mentions)} of {len(tweets)} tweets carry links")
        return mentions

    def to_mention(self, tweet: Dict[str, Any]) -> SocialMention:
        entities = tweet.get("entities") or {}
        created_at = date_parser.parse(tweet["created_at"])
        return SocialMention(
            source_owner=self.owner,
            source_list_name=self.slug,
            mention_id=str(tweet.get("id_str") or tweet["id"]),
            author_handle=tweet["user"]["screen_name"],
            text=tweet.get("full_text") or tweet.get("text") or "",
            created_at=int(created_at.timestamp() * 1000),
            favorite_count=tweet.get("favorite_count") or 0,
            retweet_count=tweet.get("retweet_count") or 0,
            urls=tuple(u["expanded_url"] for u in entities.get("urls") or [] if u.get("expanded_url")),
            hashtags=tuple(h["text"] for h in entities.get("hashtags") or []),
            media=media_urls(tweet),
        )


def media_urls(tweet: Dict[str, Any]) -> Tuple[str, ...]:
    """Photo and video URLs of a tweet, deduplicated, in order. Videos give their best mp4 variant."""
    items = (tweet.get("extended_entities") or {}).get("media") or (tweet.get("entities") or {}).get("media") or []
    urls: List[str] = []
    for item in items:
        url = item.get("media_url_https") or item.get("media_url")
        variants = [v for v in (item.get("video_info") or {}).get("variants") or []
                    if v.get("content_type") == "video/mp4" and v.get("url")]
        if variants:
            url = max(variants, key=lambda v: v.get("bitrate") or 0)["url"]
        if url and url not in urls:
            urls.append(url)
    return tuple(urls)
