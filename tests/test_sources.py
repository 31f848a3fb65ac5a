import asyncio
import json

import httpx
import pytest

from aggregator.errors import SourceError
from aggregator.http_client import HTTPClient
from sources.pocket import PocketSource
from sources.twitter_list import TwitterListSource


def status(tweet_id, url=None, hashtags=()):
    return {
        "id": tweet_id,
        "id_str": str(tweet_id),
        "created_at": "Mon Jul 31 17:15:41 +0000 2017",
        "full_text": f"tweet {tweet_id}",
        "user": {"screen_name": "alice"},
        "favorite_count": 3,
        "retweet_count": 1,
        "entities": {
            "urls": [{"expanded_url": url}] if url else [],
            "hashtags": [{"text": tag} for tag in hashtags],
        },
    }


def client(handler):
    return HTTPClient(transport=httpx.MockTransport(handler))


class TestTwitterListSource:
    def test_pages_with_max_id_until_empty_page(self):
        seen = []

        def handler(request):
            max_id = request.url.params.get("max_id")
            seen.append(max_id)
            assert request.headers["Authorization"] == "Bearer token"
            if max_id is None:
                return httpx.Response(200, json=[status(30, "https://a.com"), status(20)])
            if max_id == "19":
                return httpx.Response(200, json=[status(10, "https://b.com", hashtags=("css",))])
            return httpx.Response(200, json=[])

        source = TwitterListSource(client(handler), "owner", "frontend", "token")
        mentions = asyncio.run(source.fetch_mentions())

        assert seen == [None, "19", "9"]
        assert [m.mention_id for m in mentions] == ["30", "10"]
        assert mentions[0].urls == ("https://a.com",)
        assert mentions[0].created_at == 1501521341000
        assert mentions[0].text == "tweet 30"
        assert mentions[1].hashtags == ("css",)
        assert mentions[1].source_list_name == "frontend"

    def test_stops_at_page_cap(self):
        calls = []

        def handler(request):
            calls.append(request)
            next_id = 100 - len(calls)
            return httpx.Response(200, json=[status(next_id, "https://a.com")])

        source = TwitterListSource(client(handler), "owner", "list", "token", max_pages=5)
        assert len(asyncio.run(source.fetch_mentions())) == 5
        assert len(calls) == 5

    def test_empty_first_page_is_an_error(self):
        source = TwitterListSource(client(lambda request: httpx.Response(200, json=[])), "owner", "list", "token")
        with pytest.raises(SourceError, match="rate limit"):
            asyncio.run(source.fetch_mentions())

    def test_api_error_reply(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "Sorry"}]})

        source = TwitterListSource(client(handler), "owner", "list", "token")
        with pytest.raises(SourceError):
            asyncio.run(source.fetch_mentions())

    def test_http_error(self):
        source = TwitterListSource(client(lambda request: httpx.Response(401)), "owner", "list", "token")
        with pytest.raises(SourceError):
            asyncio.run(source.fetch_mentions())


class TestPocketSource:
    def test_posts_credentials_and_tag(self):
        def handler(request):
            body = json.loads(request.content)
            assert request.method == "POST"
            assert request.headers["X-Accept"] == "application/json"
            assert body["consumer_key"] == "ck"
            assert body["access_token"] == "at"
            assert body["tag"] == "fe"
            return httpx.Response(200, json={"list": {
                "1": {"item_id": "1", "given_url": "https://a.com", "time_added": "1500000000"},
                "2": {"item_id": "2", "resolved_url": "https://b.com", "given_url": "https://b.co",
                      "time_added": "1500000100", "resolved_title": "B", "excerpt": "About b"},
            }})

        source = PocketSource(client(handler), "ck", "at", "bob", tag="fe")
        mentions = asyncio.run(source.fetch_mentions())

        assert [m.url for m in mentions] == ["https://b.com", "https://a.com"]
        assert mentions[0].saved_at == 1500000100000
        assert mentions[0].title == "B"
        assert mentions[0].excerpt == "About b"
        assert mentions[1].collector_username == "bob"
        assert mentions[1].tag == "fe"

    def test_empty_list_comes_back_as_array(self):
        source = PocketSource(client(lambda request: httpx.Response(200, json={"list": []})), "ck", "at", "bob")
        assert asyncio.run(source.fetch_mentions()) == []

    def test_timeout(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"list": {}})

        source = PocketSource(client(handler), "ck", "at", "bob", timeout=0.01)
        with pytest.raises(SourceError, match="timeout"):
            asyncio.run(source.fetch_mentions())

    def test_http_error(self):
        source = PocketSource(client(lambda request: httpx.Response(403)), "ck", "at", "bob")
        with pytest.raises(SourceError):
            asyncio.run(source.fetch_mentions())


def test_media_collected_from_tweet():
    tweet = status(1, "https://a.com")
    tweet["entities"]["media"] = [{"type": "photo", "media_url_https": "https://pbs.twimg.com/p.jpg"}]
    tweet["extended_entities"] = {"media": [
        {"type": "photo", "media_url_https": "https://pbs.twimg.com/p.jpg"},
        {"type": "photo", "media_url_https": "https://pbs.twimg.com/p.jpg"},
        {"type": "video", "media_url_https": "https://pbs.twimg.com/thumb.jpg", "video_info": {"variants": [
            {"content_type": "application/x-mpegURL", "url": "https://video.twimg.com/v.m3u8"},
            {"content_type": "video/mp4", "bitrate": 320000, "url": "https://video.twimg.com/low.mp4"},
            {"content_type": "video/mp4", "bitrate": 832000, "url": "https://video.twimg.com/high.mp4"},
        ]}},
    ]}
    source = TwitterListSource(client(lambda request: httpx.Response(200, json=[])), "owner", "list", "token")

    mention = source.to_mention(tweet)

    assert mention.media == ("https://pbs.twimg.com/p.jpg", "https://video.twimg.com/high.mp4")


def test_tweet_without_media():
    source = TwitterListSource(client(lambda request: httpx.Response(200, json=[])), "owner", "list", "token")
    assert source.to_mention(status(1, "https://a.com")).media == ()
