import asyncio

import httpx

from aggregator.cache import ArticleCache, URL_LIST
from aggregator.models import CacheEntry, PageResponse, SocialMention
from conftest import FakeHTTP, ok

URL = "https://example.com/post"


def tweet(mention_id="1", url=URL):
    return SocialMention(
        source_owner="owner",
        source_list_name="list",
        mention_id=mention_id,
        author_handle="alice",
        text="a css video",
        created_at=1000,
        favorite_count=1,
        retweet_count=1,
        urls=(url,),
    )


def resolve(cache, url, mention):
    return asyncio.run(cache.resolve(url, mention))


def test_miss_scrapes_and_caches(store, settings):
    http = FakeHTTP({URL: ok(URL, "Hello CSS")})
    cache = ArticleCache(store, http, settings)

    record = resolve(cache, URL, tweet())

    assert record.title == "Hello CSS"
    assert record.categories == ["CSS"]
    assert record.mention_count == 1
    assert cache.get_entry(URL).kind == CacheEntry.RESOLVED
    assert store.lrange(store.key(URL_LIST)) == [URL]


def test_hit_does_not_refetch(store, settings):
    http = FakeHTTP({URL: ok(URL, "Hello")})
    cache = ArticleCache(store, http, settings)

    resolve(cache, URL, tweet("1"))
    record = resolve(cache, URL, tweet("2"))

    assert http.calls == [URL]
    assert record.mention_count == 2
    assert cache.get_entry(URL).record.mention_ids == ["1", "2"]


def test_concurrent_mentions_fetch_once(store, settings):
    http = FakeHTTP({URL: ok(URL, "Hello")})
    cache = ArticleCache(store, http, settings)

    async def both():
        return await asyncio.gather(cache.resolve(URL, tweet("1")), cache.resolve(URL, tweet("2")))

    asyncio.run(both())
    assert http.calls == [URL]
    assert cache.get_entry(URL).record.mention_count == 2


def test_http_error_is_cached(store, settings):
    http = FakeHTTP({URL: PageResponse(status=404, headers={}, final_url=URL, body="")})
    cache = ArticleCache(store, http, settings)

    assert resolve(cache, URL, tweet("1")) is None
    assert resolve(cache, URL, tweet("2")) is None

    entry = cache.get_entry(URL)
    assert entry.kind == CacheEntry.ERROR
    assert "404" in entry.reason
    assert http.calls == [URL]


def test_non_html_is_cached_as_error(store, settings):
    pdf = PageResponse(status=200, headers={"content-type": "application/pdf"}, final_url=URL, body="%PDF")
    cache = ArticleCache(store, FakeHTTP({URL: pdf}), settings)

    assert resolve(cache, URL, tweet()) is None
    assert cache.get_entry(URL).kind == CacheEntry.ERROR


def test_missing_content_type_is_accepted(store, settings):
    page = PageResponse(status=200, headers={}, final_url=URL, body="<title>Plain</title>")
    cache = ArticleCache(store, FakeHTTP({URL: page}), settings)

    assert resolve(cache, URL, tweet()).title == "Plain"


def test_transient_failures_are_not_cached(store, settings):
    http = FakeHTTP({URL: httpx.ConnectError("boom")})
    cache = ArticleCache(store, http, settings)
    assert resolve(cache, URL, tweet()) is None
    assert cache.get_entry(URL) is None

    http.pages[URL] = PageResponse(status=503, headers={}, final_url=URL, body="")
    assert resolve(cache, URL, tweet()) is None
    assert cache.get_entry(URL) is None

    http.pages[URL] = ok(URL, "Back")
    assert resolve(cache, URL, tweet()).title == "Back"
    assert len(http.calls) == 3


def test_redirect_stores_pointer_and_resolves_target(store, settings):
    short = "https://sho.rt/abc"
    http = FakeHTTP({short: ok(short, "Target", final_url=URL + "?utm_source=x")})
    cache = ArticleCache(store, http, settings)

    record = resolve(cache, short, tweet("1", url=short))

    assert record.url == URL
    assert record.title == "Target"
    entry = cache.get_entry(short)
    assert entry.kind == CacheEntry.REDIRECT
    assert entry.target == URL
    assert cache.get_entry(URL).kind == CacheEntry.RESOLVED

    again = resolve(cache, short, tweet("2", url=short))
    assert again.mention_count == 2
    assert http.calls == [short]


def test_circular_redirect_is_dropped(store, settings):
    http = FakeHTTP({})
    cache = ArticleCache(store, http, settings)
    store.set(store.key(URL), CacheEntry(kind=CacheEntry.REDIRECT, target=URL).to_dict())

    assert resolve(cache, URL, tweet()) is None
    assert http.calls == []


def test_removed_url_never_fetched(store, settings):
    http = FakeHTTP({URL: ok(URL, "Hello")})
    cache = ArticleCache(store, http, settings)

    resolve(cache, URL, tweet("1"))
    cache.remove(URL)

    assert resolve(cache, URL, tweet("2")) is None
    assert cache.get_entry(URL).is_terminal
    assert http.calls == [URL]


def test_locks_released_after_resolution(store, settings):
    http = FakeHTTP({URL: ok(URL, "Hello")})
    cache = ArticleCache(store, http, settings)

    async def many():
        await asyncio.gather(*(cache.resolve(URL, tweet(str(i))) for i in range(5)))

    asyncio.run(many())
    resolve(cache, "https://example.com/missing", tweet("9", url="https://example.com/missing"))

    assert cache._locks == {}
    assert cache.get_entry(URL).record.mention_count == 5
