from typing import Dict, List, Union

import httpx
import pytest

from aggregator.config import build_settings
from aggregator.models import PageResponse
from aggregator.store import Store

HTML = {"content-type": "text/html; charset=utf-8"}


def html_page(title: str, published: str = "") -> str:
    meta = f'<meta property="article:published_time" content="{published}">' if published else ""
    return f"<html><head><title>{title}</title>{meta}</head><body><p>Hello</p></body></html>"


class FakeHTTP:
    """Stands in for HTTPClient: serves canned pages and counts fetches per URL."""

    def __init__(self, pages: Dict[str, Union[PageResponse, Exception]]):
        self.pages = pages
        self.calls: List[str] = []

    async def fetch_page(self, url: str) -> PageResponse:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise httpx.ConnectError(f"no route to {url}")
        if isinstance(page, Exception):
            raise page
        return page


def ok(url: str, title: str, published: str = "", final_url: str = "") -> PageResponse:
    return PageResponse(status=200, headers=dict(HTML), final_url=final_url or url, body=html_page(title, published))


@pytest.fixture
def store():
    return Store(prefix="test-")


@pytest.fixture
def settings():
    return build_settings({
        "categories": {"CSS": ["css"], "Video": ["video"]},
        "ignore_words": ["sponsored"],
    })
