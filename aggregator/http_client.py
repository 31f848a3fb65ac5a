import logging
import httpx
from typing import Any, Optional
from fake_useragent import UserAgent
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from aggregator.models import PageResponse

logger = logging.getLogger(__name__)

PAGE_TIMEOUT = 15.0


class HTTPClient:
    def __init__(self, timeout: float = PAGE_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.ua = UserAgent()
        self.timeout = timeout
        self.client = httpx.AsyncClient(http2=False, follow_redirects=True, transport=transport)

    def _get_headers(self):
        return {
            "User-Agent": self.ua.random,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "DNT": "1",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "cross-site",
            "Sec-Fetch-User": "?1",
            "Cache-Control": "max-age=0",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def fetch_page(self, url: str) -> PageResponse:
        """
        Fetches a page, following redirects.
        Any HTTP status is returned as-is; network errors and timeouts raise
        httpx.RequestError once retries are exhausted.
        """
        response = await self.client.get(url, headers=self._get_headers(), timeout=self.timeout)
        logger.info(f"Fetched {url} -> {response.status_code} ({response.url})")
        return PageResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            final_url=str(response.url),
            body=response.text,
        )

    async def request_json(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """
        Calls a JSON API. Raises httpx.HTTPStatusError on non-2xx replies.
        """
        response = await self.client.request(method, url, timeout=timeout or self.timeout, **kwargs)
        response.raise_for_status()
        return response.json()

    async def close(self):
        await self.client.aclose()
