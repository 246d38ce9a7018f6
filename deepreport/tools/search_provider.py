"""SearXNG metasearch client and page fetcher."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from loguru import logger

from deepreport.config import Settings
from deepreport.errors import SearchError
from deepreport.tools.content_extractor import extract_main_content


@dataclass
class SearchResult:
    title: str
    url: str
    content: str  # snippet


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult] = field(default_factory=list)


class SearchClient(Protocol):
    """What the research engine needs from a web-search backend."""

    async def search(self, query: str) -> SearchResponse: ...

    async def fetch_page_content(self, url: str) -> str: ...


def _map_result(item: dict[str, Any]) -> SearchResult:
    return SearchResult(
        title=str(item.get("title") or ""),
        url=str(item.get("url") or ""),
        content=str(item.get("content") or ""),
    )


class SearxngSearchClient:
    def __init__(
        self,
        base_url: str,
        *,
        max_results: int = 10,
        engines: list[str] | None = None,
        timeout: float = 30.0,
        fetch_timeout: float = 20.0,
        page_max_chars: int = 10000,
        user_agent: str = "Local Deep Research Bot",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_results = max_results
        self.engines = engines or []
        self.timeout = timeout
        self.fetch_timeout = fetch_timeout
        self.page_max_chars = page_max_chars
        self.user_agent = user_agent
        self._http = http_client

    async def _get(self, url: str, *, timeout: float, **kwargs: Any) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await client.get(url, **kwargs)

    async def search(self, query: str) -> SearchResponse:
        """Run one keyword query. Raises SearchError on transport or HTTP failure."""
        params: dict[str, Any] = {
            "q": query,
            "format": "json",
            "categories": "general",
        }
        if self.engines:
            params["engines"] = ",".join(self.engines)

        try:
            response = await self._get(f"{self.base_url}/search", timeout=self.timeout, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise SearchError(
                f"Search failed: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SearchError(f"Search failed: {e}") from e

        raw_results = payload.get("results") or []
        results = [
            _map_result(item)
            for item in raw_results[: self.max_results]
            if isinstance(item, dict)
        ]
        return SearchResponse(
            query=str(payload.get("query") or query),
            results=results,
        )

    async def fetch_page_content(self, url: str) -> str:
        """Plain-text page body, clipped. Best effort: any failure yields ''."""
        try:
            response = await self._get(
                url,
                timeout=self.fetch_timeout,
                headers={"User-Agent": self.user_agent},
            )
            if response.status_code >= 400:
                return ""
            content_type = response.headers.get("content-type", "")
            if content_type and "html" not in content_type and "text" not in content_type:
                return ""
            extracted = extract_main_content(url, response.text, max_chars=self.page_max_chars)
            return extracted.text
        except Exception as e:
            logger.warning(f"Failed to fetch page content from {url}: {e}")
            return ""

    async def test_connection(self) -> tuple[bool, str]:
        try:
            response = await self._get(
                f"{self.base_url}/search",
                timeout=self.timeout,
                params={"q": "test", "format": "json"},
            )
        except httpx.HTTPError as e:
            return False, str(e) or "Connection failed"
        if response.is_success:
            return True, "SearXNG connection successful"
        return False, f"HTTP {response.status_code}"


def get_search_client(settings: Settings) -> SearxngSearchClient:
    return SearxngSearchClient(
        settings.searxng_url,
        max_results=settings.search_max_results,
        engines=settings.search_engine_list,
        timeout=settings.search_timeout_seconds,
        fetch_timeout=settings.page_fetch_timeout_seconds,
        page_max_chars=settings.page_max_chars,
        user_agent=settings.page_user_agent,
    )
