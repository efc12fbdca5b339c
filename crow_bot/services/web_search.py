from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List
from urllib.parse import parse_qs, urlparse

import aiohttp
from bs4 import BeautifulSoup

logger = logging.getLogger("crow_bot")

SEARCH_URL = "https://html.duckduckgo.com/html/"
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"


@dataclass(slots=True)
class SearchResult:
    title: str
    url: str
    snippet: str = ""


def _unwrap_redirect(href: str) -> str:
    """DuckDuckGo wraps result links as //duckduckgo.com/l/?uddg=<target>."""
    if href.startswith("//"):
        href = "https:" + href
    parsed = urlparse(href)
    if parsed.netloc.endswith("duckduckgo.com") and parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return href


def parse_results(html: str, limit: int = 5) -> List[SearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results: List[SearchResult] = []
    for node in soup.select(".result"):
        link = node.select_one("a.result__a") or node.select_one("a")
        if link is None or not link.get("href"):
            continue
        url = _unwrap_redirect(str(link["href"]))
        if not url.startswith(("http://", "https://")):
            continue
        snippet_node = node.select_one(".result__snippet")
        results.append(
            SearchResult(
                title=link.get_text(" ", strip=True),
                url=url,
                snippet=snippet_node.get_text(" ", strip=True) if snippet_node is not None else "",
            )
        )
        if len(results) >= limit:
            break
    return results


class WebSearchClient:
    def __init__(self, timeout_seconds: float = 15.0) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers={"User-Agent": USER_AGENT})

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def search(self, query: str, limit: int = 5) -> List[SearchResult]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        async with self._session.post(SEARCH_URL, data={"q": query}) as response:
            if response.status != 200:
                logger.warning("Web search failed with status %s for %r", response.status, query)
                return []
            html = await response.text()
        return parse_results(html, limit)

    async def first_result(self, query: str) -> SearchResult | None:
        results = await self.search(query, limit=1)
        return results[0] if results else None
