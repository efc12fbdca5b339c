from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Protocol
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..errors import LLMError
from ..prompts.templates import PromptBuilder

logger = logging.getLogger("crow_bot")

URL_RE = re.compile(r"https?://[^\s<>\"'`]+")
SOURCE_RE = re.compile(r"\s*\(?\s*(?:source|sources|citation)\s*:\s*", flags=re.IGNORECASE)

FETCH_TIMEOUT_SECONDS = 15.0
MAX_REDIRECTS = 3
MIN_EXCERPT_CHARS = 200
MAX_EXCERPT_CHARS = 4000
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
SEARCH_ENGINE_HOSTS = ("google.", "bing.com", "yahoo.com", "duckduckgo.com")
SOFT_404_PHRASES = (
    "page not found",
    "404 not found",
    "error 404",
    "page you requested could not be found",
    "page you are looking for",
    "this page does not exist",
    "page doesn't exist",
    "no longer available",
    "has been removed",
    "we couldn't find",
    "we can't find",
    "content is unavailable",
)
_ARCHIVE_DATE_RE = re.compile(r"^\d{4}(?:/\d{1,2}){0,2}$")
_DATE_SLUG_RE = re.compile(r"^\d{4}(?:-\d{1,2}){0,2}$|^\d{1,2}$")


class TextGenerator(Protocol):
    async def generate_text(self, prompt: str, *, temperature: float | None = None) -> str: ...


class SearchBackend(Protocol):
    async def first_result(self, query: str): ...


def extract_urls(text: str) -> list[str]:
    urls = []
    for match in URL_RE.finditer(text):
        urls.append(match.group(0).rstrip(".,;:!?)]}>*_"))
    return urls


def extract_first_url(text: str) -> str | None:
    urls = extract_urls(text)
    return urls[0] if urls else None


def strip_citation(text: str) -> str:
    """Claim text with the URL and any trailing 'Source:' label removed."""
    claim = URL_RE.sub("", text)
    claim = SOURCE_RE.sub(" ", claim)
    return " ".join(claim.replace("()", " ").split()).strip(" -:")


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def is_search_engine_url(url: str) -> bool:
    host = _host(url)
    return any(host.startswith(engine) or f".{engine}" in f".{host}" for engine in SEARCH_ENGINE_HOSTS)


def domain_allowed(url: str, allowed_domains: Iterable[str]) -> bool:
    host = _host(url)
    for domain in allowed_domains:
        domain = domain.lower()
        if host == domain or host.endswith("." + domain):
            return True
    return False


def is_news_article_url(url: str, allowed_domains: Iterable[str]) -> bool:
    """Shape checks for a news link: reputable domain and an article slug, not an index page."""
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not domain_allowed(url, allowed_domains):
        return False
    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments:
        return False
    joined = "/".join(segments)
    if _ARCHIVE_DATE_RE.match(joined):
        return False
    slug = segments[-1]
    slug = re.sub(r"\.(?:html?|php|aspx?)$", "", slug, flags=re.IGNORECASE)
    if _DATE_SLUG_RE.match(slug):
        return False
    words = [word for word in slug.split("-") if word]
    if len(words) < 3:
        return False
    if all(word.isdigit() for word in words):
        return False
    return True


def html_excerpt(html: str, limit: int = MAX_EXCERPT_CHARS) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for node in soup(["script", "style", "noscript"]):
        node.decompose()
    text = " ".join(soup.get_text(" ").split())
    return text[:limit]


def looks_like_soft_404(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in SOFT_404_PHRASES)


@dataclass(slots=True)
class VerifiedCitation:
    claim: str
    url: str

    def format_fact(self) -> str:
        return f"{self.claim} Source: {self.url}"


class CitationVerifier:
    """Fetches cited pages and asks the LLM whether they back the claim."""

    def __init__(
        self,
        llm: TextGenerator,
        prompts: PromptBuilder,
        search: SearchBackend | None = None,
        timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.llm = llm
        self.prompts = prompts
        self.search = search
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_excerpt(self, url: str) -> str | None:
        if is_search_engine_url(url):
            logger.info("[verify] rejecting search engine URL %s", url)
            return None
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        try:
            async with self._session.get(url, allow_redirects=True, max_redirects=MAX_REDIRECTS) as response:
                if response.status != 200:
                    logger.info("[verify] %s returned HTTP %s", url, response.status)
                    return None
                content_type = response.headers.get("Content-Type", "").lower()
                if not any(kind in content_type for kind in HTML_CONTENT_TYPES):
                    logger.info("[verify] %s is not HTML (%s)", url, content_type or "no content type")
                    return None
                body = await response.text(errors="replace")
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
            logger.info("[verify] fetching %s failed: %s", url, exc)
            return None

        excerpt = html_excerpt(body)
        if len(excerpt) < MIN_EXCERPT_CHARS:
            logger.info("[verify] %s excerpt too short (%s chars)", url, len(excerpt))
            return None
        if looks_like_soft_404(excerpt):
            logger.info("[verify] %s looks like a soft 404", url)
            return None
        return excerpt

    async def claim_matches(self, claim: str, excerpt: str) -> bool:
        try:
            verdict = await self.llm.generate_text(self.prompts.verification(claim, excerpt), temperature=0.0)
        except LLMError as exc:
            logger.info("[verify] validator call failed: %s", exc)
            return False
        accepted = verdict.strip() == "MATCH"
        logger.info("[verify] validator verdict=%r accepted=%s", verdict.strip()[:40], accepted)
        return accepted

    async def verify_url(self, claim: str, url: str) -> bool:
        excerpt = await self.fetch_excerpt(url)
        if excerpt is None:
            return False
        return await self.claim_matches(claim, excerpt)

    async def verify_fact(self, text: str) -> VerifiedCitation | None:
        """Full pipeline for a fact interjection: cited URL first, then one search fallback."""
        url = extract_first_url(text)
        if url is None:
            logger.info("[verify] fact has no citation")
            return None
        claim = strip_citation(text)
        if not claim:
            return None
        if await self.verify_url(claim, url):
            return VerifiedCitation(claim=claim, url=url)

        if self.search is None:
            return None
        try:
            result = await self.search.first_result(claim)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("[verify] search fallback failed: %s", exc)
            return None
        if result is None or result.url == url:
            return None
        logger.info("[verify] retrying fact with search result %s", result.url)
        if await self.verify_url(claim, result.url):
            return VerifiedCitation(claim=claim, url=result.url)
        return None

    async def verify_news(self, text: str, allowed_domains: Iterable[str]) -> VerifiedCitation | None:
        url = extract_first_url(text)
        if url is None:
            return None
        if not is_news_article_url(url, allowed_domains):
            logger.info("[verify] news URL failed shape checks: %s", url)
            return None
        title, _, _ = text.partition(url)
        claim = strip_citation(title) or strip_citation(text)
        if not claim:
            return None
        if await self.verify_url(claim, url):
            return VerifiedCitation(claim=claim, url=url)
        return None
