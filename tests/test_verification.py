from __future__ import annotations

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

aiohttp = pytest.importorskip("aiohttp")
pytest.importorskip("bs4")

from crow_bot.errors import TransientLLMError  # noqa: E402
from crow_bot.prompts.templates import PromptBuilder  # noqa: E402
from crow_bot.services.verification import (  # noqa: E402
    CitationVerifier,
    extract_first_url,
    html_excerpt,
    is_news_article_url,
    is_search_engine_url,
    strip_citation,
)
from crow_bot.services.web_search import parse_results  # noqa: E402


HONEY = "Honey is edible forever. Source: https://example.com/honey-immortal"
LONG_PAGE_TEXT = "Archaeologists have found pots of honey in ancient Egyptian tombs. " * 5


class FakeValidator:
    def __init__(self, verdicts: list[str]) -> None:
        self.verdicts = list(verdicts)
        self.prompts: list[str] = []

    async def generate_text(self, prompt: str, *, temperature: float | None = None) -> str:
        self.prompts.append(prompt)
        verdict = self.verdicts.pop(0)
        if isinstance(verdict, Exception):
            raise verdict
        return verdict


def _verifier(verdicts: list, pages: dict[str, str | None], search=None) -> tuple[CitationVerifier, FakeValidator, list[str]]:
    llm = FakeValidator(verdicts)
    verifier = CitationVerifier(llm, PromptBuilder(bot_name="Crow"), search=search)
    fetched: list[str] = []

    async def fake_fetch(url: str) -> str | None:
        fetched.append(url)
        return pages.get(url)

    verifier.fetch_excerpt = fake_fetch  # type: ignore[method-assign]
    return verifier, llm, fetched


def test_fact_with_matching_source_is_verified() -> None:
    verifier, llm, fetched = _verifier(["MATCH"], {"https://example.com/honey-immortal": LONG_PAGE_TEXT})

    citation = asyncio.run(verifier.verify_fact(HONEY))

    assert citation is not None
    assert citation.url == "https://example.com/honey-immortal"
    assert citation.format_fact() == HONEY
    assert fetched == ["https://example.com/honey-immortal"]
    assert "Claim: Honey is edible forever." in llm.prompts[0]


@pytest.mark.parametrize("verdict", ["MISMATCH", "UNCERTAIN", "match", "MATCH, probably"])
def test_anything_but_exact_match_rejects(verdict: str) -> None:
    verifier, _, _ = _verifier([verdict], {"https://example.com/honey-immortal": LONG_PAGE_TEXT})
    assert asyncio.run(verifier.verify_fact(HONEY)) is None


def test_validator_failure_counts_as_rejection() -> None:
    verifier, _, _ = _verifier(
        [TransientLLMError("boom")], {"https://example.com/honey-immortal": LONG_PAGE_TEXT}
    )
    assert asyncio.run(verifier.verify_fact(HONEY)) is None


def test_unfetchable_source_skips_validator_and_tries_search_once() -> None:
    searches: list[str] = []

    class FakeSearch:
        async def first_result(self, query: str):
            searches.append(query)
            return SimpleNamespace(url="https://en.wikipedia.org/wiki/Honey")

    verifier, llm, fetched = _verifier(
        ["MATCH"],
        {"https://example.com/honey-immortal": None, "https://en.wikipedia.org/wiki/Honey": LONG_PAGE_TEXT},
        search=FakeSearch(),
    )

    citation = asyncio.run(verifier.verify_fact(HONEY))

    assert citation is not None
    assert citation.format_fact() == "Honey is edible forever. Source: https://en.wikipedia.org/wiki/Honey"
    assert searches == ["Honey is edible forever."]
    assert fetched == ["https://example.com/honey-immortal", "https://en.wikipedia.org/wiki/Honey"]
    assert len(llm.prompts) == 1


def test_fact_without_url_is_rejected() -> None:
    verifier, llm, _ = _verifier([], {})
    assert asyncio.run(verifier.verify_fact("Honey never spoils.")) is None
    assert llm.prompts == []


def test_news_requires_allowed_domain_and_article_shape() -> None:
    domains = ["apnews.com", "bbc.co.uk"]
    article = "https://apnews.com/article/honey-bees-decline-study-2026"
    verifier, _, fetched = _verifier(["MATCH"], {article: LONG_PAGE_TEXT})

    citation = asyncio.run(verifier.verify_news(f"Bees in trouble: {article} - sad times", domains))
    assert citation is not None
    assert citation.url == article
    assert citation.claim == "Bees in trouble"

    rejected = asyncio.run(verifier.verify_news("Homepage: https://apnews.com/", domains))
    assert rejected is None
    assert fetched == [article]


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.bbc.co.uk/news/science-environment-honey-bees-decline", True),
        ("https://apnews.com/article/honey-bees-decline-study", True),
        ("https://apnews.com/", False),
        ("https://apnews.com/hub/science", False),
        ("https://apnews.com/2026/05", False),
        ("https://apnews.com/archive/2026-05-01", False),
        ("https://example.com/article/honey-bees-decline-study", False),
        ("ftp://apnews.com/article/honey-bees-decline-study", False),
    ],
)
def test_news_url_shapes(url: str, expected: bool) -> None:
    assert is_news_article_url(url, ["apnews.com", "bbc.co.uk"]) is expected


def test_citation_helpers() -> None:
    assert extract_first_url("see (https://example.com/a).") == "https://example.com/a"
    assert extract_first_url("no links") is None
    assert strip_citation(HONEY) == "Honey is edible forever."
    assert is_search_engine_url("https://www.google.com/search?q=honey") is True
    assert is_search_engine_url("https://example.com/honey") is False


def test_html_excerpt_drops_scripts_and_styles() -> None:
    html = "<html><head><style>p{}</style><script>alert(1)</script></head><body><p>Honey  keeps.</p></body></html>"
    assert html_excerpt(html) == "Honey keeps."


def test_search_results_unwrap_redirect_links() -> None:
    html = """
    <div class="result">
      <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fexample.org%2Fhoney">Honey facts</a>
      <a class="result__snippet">Honey never spoils.</a>
    </div>
    <div class="result"><a class="result__a" href="/relative">skip</a></div>
    """
    results = parse_results(html)
    assert len(results) == 1
    assert results[0].url == "https://example.org/honey"
    assert results[0].title == "Honey facts"
    assert results[0].snippet == "Honey never spoils."


class _FakeResponse:
    def __init__(self, status: int, content_type: str, body: str) -> None:
        self.status = status
        self.headers = {"Content-Type": content_type}
        self._body = body

    async def text(self, errors: str = "strict") -> str:
        return self._body


class _FakeSession:
    """Stands in for aiohttp.ClientSession.get with canned responses or errors per URL."""

    closed = False

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        return self._respond(url)

    @asynccontextmanager
    async def _respond(self, url: str):
        route = self.routes[url]
        if isinstance(route, Exception):
            raise route
        yield route


def _fetching_verifier(routes: dict[str, object]) -> tuple[CitationVerifier, _FakeSession]:
    verifier = CitationVerifier(FakeValidator([]), PromptBuilder(bot_name="Crow"))
    session = _FakeSession(routes)
    verifier._session = session  # type: ignore[assignment]
    return verifier, session


ARTICLE = "https://example.com/honey-immortal"
ARTICLE_HTML = f"<html><body><script>track()</script><p>{LONG_PAGE_TEXT}</p></body></html>"


def test_fetch_excerpt_returns_page_text_with_bounded_redirects() -> None:
    verifier, session = _fetching_verifier({ARTICLE: _FakeResponse(200, "text/html; charset=utf-8", ARTICLE_HTML)})

    excerpt = asyncio.run(verifier.fetch_excerpt(ARTICLE))

    assert excerpt == LONG_PAGE_TEXT.strip()
    assert session.calls == [(ARTICLE, {"allow_redirects": True, "max_redirects": 3})]


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(404, "text/html", ARTICLE_HTML),
        _FakeResponse(500, "text/html", ARTICLE_HTML),
        _FakeResponse(200, "application/pdf", ARTICLE_HTML),
        _FakeResponse(200, "", ARTICLE_HTML),
        _FakeResponse(200, "text/html", "<html><body><p>Honey keeps.</p></body></html>"),
        _FakeResponse(
            200,
            "text/html",
            f"<html><body><h1>Page not found</h1><p>{LONG_PAGE_TEXT}</p></body></html>",
        ),
    ],
    ids=["http-404", "http-500", "pdf", "no-content-type", "too-short", "soft-404"],
)
def test_fetch_excerpt_rejects_unusable_pages(response: _FakeResponse) -> None:
    verifier, _ = _fetching_verifier({ARTICLE: response})
    assert asyncio.run(verifier.fetch_excerpt(ARTICLE)) is None


def test_fetch_excerpt_rejects_search_engine_urls_without_fetching() -> None:
    verifier, session = _fetching_verifier({})
    assert asyncio.run(verifier.fetch_excerpt("https://www.google.com/search?q=honey")) is None
    assert asyncio.run(verifier.fetch_excerpt("https://duckduckgo.com/?q=honey")) is None
    assert session.calls == []


def test_fetch_excerpt_treats_redirect_loops_and_network_errors_as_unfetchable() -> None:
    request_info = SimpleNamespace(real_url=ARTICLE)
    verifier, _ = _fetching_verifier(
        {
            ARTICLE: aiohttp.TooManyRedirects(request_info, ()),
            "https://example.com/down": aiohttp.ClientConnectionError("connection refused"),
            "https://example.com/slow": asyncio.TimeoutError(),
        }
    )

    assert asyncio.run(verifier.fetch_excerpt(ARTICLE)) is None
    assert asyncio.run(verifier.fetch_excerpt("https://example.com/down")) is None
    assert asyncio.run(verifier.fetch_excerpt("https://example.com/slow")) is None
