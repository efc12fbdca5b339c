from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import aiohttp

logger = logging.getLogger("crow_bot")

WIKIPEDIA_API = "https://en.wikipedia.org/w/api.php"
_DATE_PATTERNS = (
    r"{kw} on (\d{{1,2}} [A-Z][a-z]+ \d{{4}})",
    r"{kw} (\d{{1,2}} [A-Z][a-z]+ \d{{4}})",
    r"{kw} (?:on )?([A-Z][a-z]+ \d{{1,2}}, \d{{4}})",
    r"{kw} in ([A-Z][a-z]+ \d{{4}})",
)
# Wikipedia intros usually carry "(born 12 May 1950)" or "(May 12, 1950 – June 1, 2020)".
_LIFESPAN_RE = re.compile(
    r"\(([^()]*?\d{4})\s*[–-]\s*([^()]*?\d{4})\)"
)


@dataclass(slots=True)
class CelebrityStatus:
    title: str
    description: str
    is_person: bool
    alive: bool | None = None
    born: str | None = None
    died: str | None = None
    extract: str = ""

    def format(self, today: date | None = None) -> str:
        if not self.is_person:
            return f"I found information about '{self.title}', but it doesn't appear to be a person."
        head = f"**{self.title}**: {self.description}."
        if self.alive is False:
            if self.died:
                return f"{head} They died on {self.died}."
            return f"{head} They have died, but I couldn't determine the exact date."
        if self.born:
            parsed = parse_date(self.born)
            if parsed is not None:
                return f"{head} They are still alive at {age_on(parsed, today or date.today())} years old."
            return f"{head} They are still alive, born on {self.born}."
        return f"{head} They appear to be alive, but I couldn't determine their age."


def parse_date(text: str) -> date | None:
    for fmt in ("%d %B %Y", "%B %d, %Y", "%d %b %Y", "%b %d, %Y"):
        try:
            return datetime.strptime(text.strip(), fmt).date()
        except ValueError:
            continue
    return None


def age_on(born: date, today: date) -> int:
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def extract_date(text: str, keyword: str) -> str | None:
    for pattern in _DATE_PATTERNS:
        match = re.search(pattern.format(kw=keyword), text)
        if match:
            return match.group(1)
    return None


def analyse_extract(title: str, extract: str) -> CelebrityStatus:
    description = ".".join(extract.split(".")[:2]).strip()
    lifespan = _LIFESPAN_RE.search(extract[:400])
    has_born = " born " in extract or "(born" in extract
    has_died = " died " in extract or lifespan is not None
    if not (has_born or has_died):
        return CelebrityStatus(title=title, description=description, is_person=False, extract=extract)

    if has_died:
        died = extract_date(extract, "died")
        if died is None and lifespan is not None:
            died = lifespan.group(2).strip()
        return CelebrityStatus(
            title=title, description=description, is_person=True, alive=False, died=died, extract=extract
        )
    born = extract_date(extract, "born")
    return CelebrityStatus(title=title, description=description, is_person=True, alive=True, born=born, extract=extract)


class CelebrityLookup:
    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers={"User-Agent": "crow-bot/0.4"})

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _query(self, params: dict[str, str]) -> Any:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        async with self._session.get(WIKIPEDIA_API, params={**params, "format": "json"}) as response:
            if response.status != 200:
                raise RuntimeError(f"Wikipedia returned HTTP {response.status}")
            return await response.json(content_type=None)

    async def lookup(self, name: str) -> CelebrityStatus | None:
        search = await self._query({"action": "query", "list": "search", "srsearch": name, "srlimit": "1"})
        hits = ((search or {}).get("query") or {}).get("search") or []
        if not hits:
            logger.info("No Wikipedia results for %r", name)
            return None
        title = str(hits[0].get("title") or "")
        page = await self._query(
            {
                "action": "query",
                "prop": "extracts|pageprops",
                "exintro": "1",
                "explaintext": "1",
                "redirects": "1",
                "titles": title,
            }
        )
        pages = ((page or {}).get("query") or {}).get("pages") or {}
        for item in pages.values():
            extract = str(item.get("extract") or "")
            if extract:
                return analyse_extract(title, extract)
        return None
