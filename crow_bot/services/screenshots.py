from __future__ import annotations

import asyncio
import logging
import random
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List

import aiohttp

logger = logging.getLogger("crow_bot")

SCREENSHOT_TIMEOUT_SECONDS = 10.0
MAX_ROTATION_KEYS = 256

# Applied only as a fallback when the literal query finds nothing.
_ABBREVIATIONS: tuple[tuple[str, str], ...] = (
    ("mr.", "mister"),
    ("mrs.", "missus"),
    ("dr.", "doctor"),
    ("st.", "saint"),
    ("prof.", "professor"),
    ("capt.", "captain"),
    ("lt.", "lieutenant"),
    ("sgt.", "sergeant"),
    ("gen.", "general"),
    ("gov.", "governor"),
    ("pres.", "president"),
    ("rev.", "reverend"),
    ("jr.", "junior"),
    ("sr.", "senior"),
    ("vs.", "versus"),
)


def normalize_search_term(term: str) -> str:
    normalized = " ".join(term.lower().split())
    for short, full in _ABBREVIATIONS:
        normalized = re.sub(rf"(?<!\w){re.escape(short)}", full, normalized)
    return normalized


@dataclass(slots=True)
class ScreenshotQuery:
    text: str = ""
    season: int | None = None
    episode: int | None = None

    @property
    def is_random(self) -> bool:
        return not self.text and self.season is None and self.episode is None


def parse_screenshot_args(raw: str) -> ScreenshotQuery:
    """Parse `free text -s <season> -e <episode>` command arguments."""
    words: List[str] = []
    query = ScreenshotQuery()
    tokens = raw.split()
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token in {"-s", "-e"} and index + 1 < len(tokens) and tokens[index + 1].isdigit():
            value = int(tokens[index + 1])
            if token == "-s":
                query.season = value
            else:
                query.episode = value
            index += 2
            continue
        words.append(token)
        index += 1
    query.text = " ".join(words).strip()
    return query


@dataclass(slots=True)
class ScreenshotResult:
    episode_key: str
    timestamp: int
    season: int
    episode_number: int
    episode_title: str
    caption: str
    image_url: str

    def format(self) -> str:
        return (
            f"**S{self.season:02d}E{self.episode_number:02d} - {self.episode_title}**\n"
            f"{self.image_url}\n\n\"{self.caption}\""
        )


def _episode_matches(key: str, season: int | None, episode: int | None) -> bool:
    match = re.match(r"S(\d+)E(\d+)", key, flags=re.IGNORECASE)
    if match is None:
        return season is None and episode is None
    if season is not None and int(match.group(1)) != season:
        return False
    if episode is not None and int(match.group(2)) != episode:
        return False
    return True


def _caption_from(subtitles: Any) -> str:
    lines = []
    for item in subtitles or []:
        if isinstance(item, dict) and isinstance(item.get("Content"), str):
            lines.append(item["Content"])
    return " ".join(" ".join(lines).split())


class ScreenshotIndexClient:
    """Client for the Frinkiac family of frame-search APIs (Frinkiac, Morbotron, Master of All Science)."""

    def __init__(
        self,
        name: str,
        base_url: str,
        show_title: str,
        random_terms: tuple[str, ...],
        timeout_seconds: float = SCREENSHOT_TIMEOUT_SECONDS,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.show_title = show_title
        self.random_terms = random_terms
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None
        # query key -> index of the next frame to hand out
        self._rotation: OrderedDict[str, int] = OrderedDict()

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, path: str, params: Dict[str, str] | None = None) -> Any:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        async with self._session.get(f"{self.base_url}{path}", params=params) as response:
            if response.status != 200:
                raise RuntimeError(f"{self.name} {path} failed with status {response.status}")
            return await response.json(content_type=None)

    def _image_url(self, episode_key: str, timestamp: int) -> str:
        return f"{self.base_url}/img/{episode_key}/{timestamp}.jpg"

    def _result_from_caption(self, payload: Any, episode_key: str, timestamp: int) -> ScreenshotResult:
        if not isinstance(payload, dict):
            raise RuntimeError(f"{self.name} caption payload is not an object")
        info = payload.get("Episode") or {}
        return ScreenshotResult(
            episode_key=episode_key,
            timestamp=int(timestamp),
            season=int(info.get("Season") or 0),
            episode_number=int(info.get("EpisodeNumber") or 0),
            episode_title=str(info.get("Title") or "Unknown"),
            caption=_caption_from(payload.get("Subtitles")),
            image_url=self._image_url(episode_key, int(timestamp)),
        )

    async def caption_for(self, episode_key: str, timestamp: int) -> ScreenshotResult:
        payload = await self._get_json("/api/caption", {"e": episode_key, "t": str(timestamp)})
        return self._result_from_caption(payload, episode_key, timestamp)

    async def _search_frames(self, text: str) -> List[Dict[str, Any]]:
        payload = await self._get_json("/api/search", {"q": text})
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict) and item.get("Episode") and "Timestamp" in item]

    async def search(self, query: ScreenshotQuery) -> ScreenshotResult | None:
        if query.is_random:
            return await self.random()
        text = query.text or random.choice(self.random_terms)
        frames = await self._search_frames(text)
        if not frames:
            normalized = normalize_search_term(text)
            if normalized != text.lower():
                logger.info("%s: no frames for %r, retrying as %r", self.name, text, normalized)
                frames = await self._search_frames(normalized)
        frames = [f for f in frames if _episode_matches(str(f["Episode"]), query.season, query.episode)]
        if not frames:
            return None

        key = f"{text.lower()}|{query.season}|{query.episode}"
        index = self._rotation.pop(key, 0) % len(frames)
        self._rotation[key] = index + 1
        while len(self._rotation) > MAX_ROTATION_KEYS:
            self._rotation.popitem(last=False)
        frame = frames[index]
        return await self.caption_for(str(frame["Episode"]), int(frame["Timestamp"]))

    async def random(self) -> ScreenshotResult | None:
        try:
            payload = await self._get_json("/api/random")
            frame = payload.get("Frame") or {}
            episode_key = str(frame["Episode"])
            timestamp = int(frame["Timestamp"])
            return self._result_from_caption(payload, episode_key, timestamp)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("%s random endpoint failed (%s); falling back to a random search term", self.name, exc)
        frames = await self._search_frames(random.choice(self.random_terms))
        if not frames:
            return None
        frame = random.choice(frames)
        return await self.caption_for(str(frame["Episode"]), int(frame["Timestamp"]))


def build_screenshot_clients() -> Dict[str, ScreenshotIndexClient]:
    return {
        "frinkiac": ScreenshotIndexClient(
            "frinkiac",
            "https://frinkiac.com",
            "The Simpsons",
            ("homer", "bart", "lisa", "marge", "burns", "smithers", "flanders", "moe", "krusty", "milhouse",
             "ralph", "skinner", "wiggum", "frink", "barney", "hibbert"),
        ),
        "morbotron": ScreenshotIndexClient(
            "morbotron",
            "https://morbotron.com",
            "Futurama",
            ("fry", "leela", "bender", "professor", "zoidberg", "hermes", "amy", "zapp", "kif", "nibbler",
             "mom", "calculon", "hypnotoad", "scruffy"),
        ),
        "masterofallscience": ScreenshotIndexClient(
            "masterofallscience",
            "https://masterofallscience.com",
            "Rick and Morty",
            ("rick", "morty", "summer", "beth", "jerry", "squanchy", "birdperson", "meeseeks", "pickle",
             "unity", "evil morty", "mr poopybutthole"),
        ),
    }
