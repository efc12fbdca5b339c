from __future__ import annotations

import html
import logging
import random
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

from .storage.utils import _sqlite_connection

logger = logging.getLogger("crow_bot")

MST3K_SHOW_PATTERN = "%mystery%science%"


@dataclass(slots=True)
class FlavorPick:
    text: str
    index: int
    total: int
    show_title: str = ""
    episode: str = ""
    episode_title: str = ""

    def format_quote(self) -> str:
        return (
            f"(Quote {self.index} of {self.total}) {self.text} -- "
            f"{self.show_title} {self.episode}: {self.episode_title}"
        )

    def format_slogan(self) -> str:
        return f"(Slogan {self.index} of {self.total}) {self.text}"


def _terms_pattern(terms: str | None) -> str:
    words = (terms or "").split()
    if not words:
        return "%"
    return "%" + "%".join(words) + "%"


class FlavorStore:
    """Read-only quote and slogan tables kept in a separate SQLite file."""

    def __init__(self, db_path: Path | None) -> None:
        self.db_path = Path(db_path) if db_path is not None else None

    @property
    def available(self) -> bool:
        return self.db_path is not None and self.db_path.is_file()

    async def random_quote(self, search: str | None = None, show: str | None = None) -> FlavorPick | None:
        if not self.available:
            return None
        params = (_terms_pattern(search), _terms_pattern(show))
        where = """
            FROM masterlist_quotes q
            JOIN masterlist_shows s ON q.show_id = s.show_id
            JOIN masterlist_episodes e ON q.show_ep = e.show_ep
            WHERE q.quote LIKE ? AND s.show_title LIKE ?
        """
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(f"SELECT COUNT(*) {where}", params) as cursor:
                row = await cursor.fetchone()
            total = int(row[0]) if row else 0
            if total <= 0:
                return None
            offset = random.randrange(total)
            async with db.execute(
                f"SELECT q.quote, s.show_title, e.show_ep, e.title {where} LIMIT 1 OFFSET ?",
                (*params, offset),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return FlavorPick(
            text=html.unescape(str(row["quote"])),
            index=offset + 1,
            total=total,
            show_title=str(row["show_title"]),
            episode=str(row["show_ep"]),
            episode_title=str(row["title"]),
        )

    async def random_slogan(self, search: str | None = None) -> FlavorPick | None:
        if not self.available:
            return None
        pattern = _terms_pattern(search)
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM nuke_quotes WHERE pn_quote LIKE ?", (pattern,)) as cursor:
                row = await cursor.fetchone()
            total = int(row[0]) if row else 0
            if total <= 0:
                return None
            offset = random.randrange(total)
            async with db.execute(
                "SELECT pn_quote FROM nuke_quotes WHERE pn_quote LIKE ? LIMIT 1 OFFSET ?",
                (pattern, offset),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return FlavorPick(text=html.unescape(str(row[0])), index=offset + 1, total=total)

    async def random_mst3k_line(self) -> str:
        """Bare quote text for interjections; empty when the store is missing or has no MST3K rows."""
        try:
            pick = await self._random_show_quote(MST3K_SHOW_PATTERN)
        except Exception:
            logger.exception("MST3K quote lookup failed")
            return ""
        return pick or ""

    async def _random_show_quote(self, show_pattern: str) -> str | None:
        if not self.available:
            return None
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT q.quote
                FROM masterlist_quotes q
                JOIN masterlist_shows s ON q.show_id = s.show_id
                WHERE LOWER(s.show_title) LIKE ?
                ORDER BY RANDOM()
                LIMIT 1
                """,
                (show_pattern,),
            ) as cursor:
                row = await cursor.fetchone()
        return html.unescape(str(row[0])) if row else None
