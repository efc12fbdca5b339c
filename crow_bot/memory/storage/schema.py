from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

import aiosqlite

from .utils import SENTINEL_MESSAGE_ID, _sqlite_connection

logger = logging.getLogger("crow_bot")

REQUIRED_COLUMNS = ("message_id", "channel_id", "author_id")

# Columns a legacy table may carry over verbatim; anything absent gets a sentinel.
_LEGACY_COPY_DEFAULTS: dict[str, str] = {
    "id": "NULL",
    "message_id": f"'{SENTINEL_MESSAGE_ID}'",
    "channel_id": f"'{SENTINEL_MESSAGE_ID}'",
    "guild_id": "NULL",
    "author_id": f"'{SENTINEL_MESSAGE_ID}'",
    "author": "'unknown'",
    "display_name": "NULL",
    "content": "''",
    "timestamp": "0",
    "referenced_message_id": "NULL",
}


class MessageSchemaMixin:
    SCHEMA_VERSION = 3

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                cols = await self._table_columns(db, "messages")
                if not cols:
                    await self._create_schema(db)
                elif any(name not in cols for name in REQUIRED_COLUMNS):
                    await self._rebuild_legacy_table(db, cols)
                else:
                    await self._add_column_if_missing(db, "messages", "guild_id TEXT")
                    await self._add_column_if_missing(db, "messages", "display_name TEXT")
                    await self._add_column_if_missing(db, "messages", "referenced_message_id TEXT")
                await self._create_indexes(db)
                await self._deduplicate(db)
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                await db.commit()

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL DEFAULT '0',
                channel_id TEXT NOT NULL DEFAULT '0',
                guild_id TEXT,
                author_id TEXT NOT NULL DEFAULT '0',
                author TEXT NOT NULL,
                display_name TEXT,
                content TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                referenced_message_id TEXT
            )
            """
        )

    async def _create_indexes(self, db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_message_timestamp ON messages(timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_message_author_id ON messages(author, id)")
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_message_channel_timestamp ON messages(channel_id, timestamp)"
        )

    async def _table_columns(self, db: aiosqlite.Connection, table_name: str) -> set[str]:
        async with db.execute(f"PRAGMA table_info({table_name})") as cursor:
            rows = await cursor.fetchall()
        return {str(row[1]) for row in rows}

    async def _add_column_if_missing(self, db: aiosqlite.Connection, table_name: str, column_sql: str) -> None:
        column_name = column_sql.split()[0].strip()
        cols = await self._table_columns(db, table_name)
        if column_name in cols:
            return
        await db.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    async def _rebuild_legacy_table(self, db: aiosqlite.Connection, old_cols: set[str]) -> None:
        logger.warning(
            "messages table lacks %s; rebuilding with sentinel ids",
            ", ".join(name for name in REQUIRED_COLUMNS if name not in old_cols),
        )
        await db.execute("DROP TABLE IF EXISTS messages_backup")
        await db.execute("ALTER TABLE messages RENAME TO messages_backup")
        # Indexes follow the renamed table; drop them so the new table can reuse the names.
        for index_name in ("idx_message_timestamp", "idx_message_author_id", "idx_unique_message_id"):
            await db.execute(f"DROP INDEX IF EXISTS {index_name}")
        await self._create_schema(db)

        target_cols = list(_LEGACY_COPY_DEFAULTS)
        select_exprs = [name if name in old_cols else _LEGACY_COPY_DEFAULTS[name] for name in target_cols]
        await db.execute(
            f"INSERT INTO messages ({', '.join(target_cols)}) "
            f"SELECT {', '.join(select_exprs)} FROM messages_backup"
        )
        await db.execute("DROP TABLE messages_backup")

    async def _deduplicate(self, db: aiosqlite.Connection) -> None:
        removed = await self._delete_duplicates(db, keep="MIN")
        try:
            await self._create_unique_index(db)
        except sqlite3.IntegrityError:
            removed += await self._delete_duplicates(db, keep="MAX")
            await self._create_unique_index(db)
        if removed:
            logger.info("Removed %s duplicate message rows", removed)

    async def _delete_duplicates(self, db: aiosqlite.Connection, *, keep: str) -> int:
        cursor = await db.execute(
            f"""
            DELETE FROM messages
            WHERE message_id != ?
              AND id NOT IN (
                SELECT {keep}(id) FROM messages WHERE message_id != ? GROUP BY message_id
              )
            """,
            (SENTINEL_MESSAGE_ID, SENTINEL_MESSAGE_ID),
        )
        return max(0, cursor.rowcount or 0)

    async def _create_unique_index(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_unique_message_id "
            f"ON messages(message_id) WHERE message_id != '{SENTINEL_MESSAGE_ID}'"
        )
