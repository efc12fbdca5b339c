from __future__ import annotations

from typing import Dict, List

import aiosqlite

from ..records import MessageRecord
from .utils import SENTINEL_MESSAGE_ID, _like_pattern, _row_to_dict, _sqlite_connection

_RECENT_SELECT = """
    SELECT m.id, m.message_id, m.channel_id, m.guild_id, m.author_id, m.author, m.display_name,
           m.content, m.timestamp, m.referenced_message_id,
           ref.author AS ref_author, ref.display_name AS ref_display_name, ref.content AS ref_content
    FROM messages m
    LEFT JOIN messages ref
      ON m.referenced_message_id = ref.message_id AND ref.message_id != '0'
"""


class MessageRecordsMixin:
    async def save_message(self, record: MessageRecord) -> bool:
        """Insert the record, or update only its content when the message id is already stored.

        Returns True when a new row was created.
        """
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                if not record.is_sentinel:
                    cursor = await db.execute(
                        "UPDATE messages SET content = ? WHERE message_id = ?",
                        (record.content, record.message_id),
                    )
                    if (cursor.rowcount or 0) > 0:
                        await db.commit()
                        return False
                await db.execute(
                    """
                    INSERT INTO messages (
                        message_id, channel_id, guild_id, author_id, author,
                        display_name, content, timestamp, referenced_message_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.message_id or SENTINEL_MESSAGE_ID,
                        record.channel_id,
                        record.guild_id,
                        record.author_id,
                        record.author_name,
                        record.display_name or None,
                        record.content,
                        int(record.timestamp),
                        record.referenced_message_id,
                    ),
                )
                await db.commit()
                return True

    async def get_recent_messages(
        self,
        channel_id: str,
        limit: int,
        *,
        exclude_message_id: str | None = None,
    ) -> List[Dict[str, object]]:
        if limit <= 0:
            return []
        query = _RECENT_SELECT + " WHERE m.channel_id = ?"
        params: list[object] = [channel_id]
        if exclude_message_id:
            query += " AND m.message_id != ?"
            params.append(exclude_message_id)
        query += " ORDER BY m.timestamp DESC, m.id DESC LIMIT ?"
        # Over-fetch so content dedup still leaves `limit` rows when it can.
        params.append(int(limit) * 2)

        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(query, params) as cursor:
                    rows = await cursor.fetchall()

        seen: set[str] = set()
        newest_first: List[Dict[str, object]] = []
        for row in rows:
            content = str(row["content"])
            if content in seen:
                continue
            seen.add(content)
            newest_first.append(_row_to_dict(row))
            if len(newest_first) >= limit:
                break
        newest_first.reverse()
        return newest_first

    async def get_last_seen_by_channel(self) -> Dict[str, tuple[int, str]]:
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                async with db.execute(
                    """
                    SELECT m.channel_id, m.timestamp, m.message_id
                    FROM messages m
                    JOIN (
                        SELECT channel_id, MAX(timestamp) AS last_ts
                        FROM messages
                        WHERE message_id != ? AND channel_id != ?
                        GROUP BY channel_id
                    ) last ON m.channel_id = last.channel_id AND m.timestamp = last.last_ts
                    WHERE m.message_id != ?
                    ORDER BY m.id ASC
                    """,
                    (SENTINEL_MESSAGE_ID, SENTINEL_MESSAGE_ID, SENTINEL_MESSAGE_ID),
                ) as cursor:
                    rows = await cursor.fetchall()
        markers: Dict[str, tuple[int, str]] = {}
        for channel_id, timestamp, message_id in rows:
            markers[str(channel_id)] = (int(timestamp), str(message_id))
        return markers

    async def trim(self, limit: int) -> int:
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                async with db.execute("SELECT COUNT(*) FROM messages") as cursor:
                    row = await cursor.fetchone()
                total = int(row[0]) if row else 0
                excess = total - int(limit)
                if excess <= 0:
                    return 0
                cursor = await db.execute(
                    """
                    DELETE FROM messages
                    WHERE id IN (SELECT id FROM messages ORDER BY timestamp ASC, id ASC LIMIT ?)
                    """,
                    (excess,),
                )
                await db.commit()
                return max(0, cursor.rowcount or 0)

    async def find_last_by(self, name: str) -> Dict[str, object] | None:
        pattern = _like_pattern(name.strip())
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    """
                    SELECT message_id, channel_id, author_id, author, display_name, content, timestamp
                    FROM messages
                    WHERE LOWER(author) LIKE ? ESCAPE '\\' OR LOWER(COALESCE(display_name, '')) LIKE ? ESCAPE '\\'
                    ORDER BY timestamp DESC, id DESC
                    LIMIT 1
                    """,
                    (pattern, pattern),
                ) as cursor:
                    row = await cursor.fetchone()
        return _row_to_dict(row) if row is not None else None

    async def random_message_by(self, name: str | None) -> Dict[str, object] | None:
        """Random non-command message, optionally restricted to an author or display name."""
        query = """
            SELECT author, display_name, content, timestamp
            FROM messages
            WHERE content NOT LIKE '!%' AND TRIM(content) != ''
        """
        params: list[object] = []
        if name:
            query += " AND (LOWER(author) = ? OR LOWER(COALESCE(display_name, '')) = ?)"
            params.extend([name.strip().lower(), name.strip().lower()])
        query += " ORDER BY RANDOM() LIMIT 1"
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(query, params) as cursor:
                    row = await cursor.fetchone()
        return _row_to_dict(row) if row is not None else None

    async def random_channel_memory(
        self,
        channel_id: str,
        *,
        exclude_author_id: str,
        older_than: int,
        min_chars: int = 20,
    ) -> Dict[str, object] | None:
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    """
                    SELECT author, display_name, content, timestamp
                    FROM messages
                    WHERE channel_id = ?
                      AND author_id != ?
                      AND timestamp < ?
                      AND LENGTH(content) >= ?
                      AND content NOT LIKE '!%'
                    ORDER BY RANDOM()
                    LIMIT 1
                    """,
                    (channel_id, exclude_author_id, int(older_than), int(min_chars)),
                ) as cursor:
                    row = await cursor.fetchone()
        return _row_to_dict(row) if row is not None else None

    async def count_messages(self) -> int:
        async with self._lock:
            async with _sqlite_connection(self.db_path) as db:
                async with db.execute("SELECT COUNT(*) FROM messages") as cursor:
                    row = await cursor.fetchone()
        return int(row[0]) if row else 0
