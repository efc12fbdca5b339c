from __future__ import annotations

import asyncio
import random
import sqlite3
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("aiosqlite")

from crow_bot.memory.records import MessageRecord  # noqa: E402
from crow_bot.memory.store import MessageStore  # noqa: E402


def _record(message_id: str, content: str, *, channel: str = "100", author: str = "alice", ts: int = 1000, **extra) -> MessageRecord:
    return MessageRecord(
        message_id=message_id,
        channel_id=channel,
        author_id=extra.pop("author_id", f"id-{author}"),
        author_name=author,
        display_name=extra.pop("display_name", author.title()),
        content=content,
        timestamp=ts,
        **extra,
    )


def _rows(db_path: Path, query: str, params: tuple = ()) -> list[tuple]:
    with sqlite3.connect(db_path) as conn:
        return conn.execute(query, params).fetchall()


def test_edit_updates_content_only_and_keeps_single_row(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"

    async def scenario() -> None:
        store = MessageStore(db_path)
        await store.init()
        inserted = await store.save_message(_record("555", "first draft", ts=1000, guild_id="9"))
        updated = await store.save_message(
            _record("555", "second draft", ts=2000, author="mallory", channel="999", guild_id="1")
        )
        assert inserted is True
        assert updated is False

    asyncio.run(scenario())

    rows = _rows(db_path, "SELECT message_id, channel_id, author, content, timestamp, guild_id FROM messages")
    assert rows == [("555", "100", "alice", "second draft", 1000, "9")]


def test_random_edit_sequences_never_duplicate_message_ids(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"
    rng = random.Random(7)
    ids = [str(1000 + i) for i in range(12)]
    latest: dict[str, str] = {}

    async def scenario() -> None:
        store = MessageStore(db_path)
        await store.init()
        for step in range(200):
            message_id = rng.choice(ids)
            content = f"edit {step}"
            latest[message_id] = content
            await store.save_message(_record(message_id, content, ts=step))

    asyncio.run(scenario())

    rows = _rows(db_path, "SELECT message_id, content FROM messages")
    assert len(rows) == len({row[0] for row in rows})
    assert dict(rows) == latest


def test_sentinel_ids_may_repeat(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"

    async def scenario() -> None:
        store = MessageStore(db_path)
        await store.init()
        await store.save_message(_record("0", "legacy one"))
        await store.save_message(_record("0", "legacy two"))

    asyncio.run(scenario())
    assert len(_rows(db_path, "SELECT id FROM messages WHERE message_id = '0'")) == 2


def test_recent_is_channel_scoped_chronological_and_content_deduplicated(tmp_path: Path) -> None:
    async def scenario() -> list[dict]:
        store = MessageStore(tmp_path / "crow.db")
        await store.init()
        await store.save_message(_record("1", "hello", ts=10))
        await store.save_message(_record("2", "other channel", channel="200", ts=11))
        await store.save_message(_record("3", "lol", ts=12, author="bob"))
        await store.save_message(_record("4", "lol", ts=13, author="carol"))
        await store.save_message(_record("5", "bye", ts=14))
        return await store.get_recent_messages("100", 10)

    rows = asyncio.run(scenario())
    assert [row["content"] for row in rows] == ["hello", "lol", "bye"]
    assert all(row["channel_id"] == "100" for row in rows)
    timestamps = [row["timestamp"] for row in rows]
    assert timestamps == sorted(timestamps)
    assert rows[1]["author"] == "carol"


def test_recent_carries_reply_context_and_can_exclude_current_message(tmp_path: Path) -> None:
    async def scenario() -> list[dict]:
        store = MessageStore(tmp_path / "crow.db")
        await store.init()
        await store.save_message(_record("1", "anyone seen my keys?", ts=10, author="bob"))
        await store.save_message(_record("2", "under the couch", ts=11, referenced_message_id="1"))
        await store.save_message(_record("3", "crow, thoughts?", ts=12))
        return await store.get_recent_messages("100", 5, exclude_message_id="3")

    rows = asyncio.run(scenario())
    assert [row["message_id"] for row in rows] == ["1", "2"]
    assert rows[1]["ref_author"] == "bob"
    assert rows[1]["ref_content"] == "anyone seen my keys?"


def test_bot_response_is_visible_in_recent(tmp_path: Path) -> None:
    async def scenario() -> list[dict]:
        store = MessageStore(tmp_path / "crow.db")
        await store.init()
        await store.save_message(_record("1", "crow, hi", ts=10))
        await store.save_message(_record("2", "Hello there.", ts=11, author="crowbot", author_id="42", display_name="Crow"))
        return await store.get_recent_messages("100", 5)

    rows = asyncio.run(scenario())
    assert rows[-1]["content"] == "Hello there."
    assert rows[-1]["author_id"] == "42"


def test_trim_deletes_oldest_rows_down_to_limit(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"

    async def scenario() -> int:
        store = MessageStore(db_path)
        await store.init()
        for index in range(15):
            await store.save_message(_record(str(index + 1), f"message {index}", ts=100 + index))
        deleted = await store.trim(10)
        assert await store.trim(10) == 0
        return deleted

    assert asyncio.run(scenario()) == 5
    remaining = [row[0] for row in _rows(db_path, "SELECT content FROM messages ORDER BY timestamp")]
    assert remaining == [f"message {index}" for index in range(5, 15)]


def test_last_seen_by_channel_and_find_last_by(tmp_path: Path) -> None:
    async def scenario() -> tuple[dict, dict | None, dict | None]:
        store = MessageStore(tmp_path / "crow.db")
        await store.init()
        await store.save_message(_record("10", "early", ts=100, display_name="Alice (she/her)"))
        await store.save_message(_record("11", "later", ts=200))
        await store.save_message(_record("20", "elsewhere", channel="200", ts=150, author="bob"))
        markers = await store.get_last_seen_by_channel()
        found = await store.find_last_by("ALI")
        missing = await store.find_last_by("100%_")
        return markers, found, missing

    markers, found, missing = asyncio.run(scenario())
    assert markers == {"100": (200, "11"), "200": (150, "20")}
    assert found is not None and found["content"] == "later"
    assert missing is None


def test_random_message_by_skips_commands(tmp_path: Path) -> None:
    async def scenario() -> dict | None:
        store = MessageStore(tmp_path / "crow.db")
        await store.init()
        await store.save_message(_record("1", "!quote -dud alice", ts=10))
        await store.save_message(_record("2", "hello world", ts=11))
        return await store.random_message_by("Alice")

    row = asyncio.run(scenario())
    assert row is not None
    assert row["content"] == "hello world"


def test_legacy_table_without_ids_is_rebuilt_with_sentinels(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE messages (id INTEGER PRIMARY KEY AUTOINCREMENT, author TEXT, content TEXT, timestamp INTEGER)"
        )
        conn.execute("CREATE INDEX idx_message_timestamp ON messages(timestamp)")
        conn.executemany(
            "INSERT INTO messages (author, content, timestamp) VALUES (?, ?, ?)",
            [("alice", "old one", 1), ("bob", "old two", 2)],
        )

    async def scenario() -> None:
        store = MessageStore(db_path)
        await store.init()
        await store.save_message(_record("77", "fresh", ts=3))

    asyncio.run(scenario())

    rows = _rows(db_path, "SELECT message_id, channel_id, author_id, author, content FROM messages ORDER BY timestamp")
    assert rows == [
        ("0", "0", "0", "alice", "old one"),
        ("0", "0", "0", "bob", "old two"),
        ("77", "100", "id-alice", "alice", "fresh"),
    ]
    tables = {row[0] for row in _rows(db_path, "SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert "messages_backup" not in tables


def test_init_deduplicates_existing_rows_before_unique_index(tmp_path: Path) -> None:
    db_path = tmp_path / "crow.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL DEFAULT '0',
                channel_id TEXT NOT NULL DEFAULT '0',
                author_id TEXT NOT NULL DEFAULT '0',
                author TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp INTEGER NOT NULL
            )
            """
        )
        conn.executemany(
            "INSERT INTO messages (message_id, channel_id, author_id, author, content, timestamp) VALUES (?, ?, ?, ?, ?, ?)",
            [
                ("5", "100", "1", "alice", "kept", 1),
                ("5", "100", "1", "alice", "duplicate", 2),
                ("0", "100", "1", "alice", "sentinel a", 3),
                ("0", "100", "1", "alice", "sentinel b", 4),
            ],
        )

    asyncio.run(MessageStore(db_path).init())

    rows = _rows(db_path, "SELECT message_id, content FROM messages ORDER BY id")
    assert rows == [("5", "kept"), ("0", "sentinel a"), ("0", "sentinel b")]
    indexes = {row[0] for row in _rows(db_path, "SELECT name FROM sqlite_master WHERE type = 'index'")}
    assert {"idx_unique_message_id", "idx_message_timestamp", "idx_message_author_id"} <= indexes
    columns = {row[1] for row in _rows(db_path, "PRAGMA table_info(messages)")}
    assert {"guild_id", "display_name", "referenced_message_id"} <= columns
