from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from ..engine.context import best_display_name, split_gateway_message, strip_irc_codes
from ..memory.records import MessageRecord

TYPING_SECONDS_PER_WORD = 0.5
TYPING_MIN_SECONDS = 2.0
TYPING_MAX_SECONDS = 5.0


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    cut = text[:limit].rfind(" ")
    if cut >= int(limit * 0.7):
        return text[:cut].rstrip() + "..."
    return text[: limit - 3].rstrip() + "..."


def chunk_text(text: str, limit: int = 1900) -> list[str]:
    if len(text) <= limit:
        return [text]
    parts: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        if len(current) + len(line) <= limit:
            current += line
            continue
        if current:
            parts.append(current)
            current = ""
        if len(line) <= limit:
            current = line
        else:
            for i in range(0, len(line), limit):
                parts.append(line[i : i + limit])
    if current:
        parts.append(current)
    return parts


def typing_delay_seconds(text: str) -> float:
    words = len(text.split())
    return min(TYPING_MAX_SECONDS, max(TYPING_MIN_SECONDS, words * TYPING_SECONDS_PER_WORD))


def humanize_duration(seconds: float) -> str:
    remaining = max(0, int(seconds))
    units = (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1))
    parts: list[str] = []
    for label, size in units:
        value, remaining = divmod(remaining, size)
        if value:
            parts.append(f"{value} {label}{'s' if value != 1 else ''}")
        if len(parts) == 2:
            break
    return ", ".join(parts) if parts else "0 seconds"


@dataclass(slots=True)
class ObservedMessage:
    """A chat message reduced to the fields the reaction engine reads."""

    message_id: str
    channel_id: str
    channel_name: str
    guild_id: str | None
    author_id: str
    author_name: str
    display_name: str
    content: str
    timestamp: float
    is_bot: bool = False
    is_gateway: bool = False
    referenced_message_id: str | None = None
    mention_ids: tuple[str, ...] = ()

    def to_record(self) -> MessageRecord:
        return MessageRecord(
            message_id=self.message_id,
            channel_id=self.channel_id,
            author_id=self.author_id,
            author_name=self.author_name,
            display_name=self.display_name,
            content=self.content,
            timestamp=self.timestamp,
            guild_id=self.guild_id,
            referenced_message_id=self.referenced_message_id,
        )


def _created_at_seconds(message: Any) -> float:
    created = getattr(message, "created_at", None)
    if created is None:
        return 0.0
    return float(created.timestamp())


def observed_from_discord(message: Any, gateway_bot_ids: Iterable[int] = ()) -> ObservedMessage:
    author = message.author
    display = best_display_name(
        str(getattr(author, "name", "") or ""),
        getattr(author, "global_name", None),
        getattr(author, "nick", None),
    )
    author_name = str(getattr(author, "name", "") or display)
    content = str(message.content or "")
    is_bot = bool(getattr(author, "bot", False))
    is_gateway = is_bot and int(author.id) in set(gateway_bot_ids)

    if is_gateway:
        relayed = split_gateway_message(content)
        if relayed is not None:
            author_name = relayed.nick
            display = relayed.nick
            content = relayed.content

    reference = getattr(message, "reference", None)
    referenced_id = getattr(reference, "message_id", None) if reference is not None else None
    guild = getattr(message, "guild", None)
    channel = message.channel
    return ObservedMessage(
        message_id=str(message.id),
        channel_id=str(channel.id),
        channel_name=str(getattr(channel, "name", "") or ""),
        guild_id=str(guild.id) if guild is not None else None,
        author_id=str(author.id),
        author_name=author_name,
        display_name=strip_irc_codes(display).strip(),
        content=content,
        timestamp=_created_at_seconds(message),
        is_bot=is_bot,
        is_gateway=is_gateway,
        referenced_message_id=str(referenced_id) if referenced_id else None,
        mention_ids=tuple(str(user.id) for user in getattr(message, "mentions", None) or ()),
    )
