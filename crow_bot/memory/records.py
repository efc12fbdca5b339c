from __future__ import annotations

from dataclasses import dataclass

from .storage.utils import SENTINEL_MESSAGE_ID


@dataclass(slots=True)
class MessageRecord:
    """One observed chat message as persisted by the message store."""

    message_id: str
    channel_id: str
    author_id: str
    author_name: str
    display_name: str
    content: str
    timestamp: int
    guild_id: str | None = None
    referenced_message_id: str | None = None

    @property
    def is_sentinel(self) -> bool:
        return not self.message_id or self.message_id == SENTINEL_MESSAGE_ID
