from __future__ import annotations

from .storage.messages import MessageRecordsMixin
from .storage.schema import MessageSchemaMixin


class MessageStore(
    MessageSchemaMixin,
    MessageRecordsMixin,
):
    """Persistent, channel-scoped log of every message the bot has observed."""
