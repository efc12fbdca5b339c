from __future__ import annotations

import re
from typing import Any

from ...engine.addressing import is_direct_address
from ..common import ObservedMessage, collapse_spaces


class IdentityMixin:
    def _bot_id(self) -> str:
        return str(self.user.id) if self.user else ""

    def _in_followed_server(self, channel: Any) -> bool:
        server = self.settings.followed_server.strip().lower()
        if not server:
            return True
        guild = getattr(channel, "guild", None)
        return guild is not None and str(getattr(guild, "name", "")).strip().lower() == server

    def _is_followed_channel(self, channel: Any) -> bool:
        if not self._in_followed_server(channel):
            return False
        channel_id = int(getattr(channel, "id", 0) or 0)
        if channel_id in self.settings.followed_channel_ids:
            return True
        name = str(getattr(channel, "name", "") or "").strip().lower()
        return bool(name) and name in self.settings.followed_channel_names

    def _is_image_channel(self, channel: Any) -> bool:
        """Image generation runs in allow-listed channels, or in any followed channel when no list is set."""
        if not self.settings.image_channel_ids and not self.settings.image_channel_names:
            return self._is_followed_channel(channel)
        channel_id = int(getattr(channel, "id", 0) or 0)
        if channel_id in self.settings.image_channel_ids:
            return True
        name = str(getattr(channel, "name", "") or "").strip().lower()
        return bool(name) and name in self.settings.image_channel_names

    def _image_channel_labels(self) -> list[str]:
        labels = [f"<#{channel_id}>" for channel_id in sorted(self.settings.image_channel_ids)]
        labels.extend(f"#{name}" for name in sorted(self.settings.image_channel_names))
        return labels

    def _strip_bot_mention(self, text: str) -> str:
        if not self.user:
            return collapse_spaces(text)
        pattern = re.compile(rf"<@!?{self.user.id}>")
        return collapse_spaces(pattern.sub("", text))

    def _is_addressed(self, observed: ObservedMessage) -> bool:
        bot_id = self._bot_id()
        if bot_id and bot_id in observed.mention_ids:
            return True
        return is_direct_address(observed.content, self.settings.bot_name)

    def _followed_channels(self) -> list[Any]:
        channels: list[Any] = []
        for guild in self.guilds:
            for channel in getattr(guild, "text_channels", []):
                if self._is_followed_channel(channel):
                    channels.append(channel)
        return channels
