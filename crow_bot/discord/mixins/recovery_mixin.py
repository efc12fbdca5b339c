from __future__ import annotations

import asyncio
import logging
from typing import Any

import discord

from ..common import observed_from_discord

logger = logging.getLogger("crow_bot")

REPLAY_LIMIT = 50


class RecoveryMixin:
    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user, self.user.id)
        await self._recover_missed_messages("ready")

    async def on_resumed(self) -> None:
        logger.info("Gateway session resumed")
        await self._recover_missed_messages("resumed")

    async def _recover_missed_messages(self, reason: str) -> int:
        """Replay messages that arrived while disconnected, oldest first, through the reaction engine."""
        if self._recovery_lock.locked():
            logger.info("Recovery already running; skipping %s trigger", reason)
            return 0
        async with self._recovery_lock:
            try:
                markers = await self.store.get_last_seen_by_channel()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Could not load last-seen markers; skipping recovery")
                return 0
            self.state.load_last_seen(markers)

            total = 0
            for channel in self._followed_channels():
                total += await self._replay_channel(channel)
            logger.info("Recovery after %s replayed %s messages", reason, total)
            return total

    async def _replay_channel(self, channel: Any) -> int:
        marker = self.state.last_seen.get(str(channel.id))
        if marker is None or not marker.message_id.isdigit():
            return 0
        bot_id = self._bot_id()
        replayed = 0
        try:
            async for message in channel.history(
                limit=REPLAY_LIMIT,
                after=discord.Object(id=int(marker.message_id)),
                oldest_first=True,
            ):
                if str(message.author.id) == bot_id:
                    continue
                observed = observed_from_discord(message, self.settings.gateway_bot_ids)
                await self._process_message(observed, channel, message, replay=True)
                replayed += 1
        except asyncio.CancelledError:
            raise
        except discord.HTTPException as exc:
            logger.warning("Could not fetch missed messages for channel=%s: %s", channel.id, exc)
        if replayed:
            logger.info("Replayed %s missed messages in channel=%s", replayed, channel.id)
        return replayed
