from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger("crow_bot")


class WorkersMixin:
    async def _spontaneous_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.spontaneous_check_seconds)
                await self._spontaneous_tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Spontaneous interjection tick failed")

    async def _spontaneous_tick(self) -> int:
        """One pass over followed channels; returns how many interjections were sent."""
        if not self.settings.fill_silence_enabled:
            return 0
        bot_id = self._bot_id()
        emitted = 0
        for channel in self._followed_channels():
            if not self.state.amplifier.should_check(str(channel.id), bot_id):
                continue
            if await self._maybe_interject(channel, None):
                emitted += 1
        return emitted

    async def _trim_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.db_trim_interval_secs)
                await self._trim_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Message history trim failed")

    async def _trim_once(self) -> int:
        deleted = await self.store.trim(self.settings.message_history_limit)
        if deleted:
            logger.info("Trimmed %s old messages (limit %s)", deleted, self.settings.message_history_limit)
        return deleted
