from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import discord

from ...engine.context import clean_display_name, format_context
from ...engine.flavor import crime_fighting_duo
from ...engine.substitution import Candidate, apply_substitution, is_substitution
from ...engine.triggers import CRIME_FIGHTING_DUO, match_keyword, short_circuit_reply
from ...errors import (
    LLMError,
    QuotaExhaustedError,
    SafetyBlockedError,
    SilentOverloadError,
    Surface,
    TextOnlyResponse,
)
from ...memory.records import MessageRecord
from ...memory.storage.utils import SENTINEL_MESSAGE_ID
from ...prompts.templates import usable_reply
from ..common import ObservedMessage, chunk_text, observed_from_discord, truncate, typing_delay_seconds

logger = logging.getLogger("crow_bot")

APOLOGY_TEXT = "Sorry, I'm having trouble thinking right now. Try again in a bit."
TEXT_QUOTA_TEXT = "I've used up my thinking budget for today. Try again tomorrow."
IMAGE_QUOTA_TEXT = "Image generation quota is exhausted for today. It will be available again tomorrow (UTC)."
TEXT_BLOCKED_TEXT = "Sorry, I can't respond to that."


def failure_reply(exc: LLMError, *, explicit: bool, surface: Surface = Surface.TEXT) -> str | None:
    """User-visible text for an LLM failure, or None when the path must stay silent."""
    if not explicit or isinstance(exc, SilentOverloadError):
        return None
    if isinstance(exc, TextOnlyResponse):
        return exc.text
    if isinstance(exc, SafetyBlockedError):
        return exc.message if surface is Surface.IMAGE else TEXT_BLOCKED_TEXT
    if isinstance(exc, QuotaExhaustedError):
        return IMAGE_QUOTA_TEXT if exc.surface is Surface.IMAGE else TEXT_QUOTA_TEXT
    return APOLOGY_TEXT


class ReactionMixin:
    async def on_message(self, message: discord.Message) -> None:
        observed = observed_from_discord(message, self.settings.gateway_bot_ids)
        try:
            await self._process_message(observed, message.channel, message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Message handling failed for message=%s channel=%s", observed.message_id, observed.channel_id)

    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if before.content == after.content:
            return
        observed = observed_from_discord(after, self.settings.gateway_bot_ids)
        await self._persist(observed)

    async def _persist(self, observed: ObservedMessage) -> None:
        try:
            await self.store.save_message(observed.to_record())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to persist message=%s channel=%s", observed.message_id, observed.channel_id)

    async def _process_message(
        self,
        observed: ObservedMessage,
        channel: Any,
        message: Any,
        *,
        replay: bool = False,
    ) -> str:
        """Persist the message, then take the first matching reaction path. Returns the path name."""
        await self._persist(observed)
        self.state.mark_seen(observed.channel_id, observed.timestamp, observed.message_id)

        bot_id = self._bot_id()
        if observed.author_id == bot_id:
            self.state.amplifier.record_activity(observed.channel_id, bot_id)
            return "self"
        if not self._is_followed_channel(channel):
            return "unfollowed"
        if observed.is_bot and not observed.is_gateway:
            return "bot"

        # Silence is measured up to this message, so read the multiplier before recording it.
        multiplier = self.state.amplifier.multiplier(observed.channel_id, bot_id)
        self.state.amplifier.record_activity(observed.channel_id, observed.author_id)
        self.state.recent_speakers.observe(observed.author_name, observed.display_name)
        logger.info(
            '[msg.user] channel=%s user=%s replay=%s text="%s"',
            observed.channel_name or observed.channel_id,
            observed.author_name,
            replay,
            truncate(observed.content, 160),
        )

        content = observed.content.strip()
        if not content:
            return "empty"

        canned = short_circuit_reply(content)
        if canned is not None:
            if canned == CRIME_FIGHTING_DUO:
                canned = self._crime_fighting_duo(observed.author_name)
            await self._emit(channel, canned, path="short_circuit", typing=False)
            return "short_circuit"

        if is_substitution(content):
            await self._handle_substitution(observed, channel, message)
            return "substitution"

        if content.startswith("!"):
            await self._dispatch_command(observed, channel, message)
            return "command"

        if self._is_addressed(observed):
            await self._respond_to_address(observed, channel, message)
            return "address"

        keyword_reply = match_keyword(content, self.keyword_triggers)
        if keyword_reply:
            await self._emit(channel, keyword_reply, path="keyword")
            return "keyword"

        if await self._maybe_interject(channel, observed, multiplier=multiplier):
            return "interjection"
        return "none"

    def _crime_fighting_duo(self, invoker: str | None) -> str:
        first, second = self.state.recent_speakers.pick_pair(exclude_author=invoker)
        return crime_fighting_duo(first, second, self.rng)

    async def _context_for(self, channel_id: str, *, exclude_message_id: str | None = None) -> str:
        limit = self.settings.gemini_context_messages
        if limit <= 0:
            return ""
        try:
            rows = await self.store.get_recent_messages(channel_id, limit, exclude_message_id=exclude_message_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Context lookup failed for channel=%s", channel_id)
            return ""
        return format_context(rows)

    async def _prior_messages(self, channel: Any, message: Any, limit: int = 4) -> list[Candidate]:
        bot_id = self._bot_id()
        candidates: list[Candidate] = []
        async for prior in channel.history(limit=limit, before=message):
            observed = observed_from_discord(prior, self.settings.gateway_bot_ids)
            candidates.append(
                Candidate(
                    author_name=observed.display_name or observed.author_name,
                    content=observed.content,
                    from_bot=observed.author_id == bot_id,
                )
            )
        return candidates

    async def _handle_substitution(self, observed: ObservedMessage, channel: Any, message: Any) -> None:
        try:
            prior = await self._prior_messages(channel, message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Could not fetch history for substitution in channel=%s: %s", observed.channel_id, exc)
            return
        result = apply_substitution(observed.content, prior)
        if result is None:
            logger.info("Substitution %r matched nothing", truncate(observed.content, 80))
            return
        await self._emit(channel, result, path="substitution", typing=False)

    async def _respond_to_address(self, observed: ObservedMessage, channel: Any, message: Any) -> None:
        user_text = self._strip_bot_mention(observed.content)
        context = await self._context_for(observed.channel_id, exclude_message_id=observed.message_id)
        prompt = self.prompts.general_response(
            user=clean_display_name(observed.display_name or observed.author_name),
            message=user_text,
            context=context,
        )
        try:
            raw = await self.llm.generate_text(prompt)
        except LLMError as exc:
            logger.warning("Direct reply failed in channel=%s: %s", observed.channel_id, exc)
            text = failure_reply(exc, explicit=True)
            if text:
                await self._emit(channel, text, reference=message, path="address_error", typing=False)
            return

        reply = usable_reply(raw)
        if not reply:
            logger.info("Direct reply declined or echoed the prompt; staying quiet")
            return
        await self._emit(channel, reply, reference=message, path="address")

    async def _emit(
        self,
        channel: Any,
        text: str,
        *,
        reference: Any = None,
        path: str,
        typing: bool = True,
        file: Any = None,
    ) -> list[Any]:
        if not text.strip() and file is None:
            return []
        if typing and self.settings.realistic_typing:
            async with channel.typing():
                await self._sleep(typing_delay_seconds(text))

        sent: list[Any] = []
        chunks = chunk_text(text, 1900) if text.strip() else [""]
        for index, chunk in enumerate(chunks):
            kwargs: dict[str, Any] = {}
            if index == 0 and reference is not None:
                kwargs["reference"] = reference
            if index == len(chunks) - 1 and file is not None:
                kwargs["file"] = file
            sent.append(await channel.send(chunk or None, **kwargs))

        channel_id = str(channel.id)
        for item, chunk in zip(sent, chunks):
            await self._record_bot_message(channel, item, chunk)
        self.state.amplifier.record_activity(channel_id, self._bot_id())
        logger.info('[msg.bot] channel=%s path=%s text="%s"', channel_id, path, truncate(text, 160))
        return sent

    async def _record_bot_message(self, channel: Any, sent: Any, text: str) -> None:
        created = getattr(sent, "created_at", None)
        guild = getattr(channel, "guild", None)
        record = MessageRecord(
            message_id=str(getattr(sent, "id", "") or SENTINEL_MESSAGE_ID),
            channel_id=str(channel.id),
            author_id=self._bot_id(),
            author_name=str(self.user.name) if self.user else self.settings.bot_name,
            display_name=self.settings.bot_name,
            content=text,
            timestamp=created.timestamp() if created is not None else time.time(),
            guild_id=str(guild.id) if guild is not None else None,
        )
        try:
            await self.store.save_message(record)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to persist bot message in channel=%s", record.channel_id)
            return
        if record.message_id != SENTINEL_MESSAGE_ID:
            self.state.mark_seen(record.channel_id, record.timestamp, record.message_id)
