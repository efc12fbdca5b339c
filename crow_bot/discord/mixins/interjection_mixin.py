from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from ...engine.context import clean_display_name
from ...engine.silence import scaled_probability
from ...errors import LLMError
from ...prompts.templates import usable_reply
from ...services.verification import extract_first_url
from ..common import ObservedMessage, truncate

logger = logging.getLogger("crow_bot")

MEMORY_MIN_AGE_SECONDS = 3600

INTERJECTION_ORDER = ("mst3k", "memory", "pondering", "ai", "fact", "news")


class InterjectionMixin:
    async def _maybe_interject(
        self,
        channel: Any,
        observed: ObservedMessage | None,
        *,
        multiplier: float | None = None,
    ) -> bool:
        """Roll each interjection in order; emit the first one that produces text.

        The ticker lets the multiplier follow the ongoing silence; the message path
        passes the value read before the message itself reset the channel.
        """
        channel_id = str(channel.id)
        if multiplier is None:
            multiplier = self.state.amplifier.multiplier(channel_id, self._bot_id())
        probabilities = self.settings.interjection_probabilities()
        for kind in INTERJECTION_ORDER:
            probability = scaled_probability(probabilities.get(kind, 0.0), multiplier)
            if probability <= 0.0 or self.rng.random() >= probability:
                continue
            logger.info("[interject] channel=%s kind=%s p=%.4f rolled", channel_id, kind, probability)
            text = await self._interjection_text(kind, channel_id, observed)
            if not text:
                logger.info("[interject] channel=%s kind=%s produced nothing", channel_id, kind)
                continue
            await self._emit(channel, text, path=f"interjection:{kind}")
            return True
        return False

    async def _interjection_text(self, kind: str, channel_id: str, observed: ObservedMessage | None) -> str:
        builder = getattr(self, f"_interjection_{kind}")
        try:
            return await builder(channel_id, observed)
        except asyncio.CancelledError:
            raise
        except LLMError as exc:
            logger.info("[interject] kind=%s LLM failure kept silent: %s", kind, exc)
        except Exception:
            logger.exception("[interject] kind=%s failed", kind)
        return ""

    async def _interjection_mst3k(self, channel_id: str, observed: ObservedMessage | None) -> str:
        return (await self.flavor.random_mst3k_line()).strip()

    async def _interjection_memory(self, channel_id: str, observed: ObservedMessage | None) -> str:
        row = await self.store.random_channel_memory(
            channel_id,
            exclude_author_id=self._bot_id(),
            older_than=int(time.time()) - MEMORY_MIN_AGE_SECONDS,
        )
        if row is None:
            return ""
        context = await self._context_for(channel_id)
        prompt = self.prompts.build(
            "memory_interjection",
            user=clean_display_name(str(row.get("display_name") or row.get("author") or "someone")),
            message=str(row.get("content") or ""),
            context=context,
        )
        return usable_reply(await self.llm.generate_text(prompt))

    async def _interjection_pondering(self, channel_id: str, observed: ObservedMessage | None) -> str:
        context = await self._context_for(channel_id)
        if not context:
            return ""
        return usable_reply(await self.llm.generate_text(self.prompts.build("pondering_interjection", context=context)))

    async def _interjection_ai(self, channel_id: str, observed: ObservedMessage | None) -> str:
        context = await self._context_for(channel_id)
        return usable_reply(await self.llm.generate_text(self.prompts.build("ai_interjection", context=context)))

    async def _interjection_fact(self, channel_id: str, observed: ObservedMessage | None) -> str:
        context = await self._context_for(channel_id)
        text = usable_reply(await self.llm.generate_text(self.prompts.build("fact_interjection", context=context)))
        if not text:
            return ""
        citation = await self.verifier.verify_fact(text)
        if citation is None:
            logger.info('[interject] fact failed verification: "%s"', truncate(text, 120))
            return ""
        if citation.url == extract_first_url(text):
            return text
        return citation.format_fact()

    async def _interjection_news(self, channel_id: str, observed: ObservedMessage | None) -> str:
        context = await self._context_for(channel_id)
        text = usable_reply(await self.llm.generate_text(self.prompts.build("news_interjection", context=context)))
        if not text:
            return ""
        citation = await self.verifier.verify_news(text, self.settings.news_domains)
        if citation is None:
            logger.info('[interject] news failed verification: "%s"', truncate(text, 120))
            return ""
        return text
