from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time

import discord

from ..config import Settings
from ..engine.silence import InactivityAmplifier
from ..engine.state import EngineState
from ..engine.triggers import load_keyword_triggers
from ..memory.flavor_store import FlavorStore
from ..memory.store import MessageStore
from ..prompts.templates import PromptBuilder
from ..services.celebrity import CelebrityLookup
from ..services.gemini_client import GeminiClient
from ..services.screenshots import ScreenshotIndexClient
from ..services.verification import CitationVerifier
from ..services.web_search import WebSearchClient
from .mixins.commands_mixin import CommandsMixin
from .mixins.identity_mixin import IdentityMixin
from .mixins.interjection_mixin import InterjectionMixin
from .mixins.reaction_mixin import ReactionMixin
from .mixins.recovery_mixin import RecoveryMixin
from .mixins.workers_mixin import WorkersMixin

logger = logging.getLogger("crow_bot")


class CrowDiscordBot(
    ReactionMixin,
    CommandsMixin,
    InterjectionMixin,
    RecoveryMixin,
    WorkersMixin,
    IdentityMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        store: MessageStore,
        flavor: FlavorStore,
        llm: GeminiClient,
        prompts: PromptBuilder,
        verifier: CitationVerifier,
        celebrity: CelebrityLookup,
        screenshots: dict[str, ScreenshotIndexClient],
        search: WebSearchClient | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.messages = True

        super().__init__(intents=intents)

        self.settings = settings
        self.store = store
        self.flavor = flavor
        self.llm = llm
        self.governor = llm.governor
        self.verifier = verifier
        self.celebrity = celebrity
        self.screenshots = screenshots
        self.search = search
        self.prompts = prompts
        self.keyword_triggers = load_keyword_triggers(settings.keyword_triggers_path, settings.bot_name)
        self.state = EngineState(
            amplifier=InactivityAmplifier(
                settings.fill_silence_enabled,
                settings.fill_silence_start_hours,
                settings.fill_silence_max_hours,
            )
        )
        self.rng = random.Random()
        self.started_at = time.monotonic()
        self._sleep = asyncio.sleep
        self._recovery_lock = asyncio.Lock()

        self.spontaneous_task: asyncio.Task[None] | None = None
        self.trim_task: asyncio.Task[None] | None = None

    async def setup_hook(self) -> None:
        await self.store.init()
        await self.llm.start()
        await self.verifier.start()
        await self.celebrity.start()
        for client in self.screenshots.values():
            await client.start()
        if self.search is not None:
            await self.search.start()

        self.trim_task = asyncio.create_task(self._trim_loop(), name="history-trim")
        if self.settings.fill_silence_enabled:
            self.spontaneous_task = asyncio.create_task(self._spontaneous_loop(), name="spontaneous-ticker")
        logger.info(
            "Crow engine ready: followed=%s image_channels=%s flavor_store=%s keyword_triggers=%s",
            sorted(self.settings.followed_channel_ids) + sorted(self.settings.followed_channel_names),
            self._image_channel_labels() or "followed channels",
            "on" if self.flavor.available else "off",
            len(self.keyword_triggers),
        )

    async def close(self) -> None:
        await self._cancel_task(self.spontaneous_task)
        await self._cancel_task(self.trim_task)

        for name, client in self.screenshots.items():
            await self._run_shutdown_step(f"screenshots.{name}.close", client.close(), timeout=3.0)
        if self.search is not None:
            await self._run_shutdown_step("search.close", self.search.close(), timeout=3.0)
        await self._run_shutdown_step("celebrity.close", self.celebrity.close(), timeout=3.0)
        await self._run_shutdown_step("verifier.close", self.verifier.close(), timeout=3.0)
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
