from __future__ import annotations

import asyncio
import contextlib
import logging

from .config import Settings
from .discord.client import CrowDiscordBot
from .memory.flavor_store import FlavorStore
from .memory.store import MessageStore
from .prompts.templates import PromptBuilder
from .services.celebrity import CelebrityLookup
from .services.gemini_client import GeminiClient
from .services.rate_limiter import LLMGovernor, RateLimiter
from .services.screenshots import build_screenshot_clients
from .services.verification import CitationVerifier
from .services.web_search import WebSearchClient

logger = logging.getLogger("crow_bot")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def build_governor(settings: Settings) -> LLMGovernor:
    return LLMGovernor(
        text=RateLimiter(
            "text",
            settings.gemini_rate_limit_minute,
            settings.gemini_rate_limit_day,
            state_path=settings.rate_limit_state_path,
        ),
        image=RateLimiter(
            "image",
            settings.gemini_image_rate_limit_minute,
            settings.gemini_image_rate_limit_day,
            state_path=settings.rate_limit_state_path,
        ),
    )


def build_bot(settings: Settings) -> CrowDiscordBot:
    llm = GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        image_model=settings.gemini_image_model,
        governor=build_governor(settings),
        temperature=settings.gemini_temperature,
        base_url=settings.gemini_base_url,
    )
    search = WebSearchClient() if settings.search_fallback_enabled else None
    prompts = PromptBuilder(
        bot_name=settings.bot_name,
        personality=settings.personality,
        prompt_wrapper=settings.gemini_prompt_wrapper,
        interjection_prompt=settings.gemini_interjection_prompt,
    )
    return CrowDiscordBot(
        settings=settings,
        store=MessageStore(settings.sqlite_path),
        flavor=FlavorStore(settings.flavor_db_path),
        llm=llm,
        prompts=prompts,
        verifier=CitationVerifier(llm, prompts, search=search),
        celebrity=CelebrityLookup(),
        screenshots=build_screenshot_clients(),
        search=search,
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    settings.validate()
    if settings.config_keys_loaded:
        logger.info("Loaded %s keys from config file", len(settings.config_keys_loaded))
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; LLM replies and interjections will fail quietly")
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
