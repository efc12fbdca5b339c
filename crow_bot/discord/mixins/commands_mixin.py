from __future__ import annotations

import asyncio
import io
import logging
import sys
import time
from typing import Any

import aiohttp
import discord

from ...engine.context import clean_display_name
from ...engine.flavor import band_genre, buzz, insult
from ...engine.triggers import ParsedCommand, parse_command
from ...errors import LLMError, Surface
from ...prompts.templates import usable_reply
from ...services.screenshots import parse_screenshot_args
from ..common import ObservedMessage, humanize_duration
from .reaction_mixin import failure_reply

logger = logging.getLogger("crow_bot")

HELP_TEXT = (
    "Available commands:\n"
    "!hello - Say hello\n"
    "!help - Show this help message\n"
    "!info - Uptime, storage and rate limit status\n"
    "!buzz - Corporate wisdom on demand\n"
    "!trump - Generate an insult\n"
    "!bandname <name> - What kind of music does that band play?\n"
    "!fightcrime - Generate a crime fighting duo\n"
    "!quote [search_term] - Get a random quote\n"
    "!quote -show [show_name] - Get a random quote from a specific show\n"
    "!quote -dud [username] - Get a random message from a user\n"
    "!slogan [search_term] - Get a random advertising slogan\n"
    "!frinkiac / !morbotron / !masterofallscience [text] [-s season] [-e episode] - Find a screenshot\n"
    "!imagine <description> - Generate an image\n"
    "!alive <name> - Is that celebrity still alive?\n"
    "!lastseen <name> - When did someone last speak?"
)
QUOTE_STORE_MISSING = "Quote database is not configured."

COMMANDS = {
    "help": "_cmd_help",
    "info": "_cmd_info",
    "hello": "_cmd_hello",
    "buzz": "_cmd_buzz",
    "trump": "_cmd_trump",
    "bandname": "_cmd_bandname",
    "fightcrime": "_cmd_fightcrime",
    "quote": "_cmd_quote",
    "slogan": "_cmd_slogan",
    "frinkiac": "_cmd_screenshot",
    "morbotron": "_cmd_screenshot",
    "masterofallscience": "_cmd_screenshot",
    "imagine": "_cmd_imagine",
    "alive": "_cmd_alive",
    "lastseen": "_cmd_lastseen",
}


def _process_rss_mb() -> float | None:
    if sys.platform.startswith("win"):
        return None
    import resource

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS reports bytes.
    return peak / (1024 * 1024) if sys.platform == "darwin" else peak / 1024


class CommandsMixin:
    async def _dispatch_command(self, observed: ObservedMessage, channel: Any, message: Any) -> None:
        command = parse_command(observed.content)
        if command is None:
            return
        handler_name = COMMANDS.get(command.name)
        logger.info("[cmd] channel=%s user=%s command=%s", observed.channel_id, observed.author_name, command.name)
        if handler_name is None:
            await self._cmd_unknown(observed, channel, message, command)
            return
        handler = getattr(self, handler_name)
        await handler(observed, channel, message, command)

    async def _reply(self, channel: Any, text: str, *, command: str, reference: Any = None) -> None:
        await self._emit(channel, text, reference=reference, path=f"command:{command}", typing=False)

    async def _cmd_help(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        await self._reply(channel, HELP_TEXT, command=command.name)

    async def _cmd_hello(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        await self._reply(channel, "world!", command=command.name)

    async def _cmd_info(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        try:
            rows = await self.store.count_messages()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Row count failed for !info")
            rows = -1
        usage = self.governor.usage()
        text_usage = usage[Surface.TEXT]
        image_usage = usage[Surface.IMAGE]
        rss = _process_rss_mb()
        image_note = " (quota exhausted until tomorrow)" if self.governor.image_quota_exhausted() else ""
        lines = [
            f"**{self.settings.bot_name}** status",
            f"Uptime: {humanize_duration(time.monotonic() - self.started_at)}",
            f"Messages stored: {rows if rows >= 0 else 'unknown'} (limit {self.settings.message_history_limit})",
            f"Memory (peak RSS): {f'{rss:.1f} MB' if rss is not None else 'unknown'}",
            (
                f"Text LLM: {text_usage.minute_used}/{text_usage.minute_limit} this minute, "
                f"{text_usage.day_used}/{text_usage.day_limit} today"
            ),
            (
                f"Image LLM: {image_usage.minute_used}/{image_usage.minute_limit} this minute, "
                f"{image_usage.day_used}/{image_usage.day_limit} today{image_note}"
            ),
            f"Fill silence: {'on' if self.settings.fill_silence_enabled else 'off'}",
            f"Quote database: {'configured' if self.flavor.available else 'not configured'}",
            f"Web search fallback: {'on' if self.settings.search_fallback_enabled else 'off'}",
        ]
        await self._reply(channel, "\n".join(lines), command=command.name)

    async def _cmd_buzz(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        await self._reply(channel, buzz(self.rng), command=command.name)

    async def _cmd_trump(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        await self._reply(channel, insult(self.rng), command=command.name)

    async def _cmd_bandname(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        if not command.raw_args:
            await self._reply(channel, "Usage: !bandname <band name>", command=command.name)
            return
        await self._reply(channel, band_genre(command.raw_args, self.rng), command=command.name)

    async def _cmd_fightcrime(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        await self._reply(channel, self._crime_fighting_duo(observed.author_name), command=command.name)

    async def _cmd_quote(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        if command.has_flag("-dud"):
            await self._quote_user(channel, command)
            return
        if not self.flavor.available:
            await self._reply(channel, QUOTE_STORE_MISSING, command=command.name)
            return

        search_words, show_words = command.args, []
        if command.has_flag("-show"):
            index = command.args.index("-show")
            search_words, show_words = command.args[:index], command.args[index + 1 :]
        search = " ".join(search_words) or None
        show = " ".join(show_words) or None
        try:
            pick = await self.flavor.random_quote(search, show)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Quote lookup failed")
            await self._reply(channel, "Error accessing quote database", command=command.name)
            return
        if pick is None:
            await self._reply(channel, "No quotes found matching your search.", command=command.name)
            return
        await self._reply(channel, pick.format_quote(), command=command.name)

    async def _quote_user(self, channel: Any, command: ParsedCommand) -> None:
        name = command.option("-dud")
        try:
            row = await self.store.random_message_by(name)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("User quote lookup failed")
            await self._reply(channel, "Error retrieving user quotes", command=command.name)
            return
        if row is None:
            target = f" from {name}" if name else ""
            await self._reply(channel, f"No messages found{target}.", command=command.name)
            return
        speaker = clean_display_name(str(row.get("display_name") or row.get("author") or "unknown"))
        await self._reply(channel, f"<{speaker}> {row.get('content')}", command=command.name)

    async def _cmd_slogan(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        if not self.flavor.available:
            await self._reply(channel, QUOTE_STORE_MISSING, command=command.name)
            return
        try:
            pick = await self.flavor.random_slogan(command.raw_args or None)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Slogan lookup failed")
            await self._reply(channel, "Error accessing slogan database", command=command.name)
            return
        if pick is None:
            await self._reply(channel, "No slogans found matching your search.", command=command.name)
            return
        await self._reply(channel, pick.format_slogan(), command=command.name)

    async def _cmd_screenshot(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        client = self.screenshots[command.name]
        query = parse_screenshot_args(command.raw_args)
        try:
            result = await client.search(query)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError, KeyError) as exc:
            logger.warning("%s search failed for %r: %s", client.name, query.text, exc)
            await self._reply(channel, f"Sorry, {client.name} is not answering right now.", command=command.name)
            return
        if result is None:
            label = f' for "{query.text}"' if query.text else ""
            await self._reply(channel, f"No {client.show_title} screenshots found{label}.", command=command.name)
            return
        await self._reply(channel, result.format(), command=command.name)

    async def _cmd_imagine(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        prompt = command.raw_args
        if not prompt:
            await self._reply(channel, "Usage: !imagine <description>", command=command.name)
            return
        if not self._is_image_channel(channel):
            labels = self._image_channel_labels()
            if labels:
                text = f"Image generation is only available in: {', '.join(labels)}"
            else:
                text = "Image generation is not available in this channel."
            await self._reply(channel, text, command=command.name, reference=message)
            return

        try:
            async with channel.typing():
                image = await self.llm.generate_image(prompt)
        except LLMError as exc:
            logger.warning("Image generation failed for %r: %s", prompt, exc)
            text = failure_reply(exc, explicit=True, surface=Surface.IMAGE)
            if text:
                await self._reply(channel, text, command=command.name, reference=message)
            return

        extension = (image.mime_type.split("/")[-1] or "png").split(";")[0]
        attachment = discord.File(io.BytesIO(image.data), filename=f"imagine.{extension}")
        caption = f"Here's what I imagine for: {prompt}"
        if image.description:
            caption = f"{caption}\n\n{image.description}"
        await self._emit(channel, caption, reference=message, path="command:imagine", typing=False, file=attachment)

    async def _cmd_alive(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        name = command.raw_args
        if not name:
            await self._reply(channel, "Usage: !alive [celebrity name]", command=command.name)
            return
        try:
            status = await self.celebrity.lookup(name)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as exc:
            logger.warning("Celebrity lookup failed for %r: %s", name, exc)
            await self._reply(channel, "Sorry, I couldn't look that up right now.", command=command.name)
            return
        if status is None:
            await self._reply(channel, f"I couldn't find any information about '{name}'.", command=command.name)
            return
        await self._reply(channel, status.format(), command=command.name)

    async def _cmd_lastseen(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        name = command.raw_args
        if not name:
            await self._reply(channel, "Usage: !lastseen [name]", command=command.name)
            return
        lowered = name.lower()
        if lowered == self.settings.bot_name.lower():
            await self._reply(channel, "I'm right here!", command=command.name)
            return
        if lowered in {observed.author_name.lower(), clean_display_name(observed.display_name).lower()}:
            await self._reply(channel, "You're right here!", command=command.name)
            return
        try:
            row = await self.store.find_last_by(name)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Last-seen lookup failed for %r", name)
            await self._reply(channel, "Error looking up last seen", command=command.name)
            return
        if row is None:
            await self._reply(channel, f'I haven\'t seen anyone matching "{name}"', command=command.name)
            return
        speaker = clean_display_name(str(row.get("display_name") or row.get("author") or name))
        ago = humanize_duration(time.time() - float(row.get("timestamp") or 0))
        await self._reply(
            channel,
            f'{speaker} was last seen {ago} ago, saying: "{row.get("content")}"',
            command=command.name,
        )

    async def _cmd_unknown(self, observed: ObservedMessage, channel: Any, message: Any, command: ParsedCommand) -> None:
        prompt = self.prompts.unknown_command(command.name, command.raw_args)
        try:
            raw = await self.llm.generate_text(prompt)
        except LLMError as exc:
            logger.info("Unknown-command reply failed for !%s: %s", command.name, exc)
            text = failure_reply(exc, explicit=True)
            if text:
                await self._reply(channel, text, command=command.name)
            return
        reply = usable_reply(raw)
        if reply:
            await self._reply(channel, reply, command=command.name)
