from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger("crow_bot")

CRIME_FIGHTING_DUO = "CRIME_FIGHTING_DUO"
KUNG_FU_TOKENS = {"whoa", "woah"}
KUNG_FU_REPLY = "I know kung fu!"

# Phrase -> canned reply; CRIME_FIGHTING_DUO is filled in by the engine.
SHORT_CIRCUITS: tuple[tuple[str, str], ...] = (
    ("who fights crime", CRIME_FIGHTING_DUO),
    ("lisa needs braces", "DENTAL PLAN!"),
    ("my spoon is too big", "I am a banana!"),
)


def short_circuit_reply(content: str) -> Optional[str]:
    lowered = " ".join((content or "").lower().split())
    if not lowered:
        return None
    if lowered.rstrip("!.?") in KUNG_FU_TOKENS:
        return KUNG_FU_REPLY
    for phrase, reply in SHORT_CIRCUITS:
        if phrase in lowered:
            return reply
    return None


@dataclass(slots=True)
class KeywordTrigger:
    keywords: List[str]
    reply: str

    def matches(self, lowered: str) -> bool:
        return bool(self.keywords) and all(keyword in lowered for keyword in self.keywords)


def default_keyword_triggers(bot_name: str) -> List[KeywordTrigger]:
    return [
        KeywordTrigger(["magic", "voice"], "I heard someone talking about magic voice!"),
        KeywordTrigger(["discord", "bot"], f"Yes, I'm a Discord bot! My name is {bot_name}!"),
    ]


def load_keyword_triggers(path: Path | None, bot_name: str) -> List[KeywordTrigger]:
    """Read `[{"keywords": [...], "reply": "..."}]`; a missing or broken file falls back to the defaults."""
    if path is None:
        return default_keyword_triggers(bot_name)
    if not path.exists():
        logger.warning("Keyword trigger file not found at %s; using defaults", path)
        return default_keyword_triggers(bot_name)
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read keyword triggers %s (%s); using defaults", path, exc)
        return default_keyword_triggers(bot_name)
    if not isinstance(payload, list):
        logger.warning("Keyword trigger file root must be a list: %s", path)
        return default_keyword_triggers(bot_name)

    triggers: List[KeywordTrigger] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        keywords = [str(word).strip().lower() for word in item.get("keywords") or [] if str(word).strip()]
        reply = str(item.get("reply") or "").strip()
        if keywords and reply:
            triggers.append(KeywordTrigger(keywords, reply.replace("{bot_name}", bot_name)))
    logger.info("Loaded %s keyword triggers from %s", len(triggers), path)
    return triggers


def match_keyword(content: str, triggers: Iterable[KeywordTrigger]) -> Optional[str]:
    lowered = (content or "").lower()
    for trigger in triggers:
        if trigger.matches(lowered):
            return trigger.reply
    return None


@dataclass(slots=True)
class ParsedCommand:
    name: str
    args: List[str] = field(default_factory=list)
    raw_args: str = ""

    def option(self, flag: str) -> Optional[str]:
        """Value following `flag`, or None when the flag or its value is missing."""
        if flag not in self.args:
            return None
        index = self.args.index(flag) + 1
        if index >= len(self.args):
            return None
        return self.args[index]

    def has_flag(self, flag: str) -> bool:
        return flag in self.args


def parse_command(content: str) -> Optional[ParsedCommand]:
    text = (content or "").strip()
    if not text.startswith("!") or len(text) < 2:
        return None
    body = text[1:]
    parts = body.split()
    if not parts:
        return None
    raw_args = body.strip()[len(parts[0]) :].strip()
    return ParsedCommand(name=parts[0].lower(), args=parts[1:], raw_args=raw_args)
