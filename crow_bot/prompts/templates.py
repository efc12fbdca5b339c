from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger("crow_bot.prompts")

_DEFAULTS: dict[str, Any] = {
    "personality": (
        "a wisecracking robot aboard the Satellite of Love who riffs on bad movies. "
        "You are sarcastic but never cruel, quick with a pop-culture reference, and you keep answers short. "
        "Never use terms of endearment."
    ),
    "traits": {
        "tone": "dry and playful",
        "humor": "MST3K-style riffing",
        "knowledge": "broad trivia, science and film",
        "verbosity": "one to three sentences",
        "references": "classic sci-fi and B-movies",
    },
    "general_response": (
        "You are {bot_name}, {personality}\n"
        "Tone: {tone}. Humor: {humor}. Length: {verbosity}.\n"
        "You are responding to {user}. Be concise, helpful, and in character. "
        "Here is their message: {message}\n\n"
        "Recent conversation context:\n{context}"
    ),
    "ai_interjection": (
        "You are {bot_name}, {personality}\n"
        "You are lurking in a chat and may chime in with one short, funny remark about the conversation below. "
        "Do not greet anyone and do not explain yourself. If nothing is worth saying, reply with exactly: pass\n\n"
        "Conversation:\n{context}"
    ),
    "pondering_interjection": (
        "You are {bot_name}, {personality}\n"
        "Muse aloud, in one or two sentences, about something the conversation below made you wonder. "
        "Start with something like 'I wonder' or 'Ever notice'. If nothing stands out, reply with exactly: pass\n\n"
        "Conversation:\n{context}"
    ),
    "memory_interjection": (
        "You are {bot_name}, {personality}\n"
        "A while ago {user} said: \"{message}\"\n"
        "Bring that comment back up naturally in one sentence, as if you just remembered it, "
        "relating it to the current conversation if possible. If it would be awkward, reply with exactly: pass\n\n"
        "Current conversation:\n{context}"
    ),
    "fact_interjection": (
        "You are {bot_name}, {personality}\n"
        "Share one surprising but true fact related to the conversation below, in one or two sentences. "
        "You must cite a specific web page that states the fact, ending your reply with 'Source: <URL>'. "
        "Do not cite search engines or home pages. If you cannot cite a real page, reply with exactly: pass\n\n"
        "Conversation:\n{context}"
    ),
    "news_interjection": (
        "You are {bot_name}, {personality}\n"
        "Share one real news article from a reputable outlet that relates to the conversation below. "
        "Format your reply exactly as '<article title>: <article URL>' followed by one short comment. "
        "The URL must point to the article itself, not a section or archive page. "
        "If you do not know a real article, reply with exactly: pass\n\n"
        "Conversation:\n{context}"
    ),
    "unknown_command": (
        "You are {bot_name}, {personality}\n"
        "Someone typed the command !{command}, which does not exist. "
        "Invent a short, funny explanation of what !{command} would have done and why it is disabled. "
        "Start with 'Disabled because'. One or two sentences."
    ),
    "unknown_command_with_args": (
        "You are {bot_name}, {personality}\n"
        "Someone typed the command !{command} with the arguments \"{message}\", but that command does not exist. "
        "Invent a short, funny explanation of what it would have done with those arguments and why it is disabled. "
        "Start with 'Disabled because'. One or two sentences."
    ),
    "celebrity_status": (
        "Using only the encyclopedia extract below, say in one sentence whether {user} is alive or dead, "
        "with their age or date of death if the extract gives it. If the extract does not say, reply with exactly: pass\n\n"
        "Extract:\n{message}"
    ),
    "verification": (
        "You are checking whether a web page supports a claim.\n"
        "Claim: {claim}\n\n"
        "Page excerpt:\n{excerpt}\n\n"
        "Answer with exactly one word: MATCH if the excerpt clearly supports the claim, "
        "MISMATCH if it contradicts or is unrelated to the claim, UNCERTAIN otherwise."
    ),
}

_ECHO_MARKERS = ("{bot_name}", "{context}", "{personality}", "guidelines:", "example good response:")
_PLACEHOLDER_RE = re.compile(r"\{([a-z_]+)\}")


def _overrides_path() -> Path:
    return Path(__file__).with_name("data") / "templates.json"


def _load_templates() -> dict[str, Any]:
    merged = json.loads(json.dumps(_DEFAULTS))
    path = _overrides_path()
    if not path.exists():
        return merged
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read prompt overrides %s (%s); using defaults", path, exc)
        return merged
    if not isinstance(payload, dict):
        logger.warning("Prompt overrides root must be an object: %s", path)
        return merged
    for key, value in payload.items():
        if key == "traits" and isinstance(value, dict):
            merged["traits"].update({str(k): str(v) for k, v in value.items()})
        elif isinstance(value, str) and value.strip():
            merged[key] = value
    return merged


TEMPLATES = _load_templates()


def render(template: str, values: Mapping[str, object]) -> str:
    """Fill `{slot}` placeholders that have a value; unknown slots are left untouched."""

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in values:
            return str(values[key])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)


class PromptBuilder:
    def __init__(
        self,
        bot_name: str,
        personality: str = "",
        prompt_wrapper: str = "",
        interjection_prompt: str = "",
    ) -> None:
        self.bot_name = bot_name
        self.personality = personality.strip() or str(TEMPLATES["personality"])
        self.prompt_wrapper = prompt_wrapper.strip()
        self.interjection_prompt = interjection_prompt.strip()

    def _base_values(self) -> dict[str, object]:
        values: dict[str, object] = {"bot_name": self.bot_name, "personality": self.personality}
        values.update(TEMPLATES["traits"])
        return values

    def build(self, name: str, **values: object) -> str:
        template = str(TEMPLATES[name])
        if name == "general_response" and self.prompt_wrapper:
            template = self.prompt_wrapper
        elif name == "ai_interjection" and self.interjection_prompt:
            template = self.interjection_prompt
        merged = self._base_values()
        merged.setdefault("context", "")
        merged.update(values)
        return render(template, merged)

    def general_response(self, user: str, message: str, context: str) -> str:
        return self.build("general_response", user=user, message=message, context=context)

    def unknown_command(self, command: str, args: str) -> str:
        if args.strip():
            return self.build("unknown_command_with_args", command=command, message=args.strip())
        return self.build("unknown_command", command=command)

    def verification(self, claim: str, excerpt: str) -> str:
        return render(str(TEMPLATES["verification"]), {"claim": claim, "excerpt": excerpt})


def is_pass(text: str) -> bool:
    return text.strip().lower().startswith("pass")


def looks_like_prompt_echo(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _ECHO_MARKERS)


def usable_reply(text: str | None) -> str:
    """Return the reply, or '' when the model declined or parroted the template."""
    if not text:
        return ""
    cleaned = text.strip()
    if not cleaned or is_pass(cleaned) or looks_like_prompt_echo(cleaned):
        return ""
    return cleaned
