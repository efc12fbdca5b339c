from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

_ADDRESS_VERBS = ("can you", "could you", "will you", "would you", "please", "ask", "tell")
_REQUEST_OPENERS = _ADDRESS_VERBS + ("give", "show", "say", "write", "explain", "sing", "draw", "find")
_SALUTATIONS = ("hey", "hi", "hello", "ok", "okay", "yo", "thanks", "thank you", "morning", "night")
_DETERMINERS = ("the", "a", "an", "this", "that", "my", "your", "his", "her", "their", "our", "some", "every", "any")


@lru_cache(maxsize=16)
def _patterns(bot_name: str) -> dict[str, Any]:
    name = re.escape(bot_name.lower())
    determiners = "|".join(_DETERMINERS)
    return {
        "leading": re.compile(rf"^{name}(?:$|[\s?!,:])"),
        "salutations": tuple(
            re.compile(pattern)
            for pattern in (
                rf"\b(?:{'|'.join(_SALUTATIONS)})\s+{name}\b",
                rf"(?:^|\s){name},",
                rf"@{name}\b",
            )
        ),
        "standalone": re.compile(rf"(?<![\w@]){name}(?!\w)"),
        "referents": tuple(
            re.compile(pattern)
            for pattern in (
                rf"\b(?:than|like|about|rhymes with|named|called|as)\s+{name}\b",
                rf"\b{name}\s+(?:is|was|has|had|does|did|seems|said|says)\b",
                rf"\b{name}'s\b",
            )
        ),
        "determiner": re.compile(rf"\b(?:{determiners})\s+(?:[a-z]+\s+)?{name}\b"),
        # "tell me a joke crow": the noun phrase closes the request and the name trails it.
        "request_tail": re.compile(
            rf"^(?:{'|'.join(_REQUEST_OPENERS)})\b.*\b(?:{determiners})\s+[a-z]+\s+{name}[?!.]*$"
        ),
    }


def _normalise(text: str) -> str:
    return " ".join(text.lower().split())


def is_direct_address(text: str, bot_name: str) -> bool:
    """True when the message is aimed at the bot rather than merely mentioning it.

    Positive forms: leading name, salutations, or a standalone name at either
    end of the message or followed by punctuation or a request verb. Any
    negative form (the name used as a referent) vetoes the match, and a bare
    mention with no positive form is not an address. A request that ends with
    the name after a noun phrase is a vocative, not a determiner referent.
    """
    if not text or not bot_name:
        return False
    lowered = _normalise(text)
    patterns = _patterns(bot_name)

    if any(pattern.search(lowered) for pattern in patterns["referents"]):
        return False
    if patterns["determiner"].search(lowered) and not patterns["request_tail"].match(lowered):
        return False

    if patterns["leading"].match(lowered):
        return True
    if any(pattern.search(lowered) for pattern in patterns["salutations"]):
        return True

    for match in patterns["standalone"].finditer(lowered):
        before = lowered[: match.start()].strip()
        after = lowered[match.end() :]
        stripped_after = after.strip()
        if not before or not stripped_after.strip("?!.,:;"):
            return True
        if after[:1] in {"?", "!", ",", ":"}:
            return True
        if any(stripped_after.startswith(verb + " ") or stripped_after == verb for verb in _ADDRESS_VERBS):
            return True
    return False
