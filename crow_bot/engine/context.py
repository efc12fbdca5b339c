from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping

PRONOUN_RE = re.compile(r"[\(\[\{]\s*([a-z]+(?:/[a-z]+)+)\s*[\)\]\}]", flags=re.IGNORECASE)
IRC_CODES_RE = re.compile(r"[\x02\x1D\x1F\x16\x0F]|\x03(?:\d{1,2}(?:,\d{1,2})?)?")
TRAILING_PARENS_RE = re.compile(r"\s*[\(\[\{][^\)\]\}]*[\)\]\}]\s*$")
GATEWAY_PREFIX_RE = re.compile(r"^\s*(?:\[(?:irc|matrix|slack|discord|telegram)\]\s*)?<([^>\s][^>]*)>\s*(.*)$", re.S)


def extract_pronouns(display_name: str) -> str | None:
    match = PRONOUN_RE.search(display_name or "")
    return match.group(1).lower() if match else None


def strip_irc_codes(text: str) -> str:
    return IRC_CODES_RE.sub("", text or "")


def clean_display_name(name: str) -> str:
    cleaned = strip_irc_codes(name)
    cleaned = TRAILING_PARENS_RE.sub("", cleaned).strip()
    return cleaned or (name or "").strip()


def best_display_name(username: str, global_name: str | None, nick: str | None) -> str:
    for candidate in (nick, global_name, username):
        if candidate and candidate.strip():
            return candidate.strip()
    return "unknown"


@dataclass(slots=True)
class GatewayMessage:
    nick: str
    content: str


def split_gateway_message(content: str) -> GatewayMessage | None:
    """Recognise `[irc] <nick> text` or `<nick> text` relays from bridge bots."""
    match = GATEWAY_PREFIX_RE.match(content or "")
    if match is None:
        return None
    nick = IRC_CODES_RE.sub("", match.group(1)).strip()
    if not nick or nick.startswith(("@", "#", ":", "a:")):
        # <@123> mentions and <:emoji:> are Discord markup, not relays.
        return None
    return GatewayMessage(nick=nick, content=match.group(2).strip())


def speaker_label(display_name: str, author_name: str = "") -> str:
    raw = display_name or author_name or "unknown"
    name = clean_display_name(raw)
    pronouns = extract_pronouns(raw)
    return f"{name} ({pronouns})" if pronouns else name


def format_context(rows: Iterable[Mapping[str, object]]) -> str:
    """Render chronological store rows as `Name (pronouns): content` lines.

    Rows with identical content are collapsed to their latest occurrence.
    """
    materialised = list(rows)
    latest_index: dict[str, int] = {}
    for index, row in enumerate(materialised):
        latest_index[str(row.get("content") or "")] = index

    lines: list[str] = []
    for index, row in enumerate(materialised):
        content = str(row.get("content") or "").strip()
        if not content or latest_index.get(str(row.get("content") or "")) != index:
            continue
        label = speaker_label(str(row.get("display_name") or ""), str(row.get("author") or ""))
        ref_content = str(row.get("ref_content") or "").strip()
        if ref_content:
            ref_label = clean_display_name(str(row.get("ref_display_name") or row.get("ref_author") or "someone"))
            if len(ref_content) > 120:
                ref_content = ref_content[:117].rstrip() + "..."
            lines.append(f"{label} (replying to {ref_label}: {ref_content}): {content}")
        else:
            lines.append(f"{label}: {content}")
    return "\n".join(lines)
