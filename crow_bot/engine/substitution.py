from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .context import clean_display_name

logger = logging.getLogger("crow_bot")

SUBSTITUTION_PREFIXES = ("./s/", "s/", "!/", "./")
URL_PATTERN = re.compile(r"https?://[^\s/$.?#].[^\s]*")
MEANT_RE = re.compile(r"^(.+?) ((?:\*really\* )*)meant: (.*)$", re.S)
_UNESCAPED_SLASH_RE = re.compile(r"(?<!\\)/")
_DOLLAR_GROUP_RE = re.compile(r"\$\{(\d+)\}|\$(\d+)")
MAX_CANDIDATES = 4


@dataclass(slots=True)
class Substitution:
    pattern: re.Pattern[str]
    replacement: str
    flags: str = ""


@dataclass(slots=True)
class Candidate:
    """A prior channel message, newest first in every list handed to this module."""

    author_name: str
    content: str
    from_bot: bool = False


def is_substitution(content: str) -> bool:
    stripped = (content or "").lstrip()
    return any(stripped.startswith(prefix) for prefix in SUBSTITUTION_PREFIXES)


def _translate_replacement(replacement: str) -> str:
    # `$1` / `${1}` are accepted alongside Python's own `\1`.
    replacement = replacement.replace("\\/", "/")
    return _DOLLAR_GROUP_RE.sub(lambda m: f"\\g<{m.group(1) or m.group(2)}>", replacement)


def parse_substitution(content: str) -> Optional[Substitution]:
    stripped = (content or "").strip()
    body = None
    for prefix in SUBSTITUTION_PREFIXES:
        if stripped.startswith(prefix):
            body = stripped[len(prefix) :]
            break
    if body is None:
        return None

    parts = _UNESCAPED_SLASH_RE.split(body, maxsplit=2)
    if len(parts) < 2 or not parts[0]:
        return None
    raw_pattern = parts[0].replace("\\/", "/")
    replacement = _translate_replacement(parts[1])
    flags = parts[2].strip() if len(parts) > 2 else ""

    re_flags = re.IGNORECASE if "i" in flags else 0
    try:
        pattern = re.compile(raw_pattern, re_flags)
    except re.error as exc:
        logger.info("Ignoring substitution with invalid pattern %r: %s", raw_pattern, exc)
        return None
    return Substitution(pattern=pattern, replacement=replacement, flags=flags)


def url_set(text: str) -> set[str]:
    return set(URL_PATTERN.findall(text or ""))


def _is_command(content: str) -> bool:
    return content.startswith("!") or content.startswith(".")


def split_meant(content: str) -> Optional[tuple[str, int, str]]:
    """Parse a prior `X *really* meant: Y` emission into (X, really count, Y)."""
    match = MEANT_RE.match(content or "")
    if match is None:
        return None
    reallies = match.group(2).count("*really*")
    return match.group(1), reallies, match.group(3)


def format_meant(author: str, content: str, reallies: int = 0) -> str:
    marker = "*really* " * reallies
    return f"{author} {marker}meant: {content}"


def _apply(substitution: Substitution, text: str) -> Optional[str]:
    try:
        return substitution.pattern.sub(substitution.replacement, text)
    except (re.error, IndexError) as exc:
        logger.info("Substitution replacement failed: %s", exc)
        return None


def select_candidates(prior: Iterable[Candidate]) -> list[tuple[Candidate, bool]]:
    """Keep non-command messages; the newest one may be our own `meant:` emission."""
    selected: list[tuple[Candidate, bool]] = []
    for index, candidate in enumerate(list(prior)[:MAX_CANDIDATES]):
        content = candidate.content or ""
        if index == 0 and candidate.from_bot and split_meant(content) is not None:
            selected.append((candidate, True))
            continue
        if _is_command(content) or is_substitution(content):
            continue
        selected.append((candidate, False))
    return selected


def apply_substitution(content: str, prior: Iterable[Candidate]) -> Optional[str]:
    """Return the `X meant: ...` line for the first prior message the pattern changes."""
    substitution = parse_substitution(content)
    if substitution is None:
        return None

    for candidate, is_emission in select_candidates(prior):
        if is_emission:
            parsed = split_meant(candidate.content)
            assert parsed is not None
            author, reallies, original = parsed
            reallies += 1
        else:
            author = clean_display_name(candidate.author_name)
            reallies = 0
            original = candidate.content

        updated = _apply(substitution, original)
        if updated is None or updated == original:
            continue
        if url_set(updated) != url_set(original):
            logger.info("Substitution would change URLs in %r; skipping", original[:80])
            continue
        return format_meant(author, updated, reallies)
    return None
