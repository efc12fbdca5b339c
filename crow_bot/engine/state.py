from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from .context import clean_display_name
from .silence import InactivityAmplifier

RECENT_SPEAKER_LIMIT = 5


@dataclass(slots=True, frozen=True)
class Speaker:
    author_name: str
    display_name: str


class RecentSpeakers:
    """The last few distinct speakers, newest at the tail."""

    def __init__(self, limit: int = RECENT_SPEAKER_LIMIT) -> None:
        self._items: Deque[Speaker] = deque(maxlen=limit)

    def observe(self, author_name: str, display_name: str) -> None:
        for existing in list(self._items):
            if existing.author_name == author_name:
                self._items.remove(existing)
        self._items.append(Speaker(author_name, display_name or author_name))

    def snapshot(self) -> List[Speaker]:
        return list(self._items)

    def pick_pair(self, exclude_author: str | None = None) -> Tuple[Optional[str], Optional[str]]:
        """Two most recent speakers other than `exclude_author`, most recent first."""
        names = [
            clean_display_name(speaker.display_name)
            for speaker in reversed(self._items)
            if exclude_author is None or speaker.author_name != exclude_author
        ]
        first = names[0] if names else None
        second = names[1] if len(names) > 1 else None
        return first, second

    def __len__(self) -> int:
        return len(self._items)


@dataclass(slots=True)
class LastSeenMarker:
    timestamp: float
    message_id: str


@dataclass(slots=True)
class EngineState:
    amplifier: InactivityAmplifier
    recent_speakers: RecentSpeakers = field(default_factory=RecentSpeakers)
    last_seen: Dict[str, LastSeenMarker] = field(default_factory=dict)

    def load_last_seen(self, markers: Dict[str, Tuple[float, str]]) -> None:
        for channel_id, (timestamp, message_id) in markers.items():
            self.mark_seen(channel_id, timestamp, message_id)

    def mark_seen(self, channel_id: str, timestamp: float, message_id: str) -> None:
        current = self.last_seen.get(str(channel_id))
        if current is None or timestamp >= current.timestamp:
            self.last_seen[str(channel_id)] = LastSeenMarker(timestamp=timestamp, message_id=str(message_id))
