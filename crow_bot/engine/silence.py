from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger("crow_bot")

MAX_MULTIPLIER = 1000.0


@dataclass(slots=True)
class ChannelActivity:
    last_activity: float
    author_id: str


def scaled_probability(base: float, multiplier: float) -> float:
    return min(1.0, max(0.0, base * multiplier))


class InactivityAmplifier:
    """Per-channel silence tracking that boosts interjection odds after users go quiet."""

    def __init__(
        self,
        enabled: bool,
        start_hours: float,
        max_hours: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.enabled = enabled
        self.start_hours = max(0.0, start_hours)
        self.max_hours = max(self.start_hours, max_hours)
        self._clock = clock
        self._rng = rng or random.Random()
        self._activity: Dict[str, ChannelActivity] = {}
        self._last_check: Dict[str, float] = {}
        self._next_interval: Dict[str, float] = {}

    def record_activity(self, channel_id: str, author_id: str, *, at: float | None = None) -> None:
        self._activity[str(channel_id)] = ChannelActivity(
            last_activity=self._clock() if at is None else at,
            author_id=str(author_id),
        )

    def activity(self, channel_id: str) -> Optional[ChannelActivity]:
        return self._activity.get(str(channel_id))

    def hours_silent(self, channel_id: str) -> float:
        record = self._activity.get(str(channel_id))
        if record is None:
            return 0.0
        return max(0.0, (self._clock() - record.last_activity) / 3600.0)

    def multiplier(self, channel_id: str, bot_id: str) -> float:
        if not self.enabled:
            return 1.0
        record = self._activity.get(str(channel_id))
        if record is None or record.author_id == str(bot_id):
            return 1.0

        hours = self.hours_silent(channel_id)
        if hours < self.start_hours:
            return 1.0
        if hours >= self.max_hours or self.max_hours <= self.start_hours:
            value = MAX_MULTIPLIER
        else:
            fraction = (hours - self.start_hours) / (self.max_hours - self.start_hours)
            value = 1.0 + fraction * (MAX_MULTIPLIER - 1.0)
        logger.info("[silence] channel=%s silent %.2fh multiplier=%.1fx", channel_id, hours, value)
        return value

    def should_check(self, channel_id: str, bot_id: str) -> bool:
        """Spontaneous checks run at a random 1-15 minute cadence, only once the channel has gone quiet."""
        if not self.enabled:
            return False
        key = str(channel_id)
        record = self._activity.get(key)
        if record is None or record.author_id == str(bot_id):
            return False
        if self.multiplier(key, bot_id) <= 1.0:
            return False

        now = self._clock()
        last = self._last_check.get(key)
        interval = self._next_interval.get(key, 0.0)
        if last is not None and now - last < interval:
            return False
        self._last_check[key] = now
        self._next_interval[key] = self._rng.randint(1, 15) * 60.0
        return True
