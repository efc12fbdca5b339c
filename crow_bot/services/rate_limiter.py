from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

from ..errors import DailyLimitExceeded, Surface

logger = logging.getLogger("crow_bot")

MINUTE_WINDOW_SECONDS = 60.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    day = now.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


class RateStatus(str, Enum):
    OK = "ok"
    PER_MINUTE_EXCEEDED = "per_minute_exceeded"
    DAILY_EXCEEDED = "daily_exceeded"


@dataclass(slots=True, frozen=True)
class RateCheck:
    status: RateStatus
    wait_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is RateStatus.OK


@dataclass(slots=True, frozen=True)
class UsageStats:
    minute_used: int
    minute_limit: int
    day_used: int
    day_limit: int


class RateLimiter:
    """Per-minute sliding window plus a per-UTC-day counter for one LLM surface."""

    def __init__(
        self,
        name: str,
        per_minute: int,
        per_day: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        utc_now: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        state_path: Path | None = None,
    ) -> None:
        self.name = name
        self.per_minute = max(1, int(per_minute))
        self.per_day = max(1, int(per_day))
        self._clock = clock
        self._utc_now = utc_now
        self._sleep = sleep
        self._state_path = state_path
        self._minute: deque[float] = deque()
        self._day: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._load_state()

    def _prune(self) -> None:
        now = self._clock()
        while self._minute and now - self._minute[0] >= MINUTE_WINDOW_SECONDS:
            self._minute.popleft()
        utc_now = self._utc_now()
        day_start = datetime(utc_now.year, utc_now.month, utc_now.day, tzinfo=timezone.utc).timestamp()
        while self._day and self._day[0] < day_start:
            self._day.popleft()

    def check(self) -> RateCheck:
        self._prune()
        if len(self._day) >= self.per_day:
            utc_now = self._utc_now()
            wait = (next_utc_midnight(utc_now) - utc_now).total_seconds()
            return RateCheck(RateStatus.DAILY_EXCEEDED, max(0.0, wait))
        if len(self._minute) >= self.per_minute:
            wait = MINUTE_WINDOW_SECONDS - (self._clock() - self._minute[0])
            return RateCheck(RateStatus.PER_MINUTE_EXCEEDED, max(0.0, wait))
        return RateCheck(RateStatus.OK)

    async def try_acquire(self) -> RateCheck:
        async with self._lock:
            result = self.check()
            if result.ok:
                self._minute.append(self._clock())
                self._day.append(self._utc_now().timestamp())
            stamps = list(self._day)
        if result.ok and self._state_path is not None:
            await asyncio.to_thread(self._save_state_sync, stamps)
        return result

    async def acquire(self) -> None:
        while True:
            result = await self.try_acquire()
            if result.ok:
                return
            if result.status is RateStatus.DAILY_EXCEEDED:
                logger.warning("[%s] daily limit of %s reached", self.name, self.per_day)
                raise DailyLimitExceeded(result.wait_seconds)
            logger.info(
                "[%s] per-minute limit of %s reached, waiting %.1fs",
                self.name,
                self.per_minute,
                result.wait_seconds + 1.0,
            )
            await self._sleep(result.wait_seconds + 1.0)

    def usage(self) -> UsageStats:
        self._prune()
        return UsageStats(len(self._minute), self.per_minute, len(self._day), self.per_day)

    def _load_state(self) -> None:
        if self._state_path is None or not self._state_path.is_file():
            return
        try:
            payload = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable rate limit state %s: %s", self._state_path, exc)
            return
        stamps = payload.get(self.name) if isinstance(payload, dict) else None
        if isinstance(stamps, list):
            self._day.extend(sorted(float(item) for item in stamps if isinstance(item, (int, float))))
            self._prune()

    def _save_state_sync(self, stamps: list[float]) -> None:
        if self._state_path is None:
            return
        payload: dict[str, object] = {}
        if self._state_path.is_file():
            with contextlib.suppress(OSError, ValueError):
                loaded = json.loads(self._state_path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    payload = loaded
        payload[self.name] = stamps
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            self._state_path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to persist rate limit state to %s: %s", self._state_path, exc)


class LLMGovernor:
    """Owns both surface limiters and the image quota lockout."""

    def __init__(
        self,
        text: RateLimiter,
        image: RateLimiter,
        *,
        utc_now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.limiters: dict[Surface, RateLimiter] = {Surface.TEXT: text, Surface.IMAGE: image}
        self._utc_now = utc_now
        self.image_quota_exhausted_until: datetime | None = None

    async def acquire(self, surface: Surface) -> None:
        await self.limiters[surface].acquire()

    def mark_image_quota_exhausted(self) -> datetime:
        until = next_utc_midnight(self._utc_now())
        self.image_quota_exhausted_until = until
        logger.warning("Image generation quota exhausted until %s", until.isoformat())
        return until

    def image_quota_exhausted(self) -> bool:
        until = self.image_quota_exhausted_until
        if until is None:
            return False
        if self._utc_now() >= until:
            self.image_quota_exhausted_until = None
            return False
        return True

    def usage(self) -> dict[Surface, UsageStats]:
        return {surface: limiter.usage() for surface, limiter in self.limiters.items()}
