from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from crow_bot.errors import DailyLimitExceeded, Surface  # noqa: E402
from crow_bot.services.rate_limiter import LLMGovernor, RateLimiter, RateStatus  # noqa: E402


class FakeTime:
    def __init__(self, start: datetime) -> None:
        self.mono = 0.0
        self.wall = start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.mono

    def utc_now(self) -> datetime:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.mono += seconds
        self.wall += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


def _limiter(fake: FakeTime, per_minute: int, per_day: int, **kwargs) -> RateLimiter:
    return RateLimiter(
        "text",
        per_minute,
        per_day,
        clock=fake.clock,
        utc_now=fake.utc_now,
        sleep=fake.sleep,
        **kwargs,
    )


def test_no_sixty_second_window_exceeds_the_per_minute_limit() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=3, per_day=1000)
    granted: list[float] = []

    async def scenario() -> None:
        for _ in range(10):
            await limiter.acquire()
            granted.append(fake.mono)
            fake.advance(5.0)

    asyncio.run(scenario())

    assert len(granted) == 10
    for start in granted:
        window = [stamp for stamp in granted if start <= stamp < start + 60.0]
        assert len(window) <= 3
    assert fake.sleeps, "limiter should have waited for the window to slide"


def test_per_minute_check_reports_wait_until_oldest_slot_frees() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=2, per_day=10)

    async def scenario():
        await limiter.try_acquire()
        fake.advance(10.0)
        await limiter.try_acquire()
        return await limiter.try_acquire()

    result = asyncio.run(scenario())
    assert result.status is RateStatus.PER_MINUTE_EXCEEDED
    assert result.wait_seconds == pytest.approx(50.0)


def test_daily_limit_raises_with_wait_until_utc_midnight() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=100, per_day=2)

    async def scenario() -> None:
        await limiter.acquire()
        await limiter.acquire()
        await limiter.acquire()

    with pytest.raises(DailyLimitExceeded) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.wait_seconds == pytest.approx(2 * 3600)
    assert fake.sleeps == []


def test_daily_counter_resets_at_utc_midnight() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=100, per_day=1)

    async def scenario():
        await limiter.acquire()
        blocked = limiter.check()
        fake.advance(120.0)
        return blocked, await limiter.try_acquire()

    blocked, after_midnight = asyncio.run(scenario())
    assert blocked.status is RateStatus.DAILY_EXCEEDED
    assert after_midnight.ok
    assert limiter.usage().day_used == 1


def test_usage_reports_both_windows() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=5, per_day=50)

    async def scenario() -> None:
        await limiter.acquire()
        fake.advance(61.0)
        await limiter.acquire()

    asyncio.run(scenario())
    usage = limiter.usage()
    assert (usage.minute_used, usage.minute_limit, usage.day_used, usage.day_limit) == (1, 5, 2, 50)


def test_daily_stamps_survive_restart_and_share_one_state_file(tmp_path: Path) -> None:
    fake = FakeTime(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    state_path = tmp_path / "rate_limits.json"
    text = _limiter(fake, per_minute=5, per_day=50, state_path=state_path)
    image = RateLimiter(
        "image", 1, 5, clock=fake.clock, utc_now=fake.utc_now, sleep=fake.sleep, state_path=state_path
    )

    async def scenario() -> None:
        await text.acquire()
        await image.acquire()

    asyncio.run(scenario())

    payload = json.loads(state_path.read_text(encoding="utf-8"))
    assert set(payload) == {"text", "image"}

    reloaded = _limiter(fake, per_minute=5, per_day=50, state_path=state_path)
    assert reloaded.usage().day_used == 1
    assert reloaded.usage().minute_used == 0


def test_state_is_written_after_the_limiter_lock_is_released(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake = FakeTime(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    limiter = _limiter(fake, per_minute=5, per_day=50, state_path=tmp_path / "rate_limits.json")
    writes: list[tuple[bool, int]] = []

    def record_write(stamps: list[float]) -> None:
        writes.append((limiter._lock.locked(), len(stamps)))

    monkeypatch.setattr(limiter, "_save_state_sync", record_write)

    async def scenario() -> None:
        await limiter.acquire()
        await limiter.acquire()

    asyncio.run(scenario())

    assert writes == [(False, 1), (False, 2)]


def test_governor_image_quota_lockout_expires_at_midnight() -> None:
    fake = FakeTime(datetime(2026, 3, 1, 18, 30, tzinfo=timezone.utc))
    governor = LLMGovernor(
        text=_limiter(fake, 5, 50),
        image=_limiter(fake, 1, 5),
        utc_now=fake.utc_now,
    )

    assert governor.image_quota_exhausted() is False
    until = governor.mark_image_quota_exhausted()
    assert until == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert governor.image_quota_exhausted() is True

    fake.advance(6 * 3600)
    assert governor.image_quota_exhausted() is False
    assert set(governor.usage()) == {Surface.TEXT, Surface.IMAGE}
