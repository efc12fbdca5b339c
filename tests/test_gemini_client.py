from __future__ import annotations

import asyncio
import base64
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("aiohttp")

from crow_bot.errors import (  # noqa: E402
    FinishReasonError,
    ImageQuotaExhaustedError,
    QuotaExhaustedError,
    SafetyBlockedError,
    SilentOverloadError,
    Surface,
    TextOnlyResponse,
    TransientLLMError,
)
from crow_bot.services.gemini_client import GeminiClient, strip_wrapping_quotes  # noqa: E402
from crow_bot.services.rate_limiter import LLMGovernor, RateLimiter  # noqa: E402


FIXED_NOW = datetime(2026, 5, 4, 15, 0, tzinfo=timezone.utc)


def _text_body(text: str, finish_reason: str = "STOP") -> str:
    return json.dumps(
        {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}
    )


def _client(responses: list[tuple[int, str]], *, image_per_day: int = 5):
    sleeps: list[float] = []
    calls: list[tuple[str, dict]] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    governor = LLMGovernor(
        text=RateLimiter("text", 100, 100, utc_now=lambda: FIXED_NOW, sleep=fake_sleep),
        image=RateLimiter("image", 100, image_per_day, utc_now=lambda: FIXED_NOW, sleep=fake_sleep),
        utc_now=lambda: FIXED_NOW,
    )
    client = GeminiClient(
        api_key="k",
        model="gemini-text",
        image_model="gemini-image",
        governor=governor,
        sleep=fake_sleep,
    )
    queue = list(responses)

    async def fake_post(url: str, payload: dict, timeout) -> tuple[int, str]:
        calls.append((url, payload))
        return queue.pop(0)

    client._post = fake_post  # type: ignore[method-assign]
    return client, calls, sleeps


def test_strip_wrapping_quotes() -> None:
    assert strip_wrapping_quotes('  "hello there"  ') == "hello there"
    assert strip_wrapping_quotes('"unbalanced') == '"unbalanced'


def test_generate_text_returns_unquoted_text_and_uses_text_model() -> None:
    client, calls, _ = _client([(200, _text_body('"Four, obviously."'))])

    text = asyncio.run(client.generate_text("what's 2+2?"))

    assert text == "Four, obviously."
    assert "models/gemini-text:generateContent" in calls[0][0]
    assert calls[0][1]["contents"][0]["parts"][0]["text"] == "what's 2+2?"
    assert client.governor.usage()[Surface.TEXT].day_used == 1


def test_quota_429_raises_quota_exhausted_without_retry() -> None:
    client, calls, sleeps = _client([(429, '{"error": {"message": "Quota exceeded for metric"}}')])

    with pytest.raises(QuotaExhaustedError) as excinfo:
        asyncio.run(client.generate_text("hi"))

    assert excinfo.value.surface is Surface.TEXT
    assert len(calls) == 1
    assert sleeps == []


def test_repeated_overload_becomes_silent_with_exponential_backoff() -> None:
    client, calls, sleeps = _client([(503, "The model is overloaded. Please try again later.")] * 5)

    with pytest.raises(SilentOverloadError):
        asyncio.run(client.generate_text("hi"))

    assert len(calls) == 5
    assert sleeps == [10.0, 20.0, 40.0, 60.0]


def test_transient_failure_recovers_on_retry() -> None:
    client, calls, sleeps = _client([(502, "bad gateway"), (200, _text_body("ok then"))])

    assert asyncio.run(client.generate_text("hi")) == "ok then"
    assert len(calls) == 2
    assert sleeps == [10.0]


def test_transient_failures_exhausting_retries_are_not_silent() -> None:
    client, _, _ = _client([(504, "gateway timeout")] * 5)

    with pytest.raises(TransientLLMError):
        asyncio.run(client.generate_text("hi"))


def test_text_safety_and_recitation_finish_reasons() -> None:
    client, _, _ = _client([(200, _text_body("", "SAFETY")), (200, _text_body("", "RECITATION"))])

    with pytest.raises(SafetyBlockedError):
        asyncio.run(client.generate_text("hi"))
    with pytest.raises(FinishReasonError) as excinfo:
        asyncio.run(client.generate_text("hi"))
    assert excinfo.value.finish_reason == "RECITATION"


def test_generate_image_decodes_inline_data_with_description() -> None:
    raw = b"\x89PNG fake bytes"
    body = json.dumps(
        {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "A tabby cat on a windowsill."},
                            {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(raw).decode()}},
                        ]
                    },
                    "finishReason": "STOP",
                }
            ]
        }
    )
    client, calls, _ = _client([(200, body)])

    image = asyncio.run(client.generate_image("a cat"))

    assert image.data == raw
    assert image.mime_type == "image/png"
    assert image.description == "A tabby cat on a windowsill."
    assert "models/gemini-image:generateContent" in calls[0][0]
    assert calls[0][1]["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]


def test_image_text_only_and_refusal_are_distinguished() -> None:
    client, _, _ = _client(
        [
            (200, _text_body("Here is a poem about a cat instead.")),
            (200, _text_body("I'm unable to generate images of real people.")),
            (200, _text_body("", "IMAGE_SAFETY")),
        ]
    )

    with pytest.raises(TextOnlyResponse) as text_only:
        asyncio.run(client.generate_image("a cat"))
    assert text_only.value.text == "Here is a poem about a cat instead."

    with pytest.raises(SafetyBlockedError) as refusal:
        asyncio.run(client.generate_image("a celebrity"))
    assert "unable to generate" in refusal.value.message

    with pytest.raises(SafetyBlockedError) as blocked:
        asyncio.run(client.generate_image("something"))
    assert blocked.value.message == SafetyBlockedError.DEFAULT_MESSAGE


def test_image_quota_429_locks_out_until_midnight_without_consuming_slots() -> None:
    client, calls, _ = _client([(429, "RESOURCE_EXHAUSTED: quota exceeded")])

    with pytest.raises(ImageQuotaExhaustedError):
        asyncio.run(client.generate_image("a cat"))

    used_before = client.governor.usage()[Surface.IMAGE].day_used
    assert client.governor.image_quota_exhausted() is True

    for _ in range(3):
        with pytest.raises(ImageQuotaExhaustedError):
            asyncio.run(client.generate_image("another cat"))

    assert client.governor.usage()[Surface.IMAGE].day_used == used_before
    assert len(calls) == 1


def test_image_daily_ledger_exhaustion_maps_to_image_quota() -> None:
    client, calls, _ = _client([], image_per_day=1)
    client.governor.limiters[Surface.IMAGE]._day.append(FIXED_NOW.timestamp())

    with pytest.raises(ImageQuotaExhaustedError):
        asyncio.run(client.generate_image("a cat"))

    assert calls == []
    assert client.governor.image_quota_exhausted() is True
