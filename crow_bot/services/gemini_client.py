from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

import aiohttp

from ..errors import (
    DailyLimitExceeded,
    FinishReasonError,
    ImageQuotaExhaustedError,
    LLMError,
    QuotaExhaustedError,
    SafetyBlockedError,
    SilentOverloadError,
    Surface,
    TextOnlyResponse,
    TransientLLMError,
)
from .rate_limiter import LLMGovernor

logger = logging.getLogger("crow_bot")

OVERLOAD_STATUSES = {500, 503}
TRANSIENT_STATUSES = {408, 429, 502, 504}
OVERLOAD_MARKERS = ("overloaded", "try again later")
IMAGE_REFUSAL_MARKERS = (
    "unable to create",
    "unable to generate",
    "can't generate",
    "cannot generate",
    "can't create",
    "cannot create",
    "not able to generate",
)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int
    initial_delay: float
    max_delay: float = 60.0


TEXT_RETRY = RetryPolicy(max_attempts=5, initial_delay=10.0)
IMAGE_RETRY = RetryPolicy(max_attempts=10, initial_delay=5.0)


@dataclass(slots=True)
class ResponsePart:
    text: str | None = None
    inline_data: str | None = None
    mime_type: str = ""


@dataclass(slots=True)
class ResponseCandidate:
    parts: List[ResponsePart] = field(default_factory=list)
    finish_reason: str = ""
    safety_blocked: bool = False

    def joined_text(self) -> str:
        return "\n".join(part.text.strip() for part in self.parts if part.text and part.text.strip()).strip()


@dataclass(slots=True)
class GeminiResponse:
    """Typed view over the handful of generateContent fields the bot reads."""

    candidates: List[ResponseCandidate] = field(default_factory=list)
    block_reason: str = ""

    @classmethod
    def from_payload(cls, data: Any) -> "GeminiResponse":
        if not isinstance(data, dict):
            raise LLMError("Gemini response is not a JSON object")
        candidates: List[ResponseCandidate] = []
        for raw in data.get("candidates") or []:
            if not isinstance(raw, dict):
                continue
            parts: List[ResponsePart] = []
            for part in (raw.get("content") or {}).get("parts") or []:
                if not isinstance(part, dict):
                    continue
                inline = part.get("inlineData") or part.get("inline_data") or {}
                parts.append(
                    ResponsePart(
                        text=part.get("text") if isinstance(part.get("text"), str) else None,
                        inline_data=inline.get("data") if isinstance(inline, dict) else None,
                        mime_type=str(inline.get("mimeType") or "") if isinstance(inline, dict) else "",
                    )
                )
            ratings = raw.get("safetyRatings") or []
            blocked = any(isinstance(r, dict) and bool(r.get("blocked")) for r in ratings)
            candidates.append(
                ResponseCandidate(
                    parts=parts,
                    finish_reason=str(raw.get("finishReason") or ""),
                    safety_blocked=blocked,
                )
            )
        feedback = data.get("promptFeedback") or {}
        block_reason = str(feedback.get("blockReason") or "") if isinstance(feedback, dict) else ""
        return cls(candidates=candidates, block_reason=block_reason)


@dataclass(slots=True)
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"
    description: str = ""


def strip_wrapping_quotes(text: str) -> str:
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
        return cleaned[1:-1].strip()
    return cleaned


def _snippet(body: str, limit: int = 300) -> str:
    body = " ".join(body.split())
    return body if len(body) <= limit else body[:limit] + "..."


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        image_model: str,
        governor: LLMGovernor,
        temperature: float = 0.8,
        base_url: str = "https://generativelanguage.googleapis.com",
        text_timeout_seconds: float = 30.0,
        image_timeout_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.image_model = image_model
        self.governor = governor
        self.temperature = temperature
        self.base_url = base_url.rstrip("/")
        self.text_timeout = aiohttp.ClientTimeout(total=text_timeout_seconds)
        self.image_timeout = aiohttp.ClientTimeout(total=image_timeout_seconds)
        self._sleep = sleep
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent?key={self.api_key}"

    async def _post(self, url: str, payload: Dict[str, Any], timeout: aiohttp.ClientTimeout) -> tuple[int, str]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        async with self._session.post(url, json=payload, timeout=timeout) as response:
            return response.status, await response.text()

    async def _request(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        surface: Surface,
        policy: RetryPolicy,
        timeout: aiohttp.ClientTimeout,
    ) -> GeminiResponse:
        delay = policy.initial_delay
        overloaded = False
        last_error = "no attempt made"

        for attempt in range(1, policy.max_attempts + 1):
            try:
                status, body = await self._post(url, payload, timeout)
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                overloaded = False
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if status == 200:
                    try:
                        return GeminiResponse.from_payload(json.loads(body))
                    except json.JSONDecodeError as exc:
                        raise LLMError(f"Gemini returned invalid JSON: {exc}") from exc
                lowered = body.lower()
                if status == 429 and "quota" in lowered:
                    raise QuotaExhaustedError(surface, f"Gemini quota exhausted: {_snippet(body)}")
                if status in OVERLOAD_STATUSES or any(marker in lowered for marker in OVERLOAD_MARKERS):
                    overloaded = True
                elif status in TRANSIENT_STATUSES:
                    overloaded = False
                else:
                    raise LLMError(f"Gemini error {status}: {_snippet(body)}")
                last_error = f"HTTP {status}: {_snippet(body, 120)}"

            if attempt < policy.max_attempts:
                logger.warning(
                    "Gemini %s request failed (attempt %s/%s, %s); retrying in %.0fs",
                    surface.value,
                    attempt,
                    policy.max_attempts,
                    last_error,
                    delay,
                )
                await self._sleep(delay)
                delay = min(policy.max_delay, delay * 2)

        if overloaded:
            raise SilentOverloadError(f"Gemini overloaded after {policy.max_attempts} attempts: {last_error}")
        raise TransientLLMError(f"Gemini request failed after {policy.max_attempts} attempts: {last_error}")

    @staticmethod
    def _extract_text(response: GeminiResponse) -> str:
        if not response.candidates:
            if response.block_reason:
                raise SafetyBlockedError(f"Prompt blocked ({response.block_reason})", response.block_reason)
            raise LLMError("Gemini returned no candidates")

        first = response.candidates[0]
        if first.finish_reason == "SAFETY":
            raise SafetyBlockedError(first.joined_text(), "SAFETY")
        if first.finish_reason in {"RECITATION", "OTHER"}:
            raise FinishReasonError(first.finish_reason)

        text = strip_wrapping_quotes(first.joined_text())
        if not text:
            raise LLMError(f"Gemini empty response (finishReason={first.finish_reason or 'unknown'})")
        return text

    async def generate_text(self, prompt: str, *, temperature: float | None = None) -> str:
        try:
            await self.governor.acquire(Surface.TEXT)
        except DailyLimitExceeded as exc:
            raise QuotaExhaustedError(Surface.TEXT, str(exc)) from exc

        payload: Dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature if temperature is None else temperature},
        }
        response = await self._request(
            self._endpoint(self.model),
            payload,
            surface=Surface.TEXT,
            policy=TEXT_RETRY,
            timeout=self.text_timeout,
        )
        return self._extract_text(response)

    @staticmethod
    def _extract_image(response: GeminiResponse) -> GeneratedImage:
        if not response.candidates:
            if response.block_reason:
                raise SafetyBlockedError("", response.block_reason)
            raise LLMError("Gemini returned no image candidates")

        first = response.candidates[0]
        text = first.joined_text()
        if first.finish_reason in {"IMAGE_SAFETY", "SAFETY"} or first.safety_blocked:
            raise SafetyBlockedError(text, first.finish_reason or "SAFETY")
        if first.finish_reason in {"RECITATION", "OTHER"}:
            raise FinishReasonError(first.finish_reason)

        for part in first.parts:
            if not part.inline_data:
                continue
            try:
                data = base64.b64decode(part.inline_data, validate=False)
            except (binascii.Error, ValueError) as exc:
                raise LLMError(f"Gemini returned undecodable image data: {exc}") from exc
            return GeneratedImage(data=data, mime_type=part.mime_type or "image/png", description=text)

        if text:
            lowered = text.lower()
            if any(marker in lowered for marker in IMAGE_REFUSAL_MARKERS):
                raise SafetyBlockedError(text)
            raise TextOnlyResponse(text)
        raise LLMError("Gemini returned neither image data nor text")

    async def generate_image(self, prompt: str) -> GeneratedImage:
        if self.governor.image_quota_exhausted():
            raise ImageQuotaExhaustedError()
        try:
            await self.governor.acquire(Surface.IMAGE)
        except DailyLimitExceeded as exc:
            self.governor.mark_image_quota_exhausted()
            raise ImageQuotaExhaustedError(str(exc)) from exc

        payload: Dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        try:
            response = await self._request(
                self._endpoint(self.image_model),
                payload,
                surface=Surface.IMAGE,
                policy=IMAGE_RETRY,
                timeout=self.image_timeout,
            )
        except QuotaExhaustedError as exc:
            self.governor.mark_image_quota_exhausted()
            raise ImageQuotaExhaustedError(str(exc)) from exc
        return self._extract_image(response)
