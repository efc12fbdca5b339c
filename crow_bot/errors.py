from __future__ import annotations

from enum import Enum


class Surface(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class LLMError(Exception):
    """Base class for every failure the LLM client reports to the reaction engine."""


class TransientLLMError(LLMError):
    """Network glitch or 5xx that outlived the retry budget."""


class SilentOverloadError(LLMError):
    """The model kept answering "try again later"; callers must stay quiet."""


class QuotaExhaustedError(LLMError):
    def __init__(self, surface: Surface, message: str = "") -> None:
        self.surface = surface
        super().__init__(message or f"{surface.value} quota exhausted")


class ImageQuotaExhaustedError(QuotaExhaustedError):
    def __init__(self, message: str = "") -> None:
        super().__init__(Surface.IMAGE, message or "image quota exhausted until tomorrow (UTC)")


class SafetyBlockedError(LLMError):
    DEFAULT_MESSAGE = "I'm unable to generate that image due to content policy restrictions."

    def __init__(self, message: str = "", finish_reason: str = "SAFETY") -> None:
        self.message = (message or "").strip() or self.DEFAULT_MESSAGE
        self.finish_reason = finish_reason
        super().__init__(self.message)


class FinishReasonError(LLMError):
    def __init__(self, finish_reason: str) -> None:
        self.finish_reason = finish_reason
        super().__init__(f"Gemini stopped generation (finishReason={finish_reason})")


class TextOnlyResponse(LLMError):
    """Image surface answered with prose only; the caller shows the text."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(text)


class DailyLimitExceeded(LLMError):
    def __init__(self, wait_seconds: float, message: str = "") -> None:
        self.wait_seconds = max(0.0, float(wait_seconds))
        super().__init__(message or f"daily request limit reached, resets in {int(self.wait_seconds)}s")
