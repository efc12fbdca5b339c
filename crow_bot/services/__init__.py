from .celebrity import CelebrityLookup
from .gemini_client import GeminiClient
from .rate_limiter import LLMGovernor, RateLimiter
from .screenshots import ScreenshotIndexClient, build_screenshot_clients
from .verification import CitationVerifier
from .web_search import WebSearchClient

__all__ = [
    "CelebrityLookup",
    "CitationVerifier",
    "GeminiClient",
    "LLMGovernor",
    "RateLimiter",
    "ScreenshotIndexClient",
    "WebSearchClient",
    "build_screenshot_clients",
]
