from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Set

from dotenv import dotenv_values, load_dotenv


load_dotenv()

# Keys from the optional crow config file, upper-cased so lookups are case-insensitive.
_FILE_VALUES: dict[str, str] = {}

DEFAULT_NEWS_DOMAINS: tuple[str, ...] = (
    "apnews.com",
    "arstechnica.com",
    "bbc.co.uk",
    "bbc.com",
    "bloomberg.com",
    "businessinsider.com",
    "cnet.com",
    "cnn.com",
    "engadget.com",
    "fastcompany.com",
    "forbes.com",
    "gizmodo.com",
    "mashable.com",
    "nature.com",
    "newscientist.com",
    "npr.org",
    "nytimes.com",
    "reuters.com",
    "science.org",
    "scientificamerican.com",
    "slashdot.org",
    "smithsonianmag.com",
    "technologyreview.com",
    "techcrunch.com",
    "theguardian.com",
    "thenextweb.com",
    "theregister.com",
    "theverge.com",
    "venturebeat.com",
    "vice.com",
    "washingtonpost.com",
    "wired.com",
    "wsj.com",
    "zdnet.com",
)


def load_config_file(path: str | Path | None) -> dict[str, str]:
    _FILE_VALUES.clear()
    if path is None:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        return {}
    for key, value in dotenv_values(config_path).items():
        if not key or value is None:
            continue
        _FILE_VALUES[key.strip().lstrip("\ufeff").upper()] = value
    return dict(_FILE_VALUES)


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
        raw = _FILE_VALUES.get(key.upper())
        if raw is not None:
            return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on", "enabled"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_id_set(name: str, aliases: tuple[str, ...] = ()) -> Set[int]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return set()
    result: Set[int] = set()
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value:
            continue
        try:
            result.add(int(value))
        except ValueError:
            continue
    return result


def _env_channel_refs(name: str, aliases: tuple[str, ...] = ()) -> tuple[Set[int], Set[str]]:
    """Split a comma list into numeric channel ids and lower-cased channel names."""
    raw = (_env_lookup(name, aliases) or "").strip()
    ids: Set[int] = set()
    names: Set[str] = set()
    for chunk in raw.split(","):
        value = chunk.strip().lstrip("#")
        if not value:
            continue
        if value.isdigit():
            ids.add(int(value))
        else:
            names.add(value.lower())
    return ids, names


def _env_domains(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = (_env_lookup(name) or "").strip()
    if not raw:
        return default
    domains = []
    for chunk in raw.split(","):
        value = chunk.strip().lower()
        if value.startswith("www."):
            value = value[4:]
        if value:
            domains.append(value)
    return tuple(domains) or default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _optional_path(name: str) -> Path | None:
    raw = (_env_lookup(name) or "").strip()
    return Path(raw).expanduser() if raw else None


@dataclass(slots=True)
class Settings:
    discord_token: str
    bot_name: str
    followed_channel_ids: Set[int]
    followed_channel_names: Set[str]
    followed_server: str
    gateway_bot_ids: Set[int]
    image_channel_ids: Set[int]
    image_channel_names: Set[str]

    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_image_model: str
    gemini_temperature: float
    gemini_rate_limit_minute: int
    gemini_rate_limit_day: int
    gemini_image_rate_limit_minute: int
    gemini_image_rate_limit_day: int
    gemini_prompt_wrapper: str
    gemini_interjection_prompt: str
    gemini_context_messages: int
    personality: str

    interjection_mst3k_probability: float
    interjection_memory_probability: float
    interjection_pondering_probability: float
    interjection_ai_probability: float
    interjection_fact_probability: float
    interjection_news_probability: float

    fill_silence_enabled: bool
    fill_silence_start_hours: float
    fill_silence_max_hours: float
    spontaneous_check_seconds: int

    sqlite_path: Path
    flavor_db_path: Path | None
    rate_limit_state_path: Path | None
    keyword_triggers_path: Path | None
    message_history_limit: int
    db_trim_interval_secs: int

    news_domains: tuple[str, ...]
    search_fallback_enabled: bool
    realistic_typing: bool
    log_level: str

    config_keys_loaded: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_env(cls, config_path: str | Path | None = None) -> "Settings":
        if config_path is None:
            config_path = os.getenv("CROW_CONFIG_PATH", "crow.env")
        file_values = load_config_file(config_path)
        followed_ids, followed_names = _env_channel_refs("FOLLOWED_CHANNELS", aliases=("FOLLOWED_CHANNEL",))
        image_ids, image_names = _env_channel_refs("IMAGE_CHANNELS", aliases=("IMAGE_GENERATION_CHANNELS",))
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            bot_name=_env_str("BOT_NAME", "Crow"),
            followed_channel_ids=followed_ids,
            followed_channel_names=followed_names,
            followed_server=_env_str("FOLLOWED_SERVER", ""),
            gateway_bot_ids=_env_id_set("GATEWAY_BOT_IDS"),
            image_channel_ids=image_ids,
            image_channel_names=image_names,
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.0-flash"),
            gemini_image_model=_env_str("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation"),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 0.8),
            gemini_rate_limit_minute=_env_int("GEMINI_RATE_LIMIT_MINUTE", 15),
            gemini_rate_limit_day=_env_int("GEMINI_RATE_LIMIT_DAY", 1500),
            gemini_image_rate_limit_minute=_env_int("GEMINI_IMAGE_RATE_LIMIT_MINUTE", 5),
            gemini_image_rate_limit_day=_env_int("GEMINI_IMAGE_RATE_LIMIT_DAY", 100),
            gemini_prompt_wrapper=_env_str("GEMINI_PROMPT_WRAPPER", ""),
            gemini_interjection_prompt=_env_str("GEMINI_INTERJECTION_PROMPT", ""),
            gemini_context_messages=_env_int("GEMINI_CONTEXT_MESSAGES", 5),
            personality=_env_str("PERSONALITY", ""),
            interjection_mst3k_probability=_env_float("INTERJECTION_MST3K_PROBABILITY", 0.005),
            interjection_memory_probability=_env_float("INTERJECTION_MEMORY_PROBABILITY", 0.005),
            interjection_pondering_probability=_env_float("INTERJECTION_PONDERING_PROBABILITY", 0.005),
            interjection_ai_probability=_env_float("INTERJECTION_AI_PROBABILITY", 0.005),
            interjection_fact_probability=_env_float("INTERJECTION_FACT_PROBABILITY", 0.005),
            interjection_news_probability=_env_float("INTERJECTION_NEWS_PROBABILITY", 0.005),
            fill_silence_enabled=_env_bool("FILL_SILENCE_ENABLED", False),
            fill_silence_start_hours=_env_float("FILL_SILENCE_START_HOURS", 1.5),
            fill_silence_max_hours=_env_float("FILL_SILENCE_MAX_HOURS", 6.0),
            spontaneous_check_seconds=_env_int("SPONTANEOUS_CHECK_SECONDS", 300),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/crow.db")).expanduser(),
            flavor_db_path=_optional_path("FLAVOR_DB_PATH"),
            rate_limit_state_path=_optional_path("RATE_LIMIT_STATE_PATH"),
            keyword_triggers_path=_optional_path("KEYWORD_TRIGGERS_PATH"),
            message_history_limit=_env_int("MESSAGE_HISTORY_LIMIT", 10000),
            db_trim_interval_secs=_env_int("DB_TRIM_INTERVAL_SECS", 3600),
            news_domains=_env_domains("NEWS_DOMAINS", DEFAULT_NEWS_DOMAINS),
            search_fallback_enabled=_env_bool("SEARCH_FALLBACK_ENABLED", True),
            realistic_typing=_env_bool("REALISTIC_TYPING", True),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            config_keys_loaded=tuple(sorted(file_values)),
        )

    def interjection_probabilities(self) -> dict[str, float]:
        return {
            "mst3k": self.interjection_mst3k_probability,
            "memory": self.interjection_memory_probability,
            "pondering": self.interjection_pondering_probability,
            "ai": self.interjection_ai_probability,
            "fact": self.interjection_fact_probability,
            "news": self.interjection_news_probability,
        }

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")
        if not self.bot_name.strip():
            raise ValueError("BOT_NAME cannot be empty")

        if self.gemini_rate_limit_minute < 1 or self.gemini_rate_limit_day < 1:
            raise ValueError("GEMINI_RATE_LIMIT_MINUTE and GEMINI_RATE_LIMIT_DAY must be >= 1")
        if self.gemini_image_rate_limit_minute < 1 or self.gemini_image_rate_limit_day < 1:
            raise ValueError("GEMINI_IMAGE_RATE_LIMIT_MINUTE and GEMINI_IMAGE_RATE_LIMIT_DAY must be >= 1")
        if self.gemini_context_messages < 0:
            raise ValueError("GEMINI_CONTEXT_MESSAGES must be >= 0")

        for key, value in self.interjection_probabilities().items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"INTERJECTION_{key.upper()}_PROBABILITY must be within [0, 1]")

        if self.fill_silence_start_hours < 0:
            raise ValueError("FILL_SILENCE_START_HOURS must be >= 0")
        if self.fill_silence_max_hours <= self.fill_silence_start_hours:
            raise ValueError("FILL_SILENCE_MAX_HOURS must be greater than FILL_SILENCE_START_HOURS")
        if self.spontaneous_check_seconds < 10:
            raise ValueError("SPONTANEOUS_CHECK_SECONDS must be >= 10")

        if self.message_history_limit < 10:
            raise ValueError("MESSAGE_HISTORY_LIMIT must be >= 10")
        if self.db_trim_interval_secs < 60:
            raise ValueError("DB_TRIM_INTERVAL_SECS must be >= 60")
