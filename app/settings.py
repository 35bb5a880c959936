from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("buddy.settings")

DEFAULT_FLOWS_PATH = Path(__file__).resolve().parent / "data" / "flows.json"
DEV_SIGNING_SECRET = "dev-only-signing-secret"


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed explicitly."""

    allowed_origins: List[str] = field(default_factory=list)

    # Sessions
    session_ttl_seconds: int = 3600
    session_store: str = "memory"
    redis_url: str = ""
    session_message_limit: int = 120

    # Session tokens / request signatures
    signing_secret: str = DEV_SIGNING_SECRET
    token_ttl_seconds: int = 1800
    require_request_signature: bool = False
    signature_max_skew_seconds: int = 300

    # reCAPTCHA
    recaptcha_secret: str = ""
    recaptcha_min_score: float = 0.5
    recaptcha_timeout_seconds: float = 5.0

    # Abuse controls
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 60
    rate_limit_hourly_max: int = 1200
    automation_enabled: bool = True
    automation_score_threshold: int = 3
    min_inter_message_ms: int = 200
    max_message_chars: int = 2000
    max_body_bytes: int = 65536

    # Generative model
    chat_provider: str = "mock"
    chat_model: str = "gpt-4o-mini"
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    google_api_key: str = ""
    chat_max_tokens: int = 350
    chat_temperature: float = 0.2
    model_timeout_seconds: float = 20.0

    # Search augmentation
    search_sitemap_url: str = ""
    search_allowed_domains: List[str] = field(
        default_factory=lambda: ["investonline.in", "www.investonline.in", "beta.investonline.in"]
    )
    search_timeout_seconds: float = 4.0
    search_max_pages: int = 200
    search_cache_ttl_seconds: int = 86400
    search_index_on_startup: int = 50

    flows_path: Path = DEFAULT_FLOWS_PATH
    log_level: str = "INFO"


def load_settings() -> Settings:
    secret = _env_str("HMAC_SECRET") or _env_str("SIGNATURE_SECRET")
    if not secret:
        logger.warning("HMAC_SECRET not set; using a development signing secret")
        secret = DEV_SIGNING_SECRET

    store = _env_str("SESSION_STORE").lower()
    if not store:
        store = "redis" if _env_bool("USE_REDIS", False) else "memory"

    allowed_domains = _split_csv(_env_str("SEARCH_ALLOWED_DOMAINS"))
    flows_path = _env_str("FLOWS_PATH")

    kwargs = dict(
        allowed_origins=_split_csv(_env_str("ALLOWED_ORIGIN")),
        session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", 3600),
        session_store=store,
        redis_url=_env_str("REDIS_URL"),
        session_message_limit=_env_int("SESSION_MESSAGE_LIMIT", 120),
        signing_secret=secret,
        token_ttl_seconds=_env_int("SESSION_TOKEN_TTL_SECONDS", 1800),
        require_request_signature=_env_bool("REQUIRE_REQUEST_SIGNATURE", False),
        signature_max_skew_seconds=_env_int("SIGNATURE_MAX_SKEW_SECONDS", 300),
        recaptcha_secret=_env_str("RECAPTCHA_SECRET_KEY"),
        recaptcha_min_score=_env_float("RECAPTCHA_MIN_SCORE", 0.5),
        recaptcha_timeout_seconds=_env_float("RECAPTCHA_TIMEOUT_SECONDS", 5.0),
        rate_limit_window_seconds=max(1, _env_int("IP_RATE_LIMIT_WINDOW_SECONDS", 60)),
        rate_limit_max_requests=max(1, _env_int("IP_RATE_LIMIT_PER_MINUTE", 60)),
        rate_limit_hourly_max=max(0, _env_int("IP_RATE_LIMIT_PER_HOUR", 1200)),
        automation_enabled=_env_bool("AUTOMATION_DETECTION_ENABLED", True),
        automation_score_threshold=_env_int("AUTOMATION_SCORE_THRESHOLD", 3),
        min_inter_message_ms=_env_int("MIN_INTER_MESSAGE_MS", 200),
        max_message_chars=_env_int("MAX_MESSAGE_CHARS", 2000),
        max_body_bytes=_env_int("MAX_BODY_BYTES", 65536),
        chat_provider=(_env_str("AI_PROVIDER_CHAT") or _env_str("AI_PROVIDER") or "mock").lower(),
        chat_model=_env_str("AI_CHAT_MODEL") or "gpt-4o-mini",
        openai_api_key=_env_str("OPENAI_API_KEY"),
        openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
        google_api_key=_env_str("GOOGLE_API_KEY"),
        chat_max_tokens=_env_int("AI_CHAT_MAX_TOKENS", 350),
        chat_temperature=_env_float("AI_CHAT_TEMPERATURE", 0.2),
        model_timeout_seconds=_env_float("AI_HTTP_TIMEOUT_SECONDS", 20.0),
        search_sitemap_url=_env_str("SEARCH_SITEMAP_URL"),
        search_timeout_seconds=_env_float("SEARCH_TIMEOUT_SECONDS", 4.0),
        search_max_pages=_env_int("SEARCH_MAX_PAGES", 200),
        search_cache_ttl_seconds=_env_int("SEARCH_CACHE_TTL_SECONDS", 86400),
        search_index_on_startup=_env_int("SEARCH_INDEX_ON_STARTUP", 50),
        log_level=_env_str("LOG_LEVEL", "INFO").upper() or "INFO",
    )
    if allowed_domains:
        kwargs["search_allowed_domains"] = allowed_domains
    if flows_path:
        kwargs["flows_path"] = Path(flows_path)
    return Settings(**kwargs)


def get_origin_label(settings: Optional[Settings]) -> str:
    """First configured origin, used as the HTTP-Referer for provider calls."""
    if settings and settings.allowed_origins:
        return settings.allowed_origins[0]
    return "http://localhost:3000"
