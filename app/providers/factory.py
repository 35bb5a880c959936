import json
import logging

from app.settings import Settings, get_origin_label

from .base import ChatClient
from .mock import MockChatClient

logger = logging.getLogger("buddy.providers")


def get_chat_client(settings: Settings) -> ChatClient:
    """Return a chat client for the configured provider.

    Provider comes from AI_PROVIDER_CHAT / AI_PROVIDER (default 'mock'). A provider
    that cannot be constructed, e.g. for a missing API key, falls back to mock.
    """
    prov = (settings.chat_provider or "mock").lower()
    common = dict(
        model=settings.chat_model or None,
        max_tokens=settings.chat_max_tokens,
        temperature=settings.chat_temperature,
        timeout=settings.model_timeout_seconds,
    )

    if prov in ("mock", "test"):
        return MockChatClient(model=settings.chat_model or None)

    try:
        if prov in ("openai", "gpt"):
            from .openai import OpenAIChatClient
            return OpenAIChatClient(settings.openai_api_key, **common)
        if prov in ("openrouter", "router"):
            from .openrouter import OpenRouterChatClient
            return OpenRouterChatClient(settings.openrouter_api_key, referer=get_origin_label(settings), **common)
        if prov in ("google", "gemini"):
            from .google import GoogleChatClient
            common["model"] = None if (settings.chat_model or "").startswith("gpt") else common["model"]
            return GoogleChatClient(settings.google_api_key, **common)
    except RuntimeError as exc:
        logger.warning(json.dumps({"event": "chat_provider_fallback", "provider": prov, "reason": str(exc)}))
        return MockChatClient(model=settings.chat_model or None)

    logger.warning(json.dumps({"event": "chat_provider_unknown", "provider": prov}))
    return MockChatClient(model=settings.chat_model or None)
