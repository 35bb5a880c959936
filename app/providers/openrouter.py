from typing import Dict, Optional

from .openai import OpenAIChatClient


class OpenRouterChatClient(OpenAIChatClient):
    provider_name: str = "openrouter"
    url: str = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, api_key: str, model: Optional[str] = None, referer: str = "http://localhost:3000",
                 title: str = "InvestOnline Buddy", **kwargs):
        # OpenRouter model ids carry the vendor prefix
        if model and "/" not in model:
            model = f"openai/{model}"
        super().__init__(api_key, model=model or "openai/gpt-4o-mini", **kwargs)
        self._referer = referer
        self._title = title

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = super()._headers(request_id)
        # Optional metadata for OpenRouter analytics
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers
