from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from .base import ChatClient, ChatMessage, ProviderError

USER_AGENT = "buddy-chat-api/0.1.0"


class OpenAIChatClient(ChatClient):
    """Chat Completions over plain HTTP; OpenRouter reuses the same wire format."""

    provider_name: str = "openai"
    url: str = "https://api.openai.com/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 350,
        temperature: float = 0.2,
        timeout: float = 20.0,
    ):
        super().__init__(model=model or "gpt-4o-mini")
        if not api_key:
            raise RuntimeError(f"API key is required for {self.provider_name} provider")
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    def _payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if self._max_tokens > 0:
            payload["max_tokens"] = self._max_tokens
        return payload

    async def complete(self, messages: List[ChatMessage], request_id: Optional[str] = None) -> str:
        # Short-lived client per request to ensure proper cleanup
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, headers=self._headers(request_id), json=self._payload(messages))
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.provider_name} timeout", reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_name} transport error: {exc}", reason="transport") from exc
        if resp.status_code >= 400:
            raise ProviderError(f"{self.provider_name} error {resp.status_code}: {resp.text[:512]}", reason=f"http_{resp.status_code}")
        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.provider_name} returned an unexpected body", reason="bad_response") from exc
        text = (content or "").strip()
        if not text:
            raise ProviderError(f"{self.provider_name} returned an empty reply", reason="empty")
        return text
