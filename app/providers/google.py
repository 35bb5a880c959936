from typing import Any, Dict, List, Optional

import httpx

from .base import ChatClient, ChatMessage, ProviderError


class GoogleChatClient(ChatClient):
    provider_name: str = "google"

    def __init__(self, api_key: str, model: Optional[str] = None, max_tokens: int = 350,
                 temperature: float = 0.2, timeout: float = 20.0):
        super().__init__(model=model or "gemini-1.5-flash")
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY is required for Google provider")
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout

    def _payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        system_parts = [{"text": m["content"]} for m in messages if m.get("role") == "system"]
        contents = [
            {"role": "model" if m.get("role") == "assistant" else "user", "parts": [{"text": m.get("content", "")}]}
            for m in messages
            if m.get("role") != "system"
        ]
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": self._temperature},
        }
        if self._max_tokens > 0:
            payload["generationConfig"]["maxOutputTokens"] = self._max_tokens
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    async def complete(self, messages: List[ChatMessage], request_id: Optional[str] = None) -> str:
        """Single-shot generateContent call against the Generative Language API.

        Endpoint: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
        """
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}
        if request_id:
            headers["X-Request-Id"] = request_id
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=headers, json=self._payload(messages))
        except httpx.TimeoutException as exc:
            raise ProviderError("google timeout", reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"google transport error: {exc}", reason="transport") from exc
        if resp.status_code >= 400:
            raise ProviderError(f"google error {resp.status_code}: {resp.text[:512]}", reason=f"http_{resp.status_code}")
        try:
            # { candidates: [ { content: { parts: [ { text } ] } } ] }
            parts = resp.json()["candidates"][0]["content"]["parts"]
            text = "".join(p.get("text", "") for p in parts).strip()
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError("google returned an unexpected body", reason="bad_response") from exc
        if not text:
            raise ProviderError("google returned an empty reply", reason="empty")
        return text
