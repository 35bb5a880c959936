from __future__ import annotations

import abc
from typing import Dict, List, Optional

ChatMessage = Dict[str, str]


class ProviderError(RuntimeError):
    """Upstream model call failed; ``reason`` is a short label for metrics."""

    def __init__(self, message: str, reason: str = "error"):
        super().__init__(message)
        self.reason = reason


class ChatClient(abc.ABC):
    """Abstract chat completion client.

    ``messages`` are OpenAI-style ``{"role", "content"}`` dicts with roles
    ``system``, ``user`` and ``assistant``. Implementations return the reply text
    or raise ``ProviderError``.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def complete(self, messages: List[ChatMessage], request_id: Optional[str] = None) -> str:
        ...

    async def close(self) -> None:
        return None
