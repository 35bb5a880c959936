from typing import List, Optional

from .base import ChatClient, ChatMessage, ProviderError


class MockChatClient(ChatClient):
    """Deterministic offline client used in development and tests."""

    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None, reply: Optional[str] = None, fail: bool = False):
        super().__init__(model=model or "mock-chat-1")
        self.reply = reply
        self.fail = fail
        self.calls: List[List[ChatMessage]] = []

    async def complete(self, messages: List[ChatMessage], request_id: Optional[str] = None) -> str:
        self.calls.append(list(messages))
        if self.fail:
            raise ProviderError("mock provider configured to fail", reason="mock_failure")
        if self.reply is not None:
            return self.reply
        last_user = next((m.get("content", "") for m in reversed(messages) if m.get("role") == "user"), "")
        return f"Here is some general information about: {last_user.strip() or 'your question'}"
