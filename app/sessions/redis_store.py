from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis_async

from .base import SessionStore
from .models import Session

logger = logging.getLogger("buddy.sessions")


class RedisSessionStore(SessionStore):
    """Durable store backed by Redis native per-key expiry (``SET ... EX``)."""

    backend_name = "redis"

    def __init__(self, client: Any, key_prefix: str = "session:") -> None:
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "session:") -> "RedisSessionStore":
        client = redis_async.Redis.from_url(url, decode_responses=True)
        return cls(client, key_prefix=key_prefix)

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def get(self, session_id: str) -> Optional[Session]:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning(json.dumps({"event": "session_decode_failed", "sessionId": session_id, "error": str(exc)}))
            return None

    async def set(self, session_id: str, session: Session, ttl_seconds: int) -> None:
        payload = json.dumps(session.to_dict(), ensure_ascii=False)
        await self._redis.set(self._key(session_id), payload, ex=max(1, int(ttl_seconds)))

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))

    async def close(self) -> None:
        await self._redis.aclose()
