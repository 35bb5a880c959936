from __future__ import annotations

import abc
from typing import Optional

from .models import Session


class SessionStore(abc.ABC):
    """TTL-keyed storage for conversation state.

    Every ``set`` restarts the key's TTL (sliding expiry). A session not written for
    ``ttl_seconds`` must no longer be returned by ``get``.

    Known limitation: callers do get -> modify -> set, which is not atomic. Two concurrent
    requests for the same session id can race and one update can be lost. The chat route
    serialises requests per session id inside one process; across processes sharing a
    durable backend the race remains.
    """

    backend_name: str = "unknown"

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abc.abstractmethod
    async def set(self, session_id: str, session: Session, ttl_seconds: int) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    async def close(self) -> None:
        return None
