from __future__ import annotations

import json
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from .base import SessionStore
from .models import Session


class MemorySessionStore(SessionStore):
    """Volatile in-process store.

    Entries are kept serialized so a loaded session never aliases the stored copy,
    matching the behaviour of an external key/value backend. Expired keys are dropped
    lazily on read and swept on every write.
    """

    backend_name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: Dict[str, Tuple[float, str]] = {}
        self._lock = Lock()

    async def get(self, session_id: str) -> Optional[Session]:
        now = self._clock()
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return None
            expires_at, raw = entry
            if expires_at <= now:
                self._store.pop(session_id, None)
                return None
        return Session.from_dict(json.loads(raw))

    async def set(self, session_id: str, session: Session, ttl_seconds: int) -> None:
        raw = json.dumps(session.to_dict(), ensure_ascii=False)
        now = self._clock()
        with self._lock:
            self._store[session_id] = (now + max(1, int(ttl_seconds)), raw)
            self._sweep(now)

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._store)

    def _sweep(self, now: float) -> None:
        expired = [sid for sid, (exp, _) in self._store.items() if exp <= now]
        for sid in expired:
            del self._store[sid]
