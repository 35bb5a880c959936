import logging

from app.settings import Settings

from .base import SessionStore
from .memory import MemorySessionStore

logger = logging.getLogger("buddy.sessions")


def get_session_store(settings: Settings) -> SessionStore:
    """Return the session backend selected by ``SESSION_STORE`` (``memory`` or ``redis``).

    The choice is made once at construction; callers only see the SessionStore contract.
    """
    backend = (settings.session_store or "memory").lower()
    if backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("REDIS_URL is required when SESSION_STORE=redis")
        from .redis_store import RedisSessionStore

        logger.info("Using Redis session store")
        return RedisSessionStore.from_url(settings.redis_url)
    if backend != "memory":
        logger.warning("Unknown SESSION_STORE=%s; using in-memory session store", backend)
    logger.info("Using in-memory session store")
    return MemorySessionStore()
