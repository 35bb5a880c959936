from __future__ import annotations

import abc
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from app.metrics import SEARCH_FAILURES_TOTAL, SEARCH_RESULTS

logger = logging.getLogger("buddy.search")


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str
    score: float = 0.0

    def to_source(self) -> dict:
        return {"title": self.title, "url": self.url}


class SearchAugmenter(abc.ABC):
    """Best-effort retrieval of reference snippets.

    ``search`` never raises for transport or parsing problems: failures and timeouts are
    logged and reported as an empty result list so callers continue unaugmented.
    Subclasses implement ``_search``.
    """

    name: str = "unknown"

    def __init__(self, timeout: float = 4.0):
        self.timeout = timeout

    @abc.abstractmethod
    async def _search(self, query: str, top_k: int) -> List[SearchResult]:
        ...

    async def search(self, query: str, top_k: int = 3, request_id: Optional[str] = None) -> List[SearchResult]:
        if not query or top_k <= 0:
            return []
        try:
            results = await asyncio.wait_for(self._search(query, top_k), timeout=self.timeout)
        except asyncio.TimeoutError:
            SEARCH_FAILURES_TOTAL.labels(reason="timeout").inc()
            logger.warning(json.dumps({"event": "search_unavailable", "reason": "timeout", "requestId": request_id}))
            return []
        except Exception as exc:
            SEARCH_FAILURES_TOTAL.labels(reason=type(exc).__name__).inc()
            logger.warning(
                json.dumps({"event": "search_unavailable", "reason": type(exc).__name__, "requestId": request_id}),
                exc_info=True,
            )
            return []
        out = [r for r in results if r.url][:top_k]
        SEARCH_RESULTS.observe(len(out))
        return out

    def index_size(self) -> int:
        return 0

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class NullSearchAugmenter(SearchAugmenter):
    """No index configured: always answers with no results."""

    name = "null"

    async def _search(self, query: str, top_k: int) -> List[SearchResult]:
        return []
