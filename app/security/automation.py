from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Mapping, Optional

AUTOMATION_UA_SIGNATURES = (
    "curl/",
    "wget/",
    "python-requests",
    "python-httpx",
    "aiohttp",
    "go-http-client",
    "okhttp",
    "java/",
    "libwww-perl",
    "headlesschrome",
    "phantomjs",
    "selenium",
    "puppeteer",
    "playwright",
    "scrapy",
    "httpclient",
)


@dataclass(frozen=True)
class RequestShape:
    """Request metadata the automation policy scores. Header names are lowercase."""

    ip: str
    headers: Mapping[str, str]
    body_size: int = 0
    message_length: int = 0
    session_id: Optional[str] = None
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AutomationVerdict:
    allowed: bool
    score: int
    reasons: List[str]


class AutomationPolicy(abc.ABC):
    @abc.abstractmethod
    def evaluate(self, shape: RequestShape) -> AutomationVerdict:
        ...


class AllowAllPolicy(AutomationPolicy):
    def evaluate(self, shape: RequestShape) -> AutomationVerdict:
        return AutomationVerdict(allowed=True, score=0, reasons=[])


class HeuristicAutomationPolicy(AutomationPolicy):
    """Additive header/payload/cadence scoring; deny at ``threshold`` or above.

    Weights: missing or short user agent 3, automation user agent 3, oversized message 3,
    two messages on one session within ``min_interval_ms`` 3, missing Accept 1,
    missing Accept-Language 1.
    """

    def __init__(
        self,
        threshold: int = 3,
        min_interval_ms: int = 200,
        max_message_chars: int = 2000,
        clock: Callable[[], float] = time.time,
        cadence_ttl_seconds: int = 3600,
    ) -> None:
        self.threshold = max(1, threshold)
        self.min_interval_ms = max(0, min_interval_ms)
        self.max_message_chars = max_message_chars
        self._clock = clock
        self._cadence_ttl = cadence_ttl_seconds
        self._last_seen: Dict[str, float] = {}
        self._lock = Lock()

    def evaluate(self, shape: RequestShape) -> AutomationVerdict:
        score = 0
        reasons: List[str] = []
        headers = shape.headers

        ua = (headers.get("user-agent") or "").strip()
        if len(ua) < 8:
            score += 3
            reasons.append("missing_user_agent")
        elif any(sig in ua.lower() for sig in AUTOMATION_UA_SIGNATURES):
            score += 3
            reasons.append("automation_user_agent")

        if not headers.get("accept"):
            score += 1
            reasons.append("missing_accept")
        if not headers.get("accept-language"):
            score += 1
            reasons.append("missing_accept_language")

        if self.max_message_chars > 0 and shape.message_length > self.max_message_chars:
            score += 3
            reasons.append("oversized_message")

        if shape.session_id and self._too_fast(shape.session_id, shape.received_at):
            score += 3
            reasons.append("message_cadence")

        return AutomationVerdict(allowed=score < self.threshold, score=score, reasons=reasons)

    def _too_fast(self, session_id: str, at: float) -> bool:
        with self._lock:
            last = self._last_seen.get(session_id)
            self._last_seen[session_id] = at
            if len(self._last_seen) > 10000:
                cutoff = at - self._cadence_ttl
                for sid in [s for s, ts in self._last_seen.items() if ts < cutoff]:
                    del self._last_seen[sid]
        if last is None:
            return False
        return (at - last) * 1000 < self.min_interval_ms
