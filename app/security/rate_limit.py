from __future__ import annotations

import abc
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    window_seconds: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitBucket:
    key: str
    window_start: int
    count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    buckets: Tuple[RateLimitBucket, ...]
    rule: Optional[str] = None


class WindowCounter(abc.ABC):
    """Atomic per-key increment with an expiry. Implementations must never split the
    read and the write of a count."""

    @abc.abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        ...

    async def close(self) -> None:
        return None


class MemoryWindowCounter(WindowCounter):
    def __init__(self, clock: Callable[[], float] = time.time, sweep_every: int = 1000) -> None:
        self._clock = clock
        self._store: Dict[str, Tuple[float, int]] = {}
        self._lock = Lock()
        self._ops = 0
        self._sweep_every = max(1, sweep_every)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry[0] <= now:
                value = 1
                expires_at = now + ttl_seconds
            else:
                expires_at, current = entry
                value = current + 1
            self._store[key] = (expires_at, value)
            self._ops += 1
            if self._ops % self._sweep_every == 0:
                for k in [k for k, (exp, _) in self._store.items() if exp <= now]:
                    del self._store[k]
            return value


class RedisWindowCounter(WindowCounter):
    def __init__(self, client: Any) -> None:
        self._redis = client

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            value, _ = await pipe.execute()
        return int(value)

    async def close(self) -> None:
        await self._redis.aclose()


class RateLimiter:
    """Fixed-window IP limiter.

    Windows are aligned to multiples of their length, so every bucket resets exactly at
    a window boundary. Each call counts against every rule; the request is denied when
    any rule's count exceeds its maximum.
    """

    def __init__(
        self,
        rules: Sequence[RateLimitRule],
        counter: WindowCounter,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "rl",
    ) -> None:
        self.rules: List[RateLimitRule] = [r for r in rules if r.max_requests > 0 and r.window_seconds > 0]
        self._counter = counter
        self._clock = clock
        self._prefix = key_prefix

    async def hit(self, ip: str) -> RateLimitDecision:
        now = self._clock()
        buckets: List[RateLimitBucket] = []
        denied_by: Optional[str] = None
        for rule in self.rules:
            window_start = int(now // rule.window_seconds) * rule.window_seconds
            key = f"{self._prefix}:{rule.name}:{ip}:{window_start}"
            ttl = max(1, int(window_start + rule.window_seconds - now) + 1)
            count = await self._counter.incr(key, ttl)
            buckets.append(RateLimitBucket(key=ip, window_start=window_start, count=count))
            if count > rule.max_requests and denied_by is None:
                denied_by = rule.name
        return RateLimitDecision(allowed=denied_by is None, buckets=tuple(buckets), rule=denied_by)

    async def close(self) -> None:
        await self._counter.close()
