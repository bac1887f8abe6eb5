"""Anonymous request throttling.

Best-effort fixed-window counters keyed by caller identity. Only requests
without a caller-supplied credential are counted.
"""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

log = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: Optional[float] = None

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)


class RateLimiter(ABC):
    """Interface: a single increment-and-check operation."""

    max_requests: int
    window_s: float

    @abstractmethod
    def hit(self, identity: str) -> RateLimitDecision:
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    def __init__(self, max_requests: int = 10, window_s: float = 3600.0, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, identity: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep > self.window_s:
                self._sweep(now)
            entry = self._entries.get(identity)
            if entry is None or now - entry.window_start > self.window_s:
                entry = RateLimitEntry(count=0, window_start=now)
                self._entries[identity] = entry

            if entry.count >= self.max_requests:
                retry_after = max(entry.window_start + self.window_s - now, 0.0)
                return RateLimitDecision(False, entry.count, self.max_requests, retry_after)

            entry.count += 1
            return RateLimitDecision(True, entry.count, self.max_requests)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [k for k, e in self._entries.items() if now - e.window_start > self.window_s]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        if expired:
            log.debug("Evicted %d expired rate limit entries", len(expired))

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def entry(self, identity: str) -> Optional[RateLimitEntry]:
        with self._lock:
            return self._entries.get(identity)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisRateLimiter(RateLimiter):
    """Same contract backed by Redis INCR/EXPIRE, shared across workers."""

    def __init__(self, r: redis.Redis, max_requests: int = 10, window_s: float = 3600.0, prefix: str = "image_parser:ratelimit"):
        self.redis = r
        self.max_requests = max_requests
        self.window_s = window_s
        self.prefix = prefix

    def _key(self, identity: str) -> str:
        return f"{self.prefix}:{identity}"

    def hit(self, identity: str) -> RateLimitDecision:
        key = self._key(identity)
        count = int(self.redis.incr(key))
        if count == 1:
            self.redis.expire(key, int(self.window_s))
        if count > self.max_requests:
            ttl = self.redis.ttl(key)
            if ttl is None or ttl < 0:
                # expire was lost (e.g. crash between INCR and EXPIRE)
                self.redis.expire(key, int(self.window_s))
                ttl = int(self.window_s)
            log.info("rate limit reached for key=%s count=%s", key, count)
            return RateLimitDecision(False, count, self.max_requests, float(ttl))
        return RateLimitDecision(True, count, self.max_requests)
