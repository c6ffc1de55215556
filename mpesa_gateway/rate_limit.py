from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol

import redis

from mpesa_gateway.base import Clock
from mpesa_gateway.errors import rate_limit_error

logger = logging.getLogger("mpesa_gateway.rate_limit")

DEFAULT_KEY_PREFIX = "mpesa"
CLEANUP_INTERVAL_S = 60.0
SCAN_BATCH = 500


@dataclass(frozen=True)
class RateLimitUsage:
    count: int
    remaining: int
    reset_at: float


@dataclass
class _Entry:
    count: int
    reset_at: float


def _raise_limited(retry_after: int, details: dict[str, Any]) -> None:
    raise rate_limit_error(
        f"Rate limit exceeded. Try again in {retry_after} seconds.",
        retry_after,
        details,
    )


class InMemoryRateLimiter:
    """
    Fixed-window counter per key, single process.

    A daemon thread sweeps expired windows every cleanup_interval_s; call
    destroy() (or use as a context manager) to stop it.
    """

    def __init__(
        self,
        max_requests: int,
        window_s: float,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Clock = time.time,
        cleanup_interval_s: Optional[float] = CLEANUP_INTERVAL_S,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self.key_prefix = key_prefix
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if cleanup_interval_s:
            self._start_cleanup(float(cleanup_interval_s))

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def check_limit(self, key: str) -> None:
        full_key = self._full_key(key)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None or now >= entry.reset_at:
                self._entries[full_key] = _Entry(count=1, reset_at=now + self.window_s)
                return

            if entry.count >= self.max_requests:
                retry_after = math.ceil(entry.reset_at - now)
                details = {"limit": self.max_requests, "window_s": self.window_s, "reset_at": entry.reset_at}
            else:
                entry.count += 1
                return

        logger.info("rate limited key=%s retry_after=%s", full_key, retry_after)
        _raise_limited(retry_after, details)

    def get_usage(self, key: str) -> RateLimitUsage:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(self._full_key(key))
            if entry is None or now >= entry.reset_at:
                return RateLimitUsage(count=0, remaining=self.max_requests, reset_at=now + self.window_s)
            return RateLimitUsage(
                count=entry.count,
                remaining=max(0, self.max_requests - entry.count),
                reset_at=entry.reset_at,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(self._full_key(key), None)

    def reset_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.reset_at]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def _start_cleanup(self, interval_s: float) -> None:
        def _run() -> None:
            while not self._stop.wait(interval_s):
                removed = self.cleanup()
                if removed:
                    logger.debug("rate limit sweep removed=%s", removed)

        self._sweeper = threading.Thread(target=_run, name="mpesa-rate-limit-sweep", daemon=True)
        self._sweeper.start()

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def destroy(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None
        self.reset_all()

    def __enter__(self) -> "InMemoryRateLimiter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.destroy()


class CounterStore(Protocol):
    """The subset of the redis-py client the shared limiter relies on."""

    def incr(self, name: str) -> int: ...
    def expire(self, name: str, time: int) -> Any: ...
    def ttl(self, name: str) -> int: ...
    def get(self, name: str) -> Any: ...
    def delete(self, *names: str) -> Any: ...
    def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None) -> Iterator[str]: ...


class RedisRateLimiter:
    """
    Fixed-window counter shared across processes via INCR + EXPIRE.

    retry_after comes from the key TTL; when the store cannot report one it
    is approximated from the configured window.
    """

    def __init__(
        self,
        store: CounterStore,
        max_requests: int,
        window_s: float,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Clock = time.time,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.store = store
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self.key_prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, max_requests: int, window_s: float, **kwargs: Any) -> "RedisRateLimiter":
        return cls(redis.from_url(url, decode_responses=True), max_requests, window_s, **kwargs)

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    @property
    def _window_ttl(self) -> int:
        return max(1, math.ceil(self.window_s))

    def _remaining_ttl(self, full_key: str, *, repair: bool = True) -> Optional[int]:
        try:
            ttl = self.store.ttl(full_key)
        except Exception as exc:
            logger.warning("rate limit ttl lookup failed key=%s err=%s", full_key, exc)
            return None
        if ttl is None:
            return None
        ttl = int(ttl)
        if ttl == -1 and repair:
            # counter without expiry (expire lost after incr): repair it
            self.store.expire(full_key, self._window_ttl)
            return self._window_ttl
        return ttl if ttl > 0 else None

    def check_limit(self, key: str) -> None:
        full_key = self._full_key(key)
        count = int(self.store.incr(full_key))

        if count == 1:
            self.store.expire(full_key, self._window_ttl)

        if count > self.max_requests:
            retry_after = self._remaining_ttl(full_key) or self._window_ttl
            logger.info("rate limited key=%s retry_after=%s", full_key, retry_after)
            _raise_limited(retry_after, {"limit": self.max_requests, "window_s": self.window_s})

    def get_usage(self, key: str) -> RateLimitUsage:
        full_key = self._full_key(key)
        now = self._clock()
        raw = self.store.get(full_key)
        count = int(raw) if raw is not None else 0
        if count <= 0:
            return RateLimitUsage(count=0, remaining=self.max_requests, reset_at=now + self.window_s)
        ttl = self._remaining_ttl(full_key, repair=False) or self._window_ttl
        return RateLimitUsage(count=count, remaining=max(0, self.max_requests - count), reset_at=now + ttl)

    def reset(self, key: str) -> None:
        self.store.delete(self._full_key(key))

    def reset_all(self) -> int:
        """Delete every counter under this limiter's prefix; returns the number removed."""
        removed = 0
        batch: list[str] = []
        for name in self.store.scan_iter(match=f"{self.key_prefix}:*", count=SCAN_BATCH):
            batch.append(name)
            if len(batch) >= SCAN_BATCH:
                removed += int(self.store.delete(*batch) or 0)
                batch = []
        if batch:
            removed += int(self.store.delete(*batch) or 0)
        logger.info("rate limit reset_all prefix=%s removed=%s", self.key_prefix, removed)
        return removed

    def destroy(self) -> None:
        return None

    def __enter__(self) -> "RedisRateLimiter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.destroy()
