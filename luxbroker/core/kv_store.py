"""Key-value storage with TTL semantics for the protective stores.

The nonce challenge store and the rate limiter keep their state behind the
``KeyValueStore`` protocol. Two implementations exist:

- ``InMemoryKVStore``: a per-process dict. State is lost on restart and is
  not shared between workers or instances.
- ``RedisKVStore``: backed by ``redis.asyncio``. Compound operations run as
  Lua scripts so they stay atomic across instances. Falls back to an
  in-memory store if Redis is unreachable.

The implementation is picked once at startup from ``REDIS_URL``:

    from luxbroker.core.kv_store import get_kv_store
    store = get_kv_store()
"""

from __future__ import annotations

import hmac
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from luxbroker.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowHit:
    """Outcome of one request against a fixed window counter."""

    accepted: bool
    count: int
    reset_in: float  # seconds until the window closes


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: float) -> None: ...

    async def compare_and_delete(self, key: str, expected: str) -> bool: ...

    async def hit_window(self, key: str, *, ceiling: int, window_seconds: float) -> WindowHit: ...

    async def sweep(self, prefix: str = "") -> int: ...

    async def close(self) -> None: ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class InMemoryKVStore:
    """Dict-backed store. Safe under asyncio: no operation awaits midway."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def _live(self, key: str, now: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key, self._clock())
        return None if entry is None else str(entry.value)

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        entry = self._live(key, self._clock())
        if entry is None:
            return False
        if not hmac.compare_digest(str(entry.value).encode(), expected.encode()):
            return False
        del self._entries[key]
        return True

    async def hit_window(self, key: str, *, ceiling: int, window_seconds: float) -> WindowHit:
        now = self._clock()
        entry = self._live(key, now)
        if entry is None:
            entry = _Entry(value=0, expires_at=now + window_seconds)
            self._entries[key] = entry
        if entry.value >= ceiling:
            return WindowHit(accepted=False, count=entry.value, reset_in=entry.expires_at - now)
        entry.value += 1
        return WindowHit(accepted=True, count=entry.value, reset_in=entry.expires_at - now)

    async def sweep(self, prefix: str = "") -> int:
        now = self._clock()
        stale = [
            k for k, v in self._entries.items()
            if k.startswith(prefix) and now >= v.expires_at
        ]
        for k in stale:
            del self._entries[k]
        return len(stale)

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Increment unless the ceiling is already reached; the first hit opens the window.
_HIT_WINDOW_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
  return {0, current, redis.call('PTTL', KEYS[1])}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, current, redis.call('PTTL', KEYS[1])}
"""

_COMPARE_AND_DELETE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisKVStore:
    """Redis-backed store shared by every instance pointing at the same Redis."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._redis = None
        self._hit_window_script = None
        self._compare_and_delete_script = None
        self._fallback = InMemoryKVStore()

    async def _get_redis(self):
        if self._redis is None:
            try:
                from redis.asyncio import from_url

                connect_kwargs = {
                    "decode_responses": True,
                    "socket_connect_timeout": 2,
                }
                if self._redis_url.startswith("rediss://"):
                    connect_kwargs["ssl_cert_reqs"] = "required"

                client = from_url(self._redis_url, **connect_kwargs)
                await client.ping()
                self._hit_window_script = client.register_script(_HIT_WINDOW_LUA)
                self._compare_and_delete_script = client.register_script(_COMPARE_AND_DELETE_LUA)
                self._redis = client
                logger.info("Redis key-value store connected")
            except Exception:
                logger.warning("Redis unavailable; falling back to in-memory key-value store")
                self._redis = None
        return self._redis

    async def get(self, key: str) -> str | None:
        redis = await self._get_redis()
        if redis is None:
            return await self._fallback.get(key)
        try:
            return await redis.get(key)
        except Exception:
            logger.warning("Redis GET failed, falling back to in-memory store")
            return await self._fallback.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        redis = await self._get_redis()
        if redis is None:
            await self._fallback.set(key, value, ttl_seconds)
            return
        try:
            await redis.set(key, value, px=max(1, int(ttl_seconds * 1000)))
        except Exception:
            logger.warning("Redis SET failed, falling back to in-memory store")
            await self._fallback.set(key, value, ttl_seconds)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        redis = await self._get_redis()
        if redis is None:
            return await self._fallback.compare_and_delete(key, expected)
        try:
            deleted = await self._compare_and_delete_script(keys=[key], args=[expected])
            return int(deleted) == 1
        except Exception:
            logger.warning("Redis compare-and-delete failed, falling back to in-memory store")
            return await self._fallback.compare_and_delete(key, expected)

    async def hit_window(self, key: str, *, ceiling: int, window_seconds: float) -> WindowHit:
        redis = await self._get_redis()
        if redis is None:
            return await self._fallback.hit_window(
                key, ceiling=ceiling, window_seconds=window_seconds,
            )
        try:
            accepted, count, pttl = await self._hit_window_script(
                keys=[key], args=[ceiling, max(1, int(window_seconds * 1000))],
            )
            reset_in = max(0, int(pttl)) / 1000.0
            return WindowHit(accepted=bool(int(accepted)), count=int(count), reset_in=reset_in)
        except Exception:
            logger.warning("Redis window increment failed, falling back to in-memory store")
            return await self._fallback.hit_window(
                key, ceiling=ceiling, window_seconds=window_seconds,
            )

    async def sweep(self, prefix: str = "") -> int:
        # Redis expires keys itself; only the fallback needs sweeping.
        return await self._fallback.sweep(prefix)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await self._fallback.close()


_instance: KeyValueStore | None = None


def get_kv_store() -> KeyValueStore:
    """Return the process-wide store, creating it from settings on first use."""
    global _instance
    if _instance is None:
        redis_url = getattr(settings, "redis_url", "")
        _instance = RedisKVStore(redis_url) if redis_url else InMemoryKVStore()
    return _instance


def set_kv_store(store: KeyValueStore | None) -> None:
    """Replace the process-wide store (``None`` resets to settings-driven selection)."""
    global _instance
    _instance = store
