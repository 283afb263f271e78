"""Tests for luxbroker/core/kv_store.py.

InMemoryKVStore runs on an injected fake clock so expiry is deterministic.
RedisKVStore is exercised without a Redis server: redis.asyncio.from_url is
patched either to fail (driving the in-memory fallback) or to return a mock
client whose registered scripts return canned replies.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import luxbroker.core.kv_store as kv_module
from luxbroker.core.kv_store import InMemoryKVStore, RedisKVStore, WindowHit, get_kv_store, set_kv_store


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKVStore(clock=clock)


# ---------------------------------------------------------------------------
# InMemoryKVStore: get / set / expiry
# ---------------------------------------------------------------------------


class TestInMemoryGetSet:

    # 1
    async def test_set_then_get(self, store):
        """A stored value is readable before its TTL elapses."""
        await store.set("k", "v", ttl_seconds=10)
        assert await store.get("k") == "v"

    # 2
    async def test_missing_key_is_none(self, store):
        assert await store.get("nope") is None

    # 3
    async def test_value_expires_after_ttl(self, store, clock):
        """At exactly the TTL boundary the entry is gone."""
        await store.set("k", "v", ttl_seconds=10)
        clock.advance(10)
        assert await store.get("k") is None
        assert len(store) == 0

    # 4
    async def test_set_overwrites_and_restarts_ttl(self, store, clock):
        await store.set("k", "old", ttl_seconds=10)
        clock.advance(8)
        await store.set("k", "new", ttl_seconds=10)
        clock.advance(8)
        assert await store.get("k") == "new"


# ---------------------------------------------------------------------------
# InMemoryKVStore: compare_and_delete
# ---------------------------------------------------------------------------


class TestInMemoryCompareAndDelete:

    # 5
    async def test_matching_value_deletes_once(self, store):
        """The first matching call wins; the second finds nothing."""
        await store.set("k", "secret", ttl_seconds=60)
        assert await store.compare_and_delete("k", "secret") is True
        assert await store.compare_and_delete("k", "secret") is False

    # 6
    async def test_mismatch_keeps_value(self, store):
        await store.set("k", "secret", ttl_seconds=60)
        assert await store.compare_and_delete("k", "wrong") is False
        assert await store.get("k") == "secret"

    # 7
    async def test_expired_value_never_matches(self, store, clock):
        await store.set("k", "secret", ttl_seconds=60)
        clock.advance(61)
        assert await store.compare_and_delete("k", "secret") is False


# ---------------------------------------------------------------------------
# InMemoryKVStore: hit_window
# ---------------------------------------------------------------------------


class TestInMemoryHitWindow:

    # 8
    async def test_counts_up_to_ceiling(self, store):
        hits = [await store.hit_window("w", ceiling=3, window_seconds=60) for _ in range(3)]
        assert [h.accepted for h in hits] == [True, True, True]
        assert [h.count for h in hits] == [1, 2, 3]

    # 9
    async def test_rejects_without_incrementing(self, store):
        """Rejected hits leave the counter at the ceiling."""
        for _ in range(3):
            await store.hit_window("w", ceiling=3, window_seconds=60)
        for _ in range(5):
            hit = await store.hit_window("w", ceiling=3, window_seconds=60)
            assert hit.accepted is False
            assert hit.count == 3

    # 10
    async def test_reset_in_counts_down(self, store, clock):
        await store.hit_window("w", ceiling=1, window_seconds=60)
        clock.advance(45)
        hit = await store.hit_window("w", ceiling=1, window_seconds=60)
        assert hit.accepted is False
        assert hit.reset_in == pytest.approx(15)

    # 11
    async def test_new_window_after_expiry(self, store, clock):
        await store.hit_window("w", ceiling=1, window_seconds=60)
        clock.advance(60)
        hit = await store.hit_window("w", ceiling=1, window_seconds=60)
        assert hit.accepted is True
        assert hit.count == 1

    # 12
    async def test_keys_are_independent(self, store):
        await store.hit_window("a", ceiling=1, window_seconds=60)
        hit = await store.hit_window("b", ceiling=1, window_seconds=60)
        assert hit.accepted is True


# ---------------------------------------------------------------------------
# InMemoryKVStore: sweep
# ---------------------------------------------------------------------------


class TestInMemorySweep:

    # 13
    async def test_sweep_removes_only_expired_with_prefix(self, store, clock):
        await store.set("nonce:a", "1", ttl_seconds=10)
        await store.set("nonce:b", "1", ttl_seconds=100)
        await store.set("other:c", "1", ttl_seconds=10)
        clock.advance(20)
        assert await store.sweep("nonce:") == 1
        assert await store.get("nonce:b") == "1"
        # Not swept, but still expired on read
        assert len(store) == 2
        assert await store.get("other:c") is None

    # 14
    async def test_sweep_empty_store(self, store):
        assert await store.sweep() == 0


# ---------------------------------------------------------------------------
# RedisKVStore: fallback when Redis is unreachable
# ---------------------------------------------------------------------------


def _unreachable():
    return patch("redis.asyncio.from_url", side_effect=Exception("connection refused"))


class TestRedisFallback:

    # 15
    async def test_connection_failure_uses_in_memory(self):
        store = RedisKVStore("redis://localhost:6379/0")
        with _unreachable():
            await store.set("k", "v", ttl_seconds=60)
            assert await store.get("k") == "v"
            assert store._redis is None

    # 16
    async def test_fallback_hit_window_caps(self):
        store = RedisKVStore("redis://localhost:6379/0")
        with _unreachable():
            first = await store.hit_window("w", ceiling=1, window_seconds=60)
            second = await store.hit_window("w", ceiling=1, window_seconds=60)
        assert first.accepted is True
        assert second.accepted is False

    # 17
    async def test_fallback_compare_and_delete(self):
        store = RedisKVStore("redis://localhost:6379/0")
        with _unreachable():
            await store.set("k", "v", ttl_seconds=60)
            assert await store.compare_and_delete("k", "v") is True
            assert await store.compare_and_delete("k", "v") is False


# ---------------------------------------------------------------------------
# RedisKVStore: connected path with a mocked client
# ---------------------------------------------------------------------------


def _mock_client(window_reply=None, cad_reply=1):
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value="v")
    client.set = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    window_script = AsyncMock(return_value=window_reply or [1, 1, 60000])
    cad_script = AsyncMock(return_value=cad_reply)
    client.register_script = MagicMock(side_effect=[window_script, cad_script])
    return client, window_script, cad_script


class TestRedisConnected:

    # 18
    async def test_set_uses_millisecond_ttl(self):
        client, _, _ = _mock_client()
        store = RedisKVStore("redis://localhost:6379/0")
        with patch("redis.asyncio.from_url", return_value=client):
            await store.set("k", "v", ttl_seconds=300)
        client.set.assert_awaited_once_with("k", "v", px=300000)

    # 19
    async def test_hit_window_parses_script_reply(self):
        client, window_script, _ = _mock_client(window_reply=[0, 5, 12500])
        store = RedisKVStore("redis://localhost:6379/0")
        with patch("redis.asyncio.from_url", return_value=client):
            hit = await store.hit_window("w", ceiling=5, window_seconds=60)
        assert hit == WindowHit(accepted=False, count=5, reset_in=12.5)
        window_script.assert_awaited_once_with(keys=["w"], args=[5, 60000])

    # 20
    async def test_compare_and_delete_uses_script(self):
        client, _, cad_script = _mock_client(cad_reply=0)
        store = RedisKVStore("redis://localhost:6379/0")
        with patch("redis.asyncio.from_url", return_value=client):
            assert await store.compare_and_delete("k", "v") is False
        cad_script.assert_awaited_once_with(keys=["k"], args=["v"])

    # 21
    async def test_script_error_falls_back(self):
        client, window_script, _ = _mock_client()
        window_script.side_effect = Exception("NOSCRIPT")
        store = RedisKVStore("redis://localhost:6379/0")
        with patch("redis.asyncio.from_url", return_value=client):
            hit = await store.hit_window("w", ceiling=2, window_seconds=60)
        assert hit.accepted is True
        assert hit.count == 1

    # 22
    async def test_close_releases_client(self):
        client, _, _ = _mock_client()
        store = RedisKVStore("redis://localhost:6379/0")
        with patch("redis.asyncio.from_url", return_value=client):
            await store.get("k")
            await store.close()
        client.aclose.assert_awaited_once()
        assert store._redis is None


# ---------------------------------------------------------------------------
# get_kv_store() factory
# ---------------------------------------------------------------------------


class TestGetKVStore:

    def setup_method(self):
        set_kv_store(None)

    def teardown_method(self):
        set_kv_store(None)

    # 23
    def test_in_memory_without_redis_url(self):
        with patch.object(kv_module, "settings") as mock_settings:
            mock_settings.redis_url = ""
            assert isinstance(get_kv_store(), InMemoryKVStore)

    # 24
    def test_redis_with_url(self):
        with patch.object(kv_module, "settings") as mock_settings:
            mock_settings.redis_url = "redis://localhost:6379/0"
            assert isinstance(get_kv_store(), RedisKVStore)

    # 25
    def test_singleton(self):
        with patch.object(kv_module, "settings") as mock_settings:
            mock_settings.redis_url = ""
            assert get_kv_store() is get_kv_store()
