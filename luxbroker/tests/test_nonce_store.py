"""Tests for the one-time wallet challenge store."""

import asyncio

import pytest

from luxbroker.core.kv_store import InMemoryKVStore
from luxbroker.core.nonce_store import NONCE_PREFIX, NonceStore

WALLET = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def nonces(clock):
    return NonceStore(InMemoryKVStore(clock=clock), ttl_seconds=300)


class TestIssue:

    # 1
    async def test_nonce_has_prefix_and_entropy(self, nonces):
        nonce = await nonces.issue(WALLET)
        assert nonce.startswith(NONCE_PREFIX)
        # token_urlsafe(32) yields 43 characters
        assert len(nonce) == len(NONCE_PREFIX) + 43

    # 2
    async def test_nonces_are_unique(self, nonces):
        issued = {await nonces.issue(WALLET) for _ in range(20)}
        assert len(issued) == 20

    # 3
    async def test_reissue_replaces_outstanding(self, nonces):
        """Only the latest challenge for a wallet is valid."""
        first = await nonces.issue(WALLET)
        second = await nonces.issue(WALLET)
        assert await nonces.consume(WALLET, first) is False
        assert await nonces.consume(WALLET, second) is True


class TestConsume:

    # 4
    async def test_consume_succeeds_exactly_once(self, nonces):
        nonce = await nonces.issue(WALLET)
        assert await nonces.consume(WALLET, nonce) is True
        assert await nonces.consume(WALLET, nonce) is False

    # 5
    async def test_wallet_lookup_is_case_insensitive(self, nonces):
        nonce = await nonces.issue(WALLET)
        assert await nonces.consume(WALLET.lower(), nonce) is True

    # 6
    async def test_wrong_value_leaves_challenge_usable(self, nonces):
        nonce = await nonces.issue(WALLET)
        assert await nonces.consume(WALLET, "luxledger:guess") is False
        assert await nonces.consume(WALLET, nonce) is True

    # 7
    async def test_expired_challenge_fails(self, nonces, clock):
        """Issued at t=0 with a 300 s lifetime: consuming at t=301 fails."""
        nonce = await nonces.issue(WALLET)
        clock.now = 301
        assert await nonces.consume(WALLET, nonce) is False

    # 8
    async def test_just_before_expiry_succeeds(self, nonces, clock):
        nonce = await nonces.issue(WALLET)
        clock.now = 299
        assert await nonces.consume(WALLET, nonce) is True

    # 9
    async def test_other_wallet_cannot_consume(self, nonces):
        nonce = await nonces.issue(WALLET)
        assert await nonces.consume("rPEPPER7kfTD9w2To4CQk6UCfuHM9c6GDY", nonce) is False

    # 10
    async def test_empty_inputs_fail(self, nonces):
        assert await nonces.consume("", "x") is False
        assert await nonces.consume(WALLET, "") is False

    # 11
    async def test_concurrent_consumers_one_winner(self, nonces):
        nonce = await nonces.issue(WALLET)
        results = await asyncio.gather(*(nonces.consume(WALLET, nonce) for _ in range(10)))
        assert results.count(True) == 1


class TestSweep:

    # 12
    async def test_sweep_removes_expired(self, nonces, clock):
        await nonces.issue(WALLET)
        await nonces.issue("rPEPPER7kfTD9w2To4CQk6UCfuHM9c6GDY")
        clock.now = 400
        assert await nonces.sweep() == 2

    # 13
    async def test_sweep_keeps_live(self, nonces, clock):
        nonce = await nonces.issue(WALLET)
        clock.now = 100
        assert await nonces.sweep() == 0
        assert await nonces.consume(WALLET, nonce) is True
