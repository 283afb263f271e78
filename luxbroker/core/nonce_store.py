"""One-time wallet challenges.

A challenge is issued per wallet (case-insensitive), expires after
``NONCE_TTL_SECONDS`` and is consumed at most once. Issuing a new challenge
replaces the outstanding one.
"""

from __future__ import annotations

import logging
import secrets

from luxbroker.config import settings
from luxbroker.core.kv_store import KeyValueStore, get_kv_store
from luxbroker.core.log_redaction import redact_wallet

logger = logging.getLogger(__name__)

NONCE_PREFIX = "luxledger:"
_KEY_PREFIX = "nonce:"


def _key(wallet: str) -> str:
    return f"{_KEY_PREFIX}{wallet.lower()}"


class NonceStore:
    def __init__(self, store: KeyValueStore, ttl_seconds: float | None = None):
        self._store = store
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.nonce_ttl_seconds

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def issue(self, wallet: str) -> str:
        nonce = NONCE_PREFIX + secrets.token_urlsafe(32)
        await self._store.set(_key(wallet), nonce, self._ttl)
        logger.debug("Issued wallet challenge for %s", redact_wallet(wallet))
        return nonce

    async def consume(self, wallet: str, nonce: str) -> bool:
        """True exactly once for the latest unexpired challenge of ``wallet``.

        A wrong value leaves the outstanding challenge in place.
        """
        if not wallet or not nonce:
            return False
        ok = await self._store.compare_and_delete(_key(wallet), nonce)
        if not ok:
            logger.info("Wallet challenge rejected for %s", redact_wallet(wallet))
        return ok

    async def sweep(self) -> int:
        removed = await self._store.sweep(_KEY_PREFIX)
        if removed:
            logger.debug("Swept %d expired wallet challenges", removed)
        return removed


_instance: NonceStore | None = None


def get_nonce_store() -> NonceStore:
    global _instance
    if _instance is None:
        _instance = NonceStore(get_kv_store())
    return _instance


def reset_nonce_store() -> None:
    global _instance
    _instance = None
