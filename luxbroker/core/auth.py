"""Caller authentication for the REST API.

Two ways in:

- ``Authorization: Bearer <jwt>`` carrying a ``user`` token (profile id) or a
  ``wallet`` session token issued after a successful nonce check.
- ``X-Wallet-Address`` + ``X-Wallet-Nonce``: the nonce is consumed, so the
  pair is good for exactly one request.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.config import settings
from luxbroker.core.authorization import AuthContext, Decision, Deny, build_auth_context
from luxbroker.core.exceptions import (
    InsufficientPermissions,
    NonceInvalidOrExpired,
    Unauthenticated,
)
from luxbroker.core.nonce_store import get_nonce_store
from luxbroker.database import get_db

TOKEN_TYPES = {"user", "wallet"}


def create_user_token(user_id: str) -> str:
    """Create a JWT for a profile (type=user)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "user",
        "jti": str(uuid.uuid4()),
        "exp": now + timedelta(hours=settings.jwt_expire_hours),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_wallet_token(wallet_address: str) -> str:
    """Short-lived session JWT for a wallet that passed a nonce challenge."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": wallet_address,
        "type": "wallet",
        "jti": str(uuid.uuid4()),
        "exp": now + timedelta(minutes=settings.wallet_session_expire_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")
    if not payload.get("sub"):
        raise Unauthenticated("Token missing subject")
    if payload.get("type") not in TOKEN_TYPES:
        raise Unauthenticated("Unsupported token type")
    return payload


async def get_auth_context(
    authorization: str | None = Header(default=None),
    x_wallet_address: str | None = Header(default=None),
    x_wallet_nonce: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> AuthContext | None:
    """FastAPI dependency returning the caller's context, or ``None`` if anonymous."""
    if authorization:
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthenticated("Authorization header must be: Bearer <token>")
        payload = decode_token(parts[1])
        if payload["type"] == "wallet":
            return await build_auth_context(db, wallet_address=payload["sub"])
        return await build_auth_context(db, user_id=payload["sub"])

    if x_wallet_address:
        if not x_wallet_nonce:
            raise Unauthenticated("X-Wallet-Nonce header required")
        if not await get_nonce_store().consume(x_wallet_address, x_wallet_nonce):
            raise NonceInvalidOrExpired()
        return await build_auth_context(db, wallet_address=x_wallet_address)

    return None


def raise_for_decision(decision: Decision) -> None:
    """Translate a ``Deny`` into the matching HTTP error."""
    if isinstance(decision, Deny):
        if decision.status_code == 401:
            raise Unauthenticated(decision.reason)
        raise InsufficientPermissions(decision.reason)


def require_wallet(context: AuthContext | None) -> AuthContext:
    """Any authenticated caller with a wallet on record."""
    if context is None:
        raise Unauthenticated()
    if not context.wallet_address:
        raise InsufficientPermissions("A wallet address is required")
    return context
