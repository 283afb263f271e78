"""Role and ownership checks for privileged operations.

Guards return a ``Decision`` instead of raising, so callers choose how to
surface a denial. ``evaluate`` is the one place that handles a missing
caller (401) and the administrator bypass; individual rules only see an
authenticated, non-admin context.

The caller's role is recomputed for every request from the profile, broker
and seller rows (``build_auth_context``), so a suspended broker loses broker
privileges on the next request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.log_redaction import redact_wallet
from luxbroker.models.broker import Broker
from luxbroker.models.profile import UserProfile
from luxbroker.models.seller import Seller

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    BROKER = "broker"
    SELLER = "seller"
    USER = "user"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    wallet_address: str | None
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_broker(self) -> bool:
        return self.role is Role.BROKER

    @property
    def is_seller(self) -> bool:
        return self.role is Role.SELLER


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Deny:
    reason: str
    status_code: int


Decision = Allow | Deny
Rule = Callable[[AuthContext], Decision]

ALLOW = Allow()


def resolve_role(
    profile_role: str | None,
    broker_status: str | None,
    has_seller: bool,
) -> Role:
    """Profile admin, then active broker, then seller record, then plain user."""
    if profile_role == Role.ADMIN.value:
        return Role.ADMIN
    if broker_status == "active":
        return Role.BROKER
    if has_seller:
        return Role.SELLER
    return Role.USER


def evaluate(context: AuthContext | None, rule: Rule) -> Decision:
    if context is None:
        return Deny("Authentication required", 401)
    if context.is_admin:
        return ALLOW
    decision = rule(context)
    if isinstance(decision, Deny):
        logger.warning(
            "Access denied: user=%s wallet=%s role=%s reason=%s",
            context.user_id, redact_wallet(context.wallet_address),
            context.role.value, decision.reason,
        )
    return decision


def require_role(context: AuthContext | None, allowed_roles: Iterable[Role]) -> Decision:
    allowed = set(allowed_roles)

    def _rule(ctx: AuthContext) -> Decision:
        if ctx.role in allowed:
            return ALLOW
        return Deny("Insufficient permissions", 403)

    return evaluate(context, _rule)


def require_ownership(context: AuthContext | None, owner_id: str) -> Decision:
    """Allow when the caller's user id or wallet equals ``owner_id``."""

    def _rule(ctx: AuthContext) -> Decision:
        if owner_id and owner_id in (ctx.user_id, ctx.wallet_address):
            return ALLOW
        return Deny("Access denied", 403)

    return evaluate(context, _rule)


async def build_auth_context(
    db: AsyncSession,
    user_id: str | None = None,
    wallet_address: str | None = None,
) -> AuthContext | None:
    """Recompute the caller's context from persisted rows. ``None`` if anonymous."""
    if not user_id and not wallet_address:
        return None

    profile = None
    if user_id:
        profile = await db.get(UserProfile, user_id)
    if profile is None and wallet_address:
        result = await db.execute(
            select(UserProfile).where(UserProfile.wallet_address == wallet_address)
        )
        profile = result.scalar_one_or_none()

    wallet = wallet_address or (profile.wallet_address if profile else None)

    broker_status = None
    has_seller = False
    if wallet:
        result = await db.execute(select(Broker.status).where(Broker.wallet_address == wallet))
        broker_status = result.scalar_one_or_none()
        result = await db.execute(select(Seller.id).where(Seller.wallet_address == wallet))
        has_seller = result.scalar_one_or_none() is not None

    role = resolve_role(profile.role if profile else None, broker_status, has_seller)
    return AuthContext(
        user_id=profile.id if profile else (user_id or wallet),
        wallet_address=wallet,
        role=role,
    )
