"""Tests for role resolution and the authorization guard."""

import pytest

from luxbroker.core.auth import create_user_token, create_wallet_token, decode_token, raise_for_decision
from luxbroker.core.authorization import (
    Allow,
    AuthContext,
    Deny,
    Role,
    build_auth_context,
    evaluate,
    require_ownership,
    require_role,
    resolve_role,
)
from luxbroker.core.exceptions import InsufficientPermissions, Unauthenticated


def _ctx(role: Role, user_id="u1", wallet="rWalletOwner000000000000001"):
    return AuthContext(user_id=user_id, wallet_address=wallet, role=role)


# ═══════════════════════════════════════════════════════════════════════════
# resolve_role
# ═══════════════════════════════════════════════════════════════════════════


class TestResolveRole:

    # 1
    def test_admin_beats_everything(self):
        assert resolve_role("admin", "active", True) is Role.ADMIN

    # 2
    def test_active_broker_beats_seller(self):
        assert resolve_role("user", "active", True) is Role.BROKER

    # 3
    def test_suspended_broker_with_seller_is_seller(self):
        assert resolve_role(None, "suspended", True) is Role.SELLER

    # 4
    def test_pending_broker_without_seller_is_user(self):
        assert resolve_role(None, "pending", False) is Role.USER

    # 5
    def test_nothing_is_user(self):
        assert resolve_role(None, None, False) is Role.USER


# ═══════════════════════════════════════════════════════════════════════════
# Guards
# ═══════════════════════════════════════════════════════════════════════════


class TestGuards:

    # 6
    def test_missing_context_is_401(self):
        decision = require_role(None, {Role.BROKER})
        assert decision == Deny("Authentication required", 401)

    # 7
    def test_role_mismatch_is_403(self):
        decision = require_role(_ctx(Role.SELLER), {Role.BROKER})
        assert decision == Deny("Insufficient permissions", 403)

    # 8
    def test_role_match_allows(self):
        assert isinstance(require_role(_ctx(Role.BROKER), {Role.BROKER}), Allow)

    # 9
    def test_admin_bypasses_empty_role_set(self):
        assert isinstance(require_role(_ctx(Role.ADMIN), ()), Allow)

    # 10
    def test_admin_bypasses_ownership(self):
        assert isinstance(require_ownership(_ctx(Role.ADMIN), "someone-else"), Allow)

    # 11
    def test_ownership_by_user_id(self):
        assert isinstance(require_ownership(_ctx(Role.USER, user_id="p1"), "p1"), Allow)

    # 12
    def test_ownership_by_wallet(self):
        ctx = _ctx(Role.SELLER, wallet="rMine00000000000000000000001")
        assert isinstance(require_ownership(ctx, "rMine00000000000000000000001"), Allow)

    # 13
    def test_ownership_mismatch_is_403(self):
        decision = require_ownership(_ctx(Role.BROKER), "rSomeoneElse000000000000001")
        assert decision == Deny("Access denied", 403)

    # 14
    def test_evaluate_passes_context_to_rule(self):
        seen = []

        def rule(ctx):
            seen.append(ctx)
            return Allow()

        ctx = _ctx(Role.USER)
        evaluate(ctx, rule)
        assert seen == [ctx]

    # 15
    def test_context_properties(self):
        assert _ctx(Role.ADMIN).is_admin
        assert _ctx(Role.BROKER).is_broker
        assert _ctx(Role.SELLER).is_seller
        assert not _ctx(Role.USER).is_admin


class TestRaiseForDecision:

    # 16
    def test_allow_is_silent(self):
        raise_for_decision(Allow())

    # 17
    def test_401_maps_to_unauthenticated(self):
        with pytest.raises(Unauthenticated):
            raise_for_decision(Deny("Authentication required", 401))

    # 18
    def test_403_maps_to_insufficient_permissions(self):
        with pytest.raises(InsufficientPermissions):
            raise_for_decision(Deny("Access denied", 403))


# ═══════════════════════════════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════════════════════════════


class TestTokens:

    # 19
    def test_user_token_roundtrip(self):
        payload = decode_token(create_user_token("p1"))
        assert payload["sub"] == "p1"
        assert payload["type"] == "user"

    # 20
    def test_wallet_token_type(self):
        payload = decode_token(create_wallet_token("rWallet0000000000000000000001"))
        assert payload["type"] == "wallet"

    # 21
    def test_garbage_token_rejected(self):
        with pytest.raises(Unauthenticated):
            decode_token("not-a-jwt")


# ═══════════════════════════════════════════════════════════════════════════
# build_auth_context (recomputed from rows on every request)
# ═══════════════════════════════════════════════════════════════════════════


class TestBuildAuthContext:

    # 22
    async def test_anonymous_is_none(self, db):
        assert await build_auth_context(db) is None

    # 23
    async def test_admin_profile(self, db, make_profile):
        profile, _ = await make_profile(role="admin")
        ctx = await build_auth_context(db, user_id=profile.id)
        assert ctx.role is Role.ADMIN
        assert ctx.user_id == profile.id

    # 24
    async def test_active_broker_wallet(self, db, make_broker):
        broker = await make_broker()
        ctx = await build_auth_context(db, wallet_address=broker.wallet_address)
        assert ctx.role is Role.BROKER

    # 25
    async def test_suspended_broker_drops_to_seller(self, db, make_broker, make_seller):
        broker = await make_broker(status="suspended")
        await make_seller(wallet_address=broker.wallet_address)
        ctx = await build_auth_context(db, wallet_address=broker.wallet_address)
        assert ctx.role is Role.SELLER

    # 26
    async def test_profile_wallet_is_used_for_lookup(self, db, make_profile, make_broker):
        broker = await make_broker()
        profile, _ = await make_profile(wallet_address=broker.wallet_address)
        ctx = await build_auth_context(db, user_id=profile.id)
        assert ctx.role is Role.BROKER
        assert ctx.wallet_address == broker.wallet_address

    # 27
    async def test_unknown_wallet_is_user(self, db, wallet):
        ctx = await build_auth_context(db, wallet_address=wallet)
        assert ctx.role is Role.USER
        assert ctx.user_id == wallet
