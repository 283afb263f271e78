import json
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.auth import get_auth_context, raise_for_decision, require_wallet
from luxbroker.core.authorization import AuthContext, Role, require_role
from luxbroker.core.exceptions import BrokerNotFoundError
from luxbroker.core.rate_limit_middleware import client_ip
from luxbroker.database import get_db
from luxbroker.models.broker import Broker
from luxbroker.services import broker_service, commission_service, notification_service, tier_service
from luxbroker.services.referral_service import REFERRAL_COOKIE

router = APIRouter(prefix="/brokers", tags=["brokers"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class BrokerRegisterRequest(BaseModel):
    referral_code: Optional[str] = Field(default=None, max_length=20)


class BrokerStatusRequest(BaseModel):
    status: str = Field(..., pattern="^(pending|active|suspended)$")


def _broker_summary(broker: Broker) -> dict:
    return {
        "id": broker.id,
        "wallet_address": broker.wallet_address,
        "referral_code": broker.referral_code,
        "tier_id": broker.tier_id,
        "status": broker.status,
    }


async def _current_broker(db: AsyncSession, ctx: AuthContext | None) -> Broker:
    raise_for_decision(require_role(ctx, {Role.BROKER}))
    broker = await broker_service.get_broker_by_wallet(db, ctx.wallet_address or "")
    if broker is None:
        raise BrokerNotFoundError(ctx.wallet_address or ctx.user_id)
    return broker


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/register")
async def register_broker(
    req: BrokerRegisterRequest,
    request: Request,
    lux_referral: Optional[str] = Cookie(default=None, alias=REFERRAL_COOKIE),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Register the authenticated wallet as a broker (idempotent)."""
    ctx = require_wallet(ctx)
    broker, created = await broker_service.register_broker(
        db,
        ctx.wallet_address,
        req.referral_code or lux_referral,
        client_ip=client_ip(request),
    )
    return {"broker": _broker_summary(broker), "created": created}


@router.get("/me")
async def my_profile(
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    broker = await _current_broker(db, ctx)
    return await broker_service.get_broker_profile(db, broker)


@router.get("/me/commissions")
async def my_commissions(
    status: Optional[str] = Query(default=None, pattern="^(pending|paid|failed|cancelled)$"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    broker = await _current_broker(db, ctx)
    commissions = await commission_service.list_commissions(db, broker.id, status=status, limit=limit)
    return {
        "commissions": [
            {
                "id": c.id,
                "seller_id": c.seller_id,
                "sale_amount_usd": str(c.sale_amount_usd),
                "commission_usd": str(c.commission_usd),
                "commission_rate": str(c.commission_rate),
                "tier_id": c.tier_id,
                "status": c.status,
                "transaction_hash": c.transaction_hash,
                "created_at": c.created_at.isoformat() if c.created_at else None,
                "paid_at": c.paid_at.isoformat() if c.paid_at else None,
            }
            for c in commissions
        ],
        "summary": await commission_service.summarize_commissions(db, broker.id),
    }


@router.get("/me/notifications")
async def my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    broker = await _current_broker(db, ctx)
    notifications = await notification_service.list_notifications(
        db, broker.id, unread_only=unread_only, limit=limit,
    )
    return {
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "data": json.loads(n.data or "{}"),
                "read": n.read,
                "sent_at": n.sent_at.isoformat() if n.sent_at else None,
            }
            for n in notifications
        ],
    }


@router.get("/leaderboard")
async def leaderboard(
    period: str = Query("all", pattern="^(all|month|week)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Public endpoint: top brokers by earnings, wallets redacted."""
    items = await broker_service.get_leaderboard(db, period=period, limit=limit, offset=offset)
    return {"period": period, "limit": limit, "offset": offset, "items": items}


@router.get("/tiers")
async def tiers():
    """Public endpoint: the tier ladder."""
    return {"tiers": [rung.to_dict() for rung in tier_service.get_tier_table()]}


@router.put("/{broker_id}/status")
async def change_status(
    broker_id: str,
    req: BrokerStatusRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Admin only: activate or suspend a broker."""
    raise_for_decision(require_role(ctx, ()))
    try:
        broker = await broker_service.set_broker_status(db, broker_id, req.status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _broker_summary(broker)
