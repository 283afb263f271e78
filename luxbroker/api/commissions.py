from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.auth import get_auth_context, raise_for_decision
from luxbroker.core.authorization import AuthContext, require_ownership, require_role
from luxbroker.core.exceptions import Unauthenticated
from luxbroker.database import get_db
from luxbroker.models.commission import Commission
from luxbroker.services import broker_service, commission_service

router = APIRouter(prefix="/commissions", tags=["commissions"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CommissionCreateRequest(BaseModel):
    broker_id: str = Field(..., min_length=1, max_length=36)
    seller_id: str = Field(..., min_length=1, max_length=36)
    sale_amount_usd: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)


class CommissionStatusRequest(BaseModel):
    status: str = Field(..., pattern="^(paid|failed|cancelled)$")
    transaction_hash: Optional[str] = Field(default=None, max_length=128)


def _commission_to_dict(c: Commission) -> dict:
    return {
        "id": c.id,
        "broker_id": c.broker_id,
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


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
async def create_commission(
    req: CommissionCreateRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Admin only: record a commission for a settled sale."""
    raise_for_decision(require_role(ctx, ()))
    try:
        commission = await commission_service.record_commission(
            db, req.broker_id, req.seller_id, req.sale_amount_usd,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _commission_to_dict(commission)


@router.get("/{commission_id}")
async def get_commission(
    commission_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Visible to the earning broker and admins."""
    if ctx is None:
        raise Unauthenticated()
    commission = await commission_service.get_commission(db, commission_id)
    broker = await broker_service.get_broker(db, commission.broker_id)
    raise_for_decision(require_ownership(ctx, broker.wallet_address))
    return _commission_to_dict(commission)


@router.patch("/{commission_id}/status")
async def change_status(
    commission_id: str,
    req: CommissionStatusRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Admin only: settle, fail or cancel a pending commission."""
    raise_for_decision(require_role(ctx, ()))
    try:
        commission = await commission_service.update_status(
            db, commission_id, req.status, req.transaction_hash,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _commission_to_dict(commission)
