from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.auth import get_auth_context, raise_for_decision, require_wallet
from luxbroker.core.authorization import AuthContext, require_ownership
from luxbroker.core.exceptions import SellerNotFoundError
from luxbroker.core.rate_limit_middleware import client_ip
from luxbroker.database import get_db
from luxbroker.models.seller import Seller
from luxbroker.services import referral_service
from luxbroker.services.referral_service import REFERRAL_COOKIE

router = APIRouter(prefix="/sellers", tags=["sellers"])


class SellerRegisterRequest(BaseModel):
    referral_code: Optional[str] = Field(default=None, max_length=20)


def _seller_to_dict(seller: Seller) -> dict:
    return {
        "id": seller.id,
        "wallet_address": seller.wallet_address,
        "referred_by_broker_id": seller.referred_by_broker_id,
        "referral_code": seller.referral_code,
        "referral_locked_until": (
            seller.referral_locked_until.isoformat() if seller.referral_locked_until else None
        ),
        "created_at": seller.created_at.isoformat() if seller.created_at else None,
    }


@router.post("/register")
async def register_seller(
    req: SellerRegisterRequest,
    request: Request,
    lux_referral: Optional[str] = Cookie(default=None, alias=REFERRAL_COOKIE),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """Register the authenticated wallet as a seller, attributing a referral if given.

    The body's ``referral_code`` wins over the referral cookie. Registering
    again returns the existing record unchanged.
    """
    ctx = require_wallet(ctx)
    seller = await referral_service.attribute(
        db,
        ctx.wallet_address,
        req.referral_code or lux_referral,
        client_ip=client_ip(request),
    )
    return _seller_to_dict(seller)


@router.get("/{wallet_address}")
async def get_seller(
    wallet_address: str,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    """The seller record for a wallet; visible to its owner and admins."""
    raise_for_decision(require_ownership(ctx, wallet_address))
    seller = await referral_service.get_seller_by_wallet(db, wallet_address)
    if seller is None:
        raise SellerNotFoundError(wallet_address)
    return _seller_to_dict(seller)
