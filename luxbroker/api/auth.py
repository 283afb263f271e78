from fastapi import APIRouter
from pydantic import BaseModel, Field

from luxbroker.config import settings
from luxbroker.core.auth import create_wallet_token
from luxbroker.core.exceptions import InvalidAddress, NonceInvalidOrExpired
from luxbroker.core.nonce_store import get_nonce_store
from luxbroker.services.referral_service import is_valid_wallet_address

router = APIRouter(prefix="/auth", tags=["auth"])


class NonceRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=64)


class NonceResponse(BaseModel):
    nonce: str
    expires_in: int


class VerifyRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=64)
    nonce: str = Field(..., min_length=1, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/nonce", response_model=NonceResponse)
async def issue_nonce(req: NonceRequest):
    """Issue a one-time challenge for a wallet. Replaces any outstanding one."""
    if not is_valid_wallet_address(req.wallet_address):
        raise InvalidAddress()
    store = get_nonce_store()
    nonce = await store.issue(req.wallet_address)
    return NonceResponse(nonce=nonce, expires_in=int(store.ttl_seconds))


@router.post("/wallet/verify", response_model=TokenResponse)
async def verify_wallet(req: VerifyRequest):
    """Consume the challenge and exchange it for a short-lived wallet session token."""
    if not await get_nonce_store().consume(req.wallet_address, req.nonce):
        raise NonceInvalidOrExpired()
    return TokenResponse(
        access_token=create_wallet_token(req.wallet_address),
        expires_in=settings.wallet_session_expire_minutes * 60,
    )
