import base64
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.config import settings
from luxbroker.core.rate_limit_middleware import client_ip
from luxbroker.database import get_db
from luxbroker.services import referral_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])

# 1x1 transparent GIF
_PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")


@router.get("/track")
async def track_referral(
    request: Request,
    ref: str = Query(..., min_length=1, max_length=20),
    db: AsyncSession = Depends(get_db),
):
    """Tracking pixel for referral links. Always answers with the pixel."""
    click = None
    try:
        click = await referral_service.track_click(
            db,
            ref,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent", ""),
            referrer=request.headers.get("referer", ""),
        )
    except SQLAlchemyError:
        logger.exception("Referral click tracking failed")
        await db.rollback()

    response = Response(
        content=_PIXEL,
        media_type="image/gif",
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
    if click is not None:
        response.set_cookie(
            referral_service.REFERRAL_COOKIE,
            click.referral_code,
            max_age=settings.attribution_lock_days * 24 * 3600,
            httponly=True,
            samesite="lax",
        )
    return response
