"""Broker accounts: registration, profile, leaderboard and admin status changes."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.exceptions import BrokerNotFoundError, InvalidAddress
from luxbroker.core.log_redaction import redact_wallet
from luxbroker.models.broker import BROKER_STATUSES, Broker
from luxbroker.models.commission import Commission
from luxbroker.services import commission_service, notification_service, referral_service, tier_service

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5
LEADERBOARD_PERIODS = {"all": None, "month": timedelta(days=30), "week": timedelta(days=7)}


async def get_broker(db: AsyncSession, broker_id: str) -> Broker:
    broker = await db.get(Broker, broker_id)
    if broker is None:
        raise BrokerNotFoundError(broker_id)
    return broker


async def get_broker_by_wallet(db: AsyncSession, wallet_address: str) -> Broker | None:
    result = await db.execute(select(Broker).where(Broker.wallet_address == wallet_address))
    return result.scalar_one_or_none()


async def register_broker(
    db: AsyncSession,
    wallet_address: str,
    referral_code: str | None = None,
    *,
    client_ip: str | None = None,
) -> tuple[Broker, bool]:
    """Create a broker for ``wallet_address``; returns ``(broker, created)``.

    Idempotent per wallet. The wallet is also registered as a seller, with
    attribution to ``referral_code`` when it names another active broker.
    """
    if not referral_service.is_valid_wallet_address(wallet_address):
        raise InvalidAddress()

    broker = await get_broker_by_wallet(db, wallet_address)
    created = False
    if broker is None:
        for _ in range(_CODE_ATTEMPTS):
            candidate = Broker(
                wallet_address=wallet_address,
                referral_code=referral_service.generate_referral_code(),
                tier_id=tier_service.get_tier_table()[0].id,
            )
            db.add(candidate)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                # Same wallet registered concurrently, or a referral code collision
                broker = await get_broker_by_wallet(db, wallet_address)
                if broker is not None:
                    break
                continue
            await db.refresh(candidate)
            broker, created = candidate, True
            logger.info(
                "Broker registered: wallet=%s code=%s",
                redact_wallet(wallet_address), candidate.referral_code,
            )
            break
        else:
            raise RuntimeError("Could not allocate a unique referral code")

    await referral_service.attribute(db, wallet_address, referral_code, client_ip=client_ip)
    return broker, created


async def get_broker_profile(db: AsyncSession, broker: Broker) -> dict:
    table = tier_service.get_tier_table()
    tier = tier_service.get_tier(table, broker.tier_id)
    volume = Decimal(str(broker.total_sales_volume or 0))
    recent = await commission_service.list_commissions(db, broker.id, limit=10)
    return {
        "id": broker.id,
        "wallet_address": broker.wallet_address,
        "referral_code": broker.referral_code,
        "status": broker.status,
        "kyc_verified": broker.kyc_verified,
        "total_earnings": str(broker.total_earnings),
        "total_sales_volume": str(broker.total_sales_volume),
        "referred_sellers_count": broker.referred_sellers_count,
        "tier": tier.to_dict(),
        "progress": tier_service.progress_to_next_tier(
            table, broker.tier_id, broker.referred_sellers_count, volume,
        ),
        "commissions": await commission_service.summarize_commissions(db, broker.id),
        "recent_commissions": [
            {
                "id": c.id,
                "commission_usd": str(c.commission_usd),
                "sale_amount_usd": str(c.sale_amount_usd),
                "status": c.status,
                "created_at": c.created_at.isoformat() if c.created_at else None,
            }
            for c in recent
        ],
        "created_at": broker.created_at.isoformat() if broker.created_at else None,
    }


async def get_leaderboard(
    db: AsyncSession,
    period: str = "all",
    limit: int = 20,
    offset: int = 0,
) -> list[dict]:
    """Active brokers ranked by earnings. Wallets are shown redacted."""
    if period not in LEADERBOARD_PERIODS:
        raise ValueError(f"Unknown leaderboard period: {period}")
    window = LEADERBOARD_PERIODS[period]
    table = tier_service.get_tier_table()

    if window is None:
        result = await db.execute(
            select(Broker, Broker.total_earnings)
            .where(Broker.status == "active")
            .order_by(Broker.total_earnings.desc(), Broker.created_at)
            .limit(limit)
            .offset(offset)
        )
    else:
        since = datetime.now(timezone.utc) - window
        earned = func.sum(Commission.commission_usd).label("earned")
        result = await db.execute(
            select(Broker, earned)
            .join(Commission, Commission.broker_id == Broker.id)
            .where(
                Broker.status == "active",
                Commission.created_at >= since,
                Commission.status != "cancelled",
            )
            .group_by(Broker.id)
            .order_by(earned.desc(), Broker.created_at)
            .limit(limit)
            .offset(offset)
        )

    rows = []
    for rank, (broker, earnings) in enumerate(result.all(), start=offset + 1):
        tier = tier_service.get_tier(table, broker.tier_id)
        rows.append({
            "rank": rank,
            "wallet": redact_wallet(broker.wallet_address),
            "referral_code": broker.referral_code,
            "tier": tier.name,
            "tier_icon": tier.icon,
            "earnings": str(Decimal(str(earnings or 0)).quantize(Decimal("0.01"))),
            "referred_sellers_count": broker.referred_sellers_count,
        })
    return rows


async def set_broker_status(db: AsyncSession, broker_id: str, status: str) -> Broker:
    """Admin-only: move a broker between pending, active and suspended."""
    if status not in BROKER_STATUSES:
        raise ValueError(f"Unknown broker status: {status}")
    broker = await get_broker(db, broker_id)
    if broker.status == status:
        return broker
    previous = broker.status
    broker.status = status
    notification = notification_service.record_notification(
        db,
        broker_id=broker.id,
        type="status_change",
        title="Account Status Changed",
        message=f"Your broker account is now {status}.",
        data={"old_status": previous, "new_status": status},
    )
    await db.commit()
    await db.refresh(broker)
    logger.info("Broker %s status %s -> %s", broker.id, previous, status)
    notification_service.dispatch_after_commit([notification])
    return broker
