"""Referral link tracking and one-time seller-to-broker attribution."""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.config import settings
from luxbroker.core.exceptions import InvalidAddress, ReferralCodeNotFound
from luxbroker.core.log_redaction import redact_wallet
from luxbroker.models.broker import Broker
from luxbroker.models.referral_click import ReferralClick
from luxbroker.models.seller import Seller

logger = logging.getLogger(__name__)

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_LENGTH = 8
REFERRAL_COOKIE = "lux_referral"


def is_valid_wallet_address(address: str | None) -> bool:
    """Syntactic ledger address check: prefix, length bounds, alphanumeric."""
    if not address or not isinstance(address, str):
        return False
    return (
        address.startswith(settings.ledger_address_prefix)
        and settings.ledger_address_min_length <= len(address) <= settings.ledger_address_max_length
        and address.isascii()
        and address.isalnum()
    )


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def is_valid_referral_code(code: str | None) -> bool:
    return bool(code) and 3 <= len(code) <= 20 and code.isascii() and code.isalnum()


def normalize_referral_code(code: str | None) -> str | None:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


async def get_seller_by_wallet(db: AsyncSession, wallet_address: str) -> Seller | None:
    result = await db.execute(select(Seller).where(Seller.wallet_address == wallet_address))
    return result.scalar_one_or_none()


async def _find_referring_broker(
    db: AsyncSession, referral_code: str, seller_wallet: str,
) -> Broker | None:
    """Active broker owning ``referral_code``, or None (logged, never raised)."""
    if not is_valid_referral_code(referral_code):
        logger.info("Ignoring malformed referral code for %s", redact_wallet(seller_wallet))
        return None
    result = await db.execute(select(Broker).where(Broker.referral_code == referral_code))
    broker = result.scalar_one_or_none()
    if broker is None or broker.status != "active":
        exc = ReferralCodeNotFound(referral_code)
        logger.info("Attribution skipped for %s: %s", redact_wallet(seller_wallet), exc.detail)
        return None
    if broker.wallet_address == seller_wallet:
        logger.info("Attribution skipped: self-referral by %s", redact_wallet(seller_wallet))
        return None
    return broker


async def attribute(
    db: AsyncSession,
    seller_wallet: str,
    referral_code: str | None = None,
    *,
    client_ip: str | None = None,
) -> Seller:
    """Register ``seller_wallet``, crediting the referring broker at most once.

    An existing seller is returned unchanged whatever code is presented.
    Unknown, inactive or self-referring codes register the seller without a
    broker. The broker's referral count moves by an atomic increment in the
    same transaction as the seller insert.
    """
    if not is_valid_wallet_address(seller_wallet):
        raise InvalidAddress()

    existing = await get_seller_by_wallet(db, seller_wallet)
    if existing is not None:
        return existing

    code = normalize_referral_code(referral_code)
    broker = await _find_referring_broker(db, code, seller_wallet) if code else None

    now = datetime.now(timezone.utc)
    seller = Seller(wallet_address=seller_wallet, created_at=now)
    if broker is not None:
        seller.referred_by_broker_id = broker.id
        seller.referral_code = code
        seller.referral_locked_until = now + timedelta(days=settings.attribution_lock_days)
    db.add(seller)

    try:
        await db.flush()
        if broker is not None:
            # Tier is re-evaluated by the next recorded commission, not here
            await db.execute(
                update(Broker)
                .where(Broker.id == broker.id)
                .values(referred_sellers_count=Broker.referred_sellers_count + 1)
            )
        await db.commit()
    except IntegrityError:
        # Concurrent registration of the same wallet won the insert
        await db.rollback()
        existing = await get_seller_by_wallet(db, seller_wallet)
        if existing is None:
            raise
        return existing

    if broker is not None:
        logger.info(
            "Seller %s attributed to broker %s", redact_wallet(seller_wallet), broker.id,
        )
        await _mark_click_converted(db, code, client_ip)
    await db.refresh(seller)
    return seller


async def _mark_click_converted(db: AsyncSession, referral_code: str, client_ip: str | None) -> None:
    """Best-effort: flag the latest unconverted click for this code as converted."""
    try:
        query = select(ReferralClick).where(
            ReferralClick.referral_code == referral_code,
            ReferralClick.converted.is_(False),
        )
        if client_ip:
            same_ip = await db.execute(
                query.where(ReferralClick.ip_address == client_ip)
                .order_by(ReferralClick.clicked_at.desc())
                .limit(1)
            )
            click = same_ip.scalar_one_or_none()
        else:
            click = None
        if click is None:
            result = await db.execute(query.order_by(ReferralClick.clicked_at.desc()).limit(1))
            click = result.scalar_one_or_none()
        if click is None:
            return
        click.converted = True
        click.conversion_date = datetime.now(timezone.utc)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Failed to mark referral click converted for code %s", referral_code)
        await db.rollback()


async def track_click(
    db: AsyncSession,
    referral_code: str,
    *,
    ip_address: str | None = None,
    user_agent: str = "",
    referrer: str = "",
) -> ReferralClick | None:
    """Record a click on a referral link. Unknown codes are ignored."""
    code = normalize_referral_code(referral_code)
    if not code or not is_valid_referral_code(code):
        return None
    result = await db.execute(select(Broker).where(Broker.referral_code == code))
    broker = result.scalar_one_or_none()
    if broker is None:
        logger.info("Click on unknown referral code %s", code)
        return None

    click = ReferralClick(
        broker_id=broker.id,
        referral_code=code,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        referrer=(referrer or "")[:500],
    )
    db.add(click)
    await db.commit()
    await db.refresh(click)
    return click
