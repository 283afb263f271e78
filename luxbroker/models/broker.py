"""Broker accounts: affiliates who refer sellers and earn tiered commission."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, Numeric, String

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


BROKER_STATUSES = ("pending", "active", "suspended")


class Broker(Base):
    """Affiliate broker. Statistics only move by increment, never by client-supplied totals."""

    __tablename__ = "brokers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = Column(String(35), unique=True, nullable=False)
    referral_code = Column(String(20), unique=True, nullable=False)

    # Tier rung id (see services.tier_service); only ever moves upward
    tier_id = Column(Integer, nullable=False, default=1)

    # Running statistics
    total_earnings = Column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    total_sales_volume = Column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    referred_sellers_count = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="active")  # pending | active | suspended
    kyc_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("total_earnings >= 0", name="ck_broker_earnings_non_negative"),
        CheckConstraint("total_sales_volume >= 0", name="ck_broker_volume_non_negative"),
        CheckConstraint("referred_sellers_count >= 0", name="ck_broker_referrals_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'active', 'suspended')", name="ck_broker_status",
        ),
        Index("idx_broker_wallet", "wallet_address"),
        Index("idx_broker_referral_code", "referral_code"),
        Index("idx_broker_earnings", "total_earnings"),
    )
