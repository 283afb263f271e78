"""Sellers: marketplace participants, optionally attributed to a referring broker."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Seller(Base):
    """Seller record. ``referred_by_broker_id`` is written once, at creation."""

    __tablename__ = "sellers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = Column(String(35), unique=True, nullable=False)
    referred_by_broker_id = Column(String(36), ForeignKey("brokers.id"), nullable=True)
    referral_code = Column(String(20), nullable=True)  # code that won attribution
    referral_locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_seller_wallet", "wallet_address"),
        Index("idx_seller_referred_by", "referred_by_broker_id"),
    )
