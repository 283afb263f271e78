"""Commission records: the monetary credit owed to a broker for one settled sale."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


COMMISSION_STATUSES = ("pending", "paid", "failed", "cancelled")


class Commission(Base):
    """Amount and rate are frozen at creation; only ``status`` (and its stamps) change."""

    __tablename__ = "commissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    broker_id = Column(String(36), ForeignKey("brokers.id"), nullable=False)
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=False)

    # Amounts
    sale_amount_usd = Column(Numeric(15, 2), nullable=False)
    commission_usd = Column(Numeric(15, 2), nullable=False)
    commission_rate = Column(Numeric(5, 4), nullable=False)
    tier_id = Column(Integer, nullable=False)  # tier in force at creation

    # Settlement
    status = Column(String(20), nullable=False, default="pending")  # pending | paid | failed | cancelled
    transaction_hash = Column(String(128), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("sale_amount_usd > 0", name="ck_commission_sale_positive"),
        CheckConstraint("commission_usd >= 0", name="ck_commission_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'cancelled')", name="ck_commission_status",
        ),
        Index("idx_commission_broker", "broker_id"),
        Index("idx_commission_seller", "seller_id"),
        Index("idx_commission_status", "status"),
        Index("idx_commission_created", "created_at"),
    )
