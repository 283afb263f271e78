"""Referral link clicks and their conversion into seller registrations."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class ReferralClick(Base):
    """One inbound click on a broker's referral link. Converted at most once."""

    __tablename__ = "referral_clicks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    broker_id = Column(String(36), ForeignKey("brokers.id"), nullable=False)
    referral_code = Column(String(20), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, default="")
    referrer = Column(Text, default="")
    converted = Column(Boolean, nullable=False, default=False)
    conversion_date = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_referral_click_code", "referral_code"),
        Index("idx_referral_click_broker", "broker_id"),
        Index("idx_referral_click_converted", "referral_code", "converted"),
    )
