"""Broker notifications (commission earned, tier upgrade, status change)."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class BrokerNotification(Base):
    __tablename__ = "broker_notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    broker_id = Column(String(36), ForeignKey("brokers.id"), nullable=False)
    type = Column(String(50), nullable=False)  # commission_earned | tier_upgrade | status_change
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(Text, default="{}")  # JSON payload
    read = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_notification_broker", "broker_id"),
        Index("idx_notification_type", "type"),
    )
