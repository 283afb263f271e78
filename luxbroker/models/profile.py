"""User profiles. The ``role`` column carries the explicit administrator designation."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String

from luxbroker.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class UserProfile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = Column(String(35), unique=True, nullable=True)
    role = Column(String(20), nullable=False, default="user")  # admin | broker | seller | user
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_profile_wallet", "wallet_address"),
    )
