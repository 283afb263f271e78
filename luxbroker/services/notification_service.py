"""Broker notifications: persisted with the ledger change, delivered after commit."""

import json
import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.config import settings
from luxbroker.core.async_tasks import fire_and_forget
from luxbroker.models.notification import BrokerNotification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("commission_earned", "tier_upgrade", "status_change")


def record_notification(
    db: AsyncSession,
    broker_id: str,
    type: str,
    title: str,
    message: str,
    data: dict | None = None,
) -> BrokerNotification:
    """Add a notification row to the caller's transaction. Does not commit."""
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    notification = BrokerNotification(
        broker_id=broker_id,
        type=type,
        title=title,
        message=message,
        data=json.dumps(data or {}, default=str),
    )
    db.add(notification)
    return notification


def notification_envelope(notification: BrokerNotification) -> dict:
    try:
        data = json.loads(notification.data or "{}")
    except (json.JSONDecodeError, TypeError):
        data = {}
    return {
        "id": notification.id,
        "broker_id": notification.broker_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": data,
        "sent_at": notification.sent_at.isoformat() if notification.sent_at else None,
    }


async def deliver(envelope: dict) -> bool:
    """POST one notification to the configured webhook. Returns True on success."""
    url = settings.notification_webhook_url
    if not url:
        return False
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                url,
                json=envelope,
                timeout=settings.notification_webhook_timeout_seconds,
            )
        if resp.status_code not in (200, 201, 202, 204):
            logger.warning(
                "Notification webhook returned %s for %s", resp.status_code, envelope.get("type"),
            )
            return False
        return True
    except Exception as exc:
        logger.warning("Notification delivery failed for %s: %s", envelope.get("type"), exc)
        return False


def dispatch_after_commit(notifications: list[BrokerNotification]) -> None:
    """Schedule delivery of already-committed notifications."""
    for notification in notifications:
        fire_and_forget(
            deliver(notification_envelope(notification)),
            task_name=f"deliver_{notification.type}",
        )


async def list_notifications(
    db: AsyncSession,
    broker_id: str,
    unread_only: bool = False,
    limit: int = 50,
) -> list[BrokerNotification]:
    query = select(BrokerNotification).where(BrokerNotification.broker_id == broker_id)
    if unread_only:
        query = query.where(BrokerNotification.read.is_(False))
    query = query.order_by(BrokerNotification.sent_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
