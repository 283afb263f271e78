"""Commission ledger: one immutable credit per settled sale.

Key design decisions:
- **Rate frozen at creation**: the commission stores the rate and tier id
  in force when it was recorded. Later tier changes never touch it.
- **Atomic statistics**: the broker's ``total_earnings`` and
  ``total_sales_volume`` move by ``UPDATE ... SET col = col + :delta`` in the
  same transaction as the commission insert, behind a row lock on
  PostgreSQL.
- **Decimal everywhere**, rounded half-up to cents.
- **Conditional status transitions**: ``UPDATE ... WHERE status = 'pending'``
  so two concurrent transitions cannot both win.
- Notifications are persisted with the ledger change and delivered after
  commit; a delivery failure never undoes a commission.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from luxbroker.core.exceptions import (
    BrokerNotFoundError,
    CommissionNotFoundError,
    InvalidStateTransition,
    SellerNotFoundError,
)
from luxbroker.database import _is_sqlite
from luxbroker.models.broker import Broker
from luxbroker.models.commission import COMMISSION_STATUSES, Commission
from luxbroker.models.seller import Seller
from luxbroker.services import notification_service, tier_service

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

# Only pending commissions move, and only once.
_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"paid", "failed", "cancelled"}),
    "paid": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _to_money(value: float | int | str | Decimal) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate_commission(sale_amount: Decimal, rate: Decimal) -> Decimal:
    return (sale_amount * rate).quantize(_CENT, rounding=ROUND_HALF_UP)


async def _lock_broker(db: AsyncSession, broker_id: str) -> Broker:
    stmt = select(Broker).where(Broker.id == broker_id)
    if not _is_sqlite:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    broker = result.scalar_one_or_none()
    if broker is None:
        raise BrokerNotFoundError(broker_id)
    return broker


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def record_commission(
    db: AsyncSession,
    broker_id: str,
    seller_id: str,
    sale_amount_usd: float | int | str | Decimal,
) -> Commission:
    """Credit ``broker_id`` for a sale by ``seller_id`` at the broker's current tier rate."""
    sale = _to_money(sale_amount_usd)
    if sale <= 0:
        raise ValueError("Sale amount must be positive")

    broker = await _lock_broker(db, broker_id)
    seller = await db.get(Seller, seller_id)
    if seller is None:
        raise SellerNotFoundError(seller_id)

    table = tier_service.get_tier_table()
    tier = tier_service.get_tier(table, broker.tier_id)
    amount = calculate_commission(sale, tier.commission_rate)

    commission = Commission(
        id=str(uuid.uuid4()),
        broker_id=broker.id,
        seller_id=seller.id,
        sale_amount_usd=sale,
        commission_usd=amount,
        commission_rate=tier.commission_rate,
        tier_id=tier.id,
        status="pending",
    )
    db.add(commission)

    await db.execute(
        update(Broker)
        .where(Broker.id == broker.id)
        .values(
            total_earnings=Broker.total_earnings + amount,
            total_sales_volume=Broker.total_sales_volume + sale,
        )
    )
    await db.refresh(broker)

    decision = await tier_service.evaluate(db, broker, table)
    earned = notification_service.record_notification(
        db,
        broker_id=broker.id,
        type="commission_earned",
        title="Commission Earned",
        message=f"You earned ${amount} from a ${sale} sale.",
        data={
            "commission_id": commission.id,
            "commission_usd": str(amount),
            "sale_amount_usd": str(sale),
            "commission_rate": str(tier.commission_rate),
            "tier_id": tier.id,
        },
    )
    await db.commit()
    await db.refresh(commission)

    logger.info(
        "Commission %s recorded: broker=%s sale=%s rate=%s amount=%s",
        commission.id, broker.id, sale, tier.commission_rate, amount,
    )
    pending = [earned]
    if decision.notification is not None:
        pending.append(decision.notification)
    notification_service.dispatch_after_commit(pending)
    return commission


async def get_commission(db: AsyncSession, commission_id: str) -> Commission:
    commission = await db.get(Commission, commission_id)
    if commission is None:
        raise CommissionNotFoundError(commission_id)
    return commission


async def update_status(
    db: AsyncSession,
    commission_id: str,
    status: str,
    tx_hash: str | None = None,
) -> Commission:
    """Move a pending commission to ``paid``, ``failed`` or ``cancelled``.

    ``paid`` requires the settlement transaction hash. Amount and rate are
    never touched.
    """
    if status not in COMMISSION_STATUSES:
        raise ValueError(f"Unknown commission status: {status}")
    tx_hash = (tx_hash or "").strip() or None
    if status == "paid" and not tx_hash:
        raise ValueError("A transaction hash is required to mark a commission paid")

    commission = await get_commission(db, commission_id)
    current = commission.status
    if status not in _TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(current, status)

    now = datetime.now(timezone.utc)
    values: dict = {"status": status, "updated_at": now}
    if status == "paid":
        values["transaction_hash"] = tx_hash
        values["paid_at"] = now

    result = await db.execute(
        update(Commission)
        .where(Commission.id == commission_id, Commission.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        await db.refresh(commission)
        raise InvalidStateTransition(commission.status, status)

    await db.commit()
    await db.refresh(commission)
    logger.info("Commission %s moved %s -> %s", commission_id, current, status)
    return commission


async def list_commissions(
    db: AsyncSession,
    broker_id: str,
    status: str | None = None,
    limit: int = 50,
) -> list[Commission]:
    query = select(Commission).where(Commission.broker_id == broker_id)
    if status:
        query = query.where(Commission.status == status)
    query = query.order_by(Commission.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def summarize_commissions(db: AsyncSession, broker_id: str) -> dict:
    """Count and total per status, plus overall sales volume."""
    result = await db.execute(
        select(
            Commission.status,
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.commission_usd), 0),
            func.coalesce(func.sum(Commission.sale_amount_usd), 0),
        )
        .where(Commission.broker_id == broker_id)
        .group_by(Commission.status)
    )
    by_status = {
        s: {"count": 0, "commission_usd": "0.00"} for s in COMMISSION_STATUSES
    }
    sales_count = 0
    total_sales = Decimal("0")
    for status, count, commission_sum, sale_sum in result.all():
        by_status[status] = {
            "count": int(count),
            "commission_usd": str(_to_money(commission_sum)),
        }
        sales_count += int(count)
        total_sales += _to_money(sale_sum)
    return {
        "sales_count": sales_count,
        "total_sales_usd": str(total_sales.quantize(_CENT)),
        "by_status": by_status,
    }
