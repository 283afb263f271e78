"""Broker tier ladder and the upward-only tier ratchet.

The tier table is immutable for the lifetime of the process. It is loaded
once at startup, either from the JSON file named by ``TIER_TABLE_PATH`` or
from ``DEFAULT_TIER_TABLE``. The JSON file holds a list of objects with the
same fields as ``TierRung``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from luxbroker.config import settings
from luxbroker.models.broker import Broker
from luxbroker.models.notification import BrokerNotification
from luxbroker.services.notification_service import record_notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierRung:
    id: int
    name: str
    min_referrals: int
    min_sales_volume: Decimal
    commission_rate: Decimal
    color: str = ""
    icon: str = ""
    benefits: tuple[str, ...] = field(default_factory=tuple)

    def qualifies(self, referrals: int, sales_volume: Decimal) -> bool:
        return referrals >= self.min_referrals and sales_volume >= self.min_sales_volume

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "min_referrals": self.min_referrals,
            "min_sales_volume": str(self.min_sales_volume),
            "commission_rate": str(self.commission_rate),
            "color": self.color,
            "icon": self.icon,
            "benefits": list(self.benefits),
        }


DEFAULT_TIER_TABLE: tuple[TierRung, ...] = (
    TierRung(
        1, "Bronze", 0, Decimal("0"), Decimal("0.10"), "#CD7F32", "\U0001F949",
        ("10% commission rate", "Basic support", "Monthly reports"),
    ),
    TierRung(
        2, "Silver", 5, Decimal("10000"), Decimal("0.12"), "#C0C0C0", "\U0001F948",
        ("12% commission rate", "Priority support", "Weekly reports", "Marketing materials"),
    ),
    TierRung(
        3, "Gold", 15, Decimal("50000"), Decimal("0.15"), "#FFD700", "\U0001F947",
        ("15% commission rate", "Dedicated support", "Daily reports", "Custom marketing", "Early access"),
    ),
    TierRung(
        4, "Diamond", 50, Decimal("250000"), Decimal("0.20"), "#B9F2FF", "\U0001F48E",
        ("20% commission rate", "VIP support", "Real-time analytics", "White-label options", "Revenue sharing"),
    ),
)


def _rung_from_dict(raw: dict) -> TierRung:
    try:
        rung = TierRung(
            id=int(raw["id"]),
            name=str(raw["name"]),
            min_referrals=int(raw["min_referrals"]),
            min_sales_volume=Decimal(str(raw["min_sales_volume"])),
            commission_rate=Decimal(str(raw["commission_rate"])),
            color=str(raw.get("color", "")),
            icon=str(raw.get("icon", "")),
            benefits=tuple(str(b) for b in raw.get("benefits", ())),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise ValueError(f"Malformed tier entry {raw!r}: {exc}") from exc
    if rung.min_referrals < 0 or rung.min_sales_volume < 0:
        raise ValueError(f"Tier {rung.id} has negative thresholds")
    if not Decimal("0") <= rung.commission_rate <= Decimal("1"):
        raise ValueError(f"Tier {rung.id} commission rate must be within [0, 1]")
    return rung


def build_tier_table(rungs) -> tuple[TierRung, ...]:
    """Validate rungs and return them as an immutable tuple sorted by id."""
    table = tuple(sorted(rungs, key=lambda r: r.id))
    if not table:
        raise ValueError("Tier table must contain at least one tier")
    ids = [r.id for r in table]
    if len(set(ids)) != len(ids):
        raise ValueError("Tier ids must be unique")
    return table


def load_tier_table(path: str | Path) -> tuple[TierRung, ...]:
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, list):
        raise ValueError("Tier table file must contain a JSON list")
    return build_tier_table(_rung_from_dict(entry) for entry in raw)


_tier_table: tuple[TierRung, ...] | None = None


def configure_tier_table(table: tuple[TierRung, ...] | None = None) -> tuple[TierRung, ...]:
    """Install the process-wide tier table. Called once at startup."""
    global _tier_table
    if table is not None:
        _tier_table = build_tier_table(table)
    elif settings.tier_table_path:
        _tier_table = load_tier_table(settings.tier_table_path)
        logger.info("Loaded %d tiers from %s", len(_tier_table), settings.tier_table_path)
    else:
        _tier_table = DEFAULT_TIER_TABLE
    return _tier_table


def get_tier_table() -> tuple[TierRung, ...]:
    if _tier_table is None:
        return configure_tier_table()
    return _tier_table


def get_tier(table: tuple[TierRung, ...], tier_id: int) -> TierRung:
    """Rung with ``tier_id``; unknown ids fall back to the lowest rung."""
    for rung in table:
        if rung.id == tier_id:
            return rung
    logger.warning("Unknown tier id %s, using %s", tier_id, table[0].name)
    return table[0]


def select_tier(
    table: tuple[TierRung, ...],
    referrals: int,
    sales_volume: Decimal,
) -> TierRung | None:
    """Highest-rate rung whose thresholds are both met; ties go to the higher id."""
    qualifying = [r for r in table if r.qualifies(referrals, sales_volume)]
    if not qualifying:
        return None
    return max(qualifying, key=lambda r: (r.commission_rate, r.id))


def progress_to_next_tier(
    table: tuple[TierRung, ...],
    tier_id: int,
    referrals: int,
    sales_volume: Decimal,
) -> dict:
    current = get_tier(table, tier_id)
    higher = [r for r in table if r.id > current.id]
    if not higher:
        return {
            "current_tier": current.to_dict(),
            "next_tier": None,
            "referrals_needed": 0,
            "sales_volume_needed": "0",
            "progress_percent": 100.0,
        }
    nxt = higher[0]
    referrals_needed = max(0, nxt.min_referrals - referrals)
    volume_needed = max(Decimal("0"), nxt.min_sales_volume - sales_volume)

    # Progress follows the more restrictive requirement
    ratios = []
    if nxt.min_referrals > 0:
        ratios.append(Decimal(referrals) / Decimal(nxt.min_referrals))
    if nxt.min_sales_volume > 0:
        ratios.append(sales_volume / nxt.min_sales_volume)
    ratio = min(ratios) if ratios else Decimal("1")
    return {
        "current_tier": current.to_dict(),
        "next_tier": nxt.to_dict(),
        "referrals_needed": referrals_needed,
        "sales_volume_needed": str(volume_needed),
        "progress_percent": float(min(Decimal("100"), ratio * 100).quantize(Decimal("0.1"))),
    }


@dataclass
class TierDecision:
    old_tier: TierRung
    new_tier: TierRung
    notification: BrokerNotification | None = None

    @property
    def upgraded(self) -> bool:
        return self.new_tier.id > self.old_tier.id


async def evaluate(
    db: AsyncSession,
    broker: Broker,
    table: tuple[TierRung, ...] | None = None,
) -> TierDecision:
    """Upgrade ``broker`` if its current statistics earn a higher tier.

    Never downgrades. Runs inside the caller's transaction and does not
    commit. The update is conditional on the stored tier still being lower,
    so two concurrent evaluations record at most one upgrade.
    """
    table = table or get_tier_table()
    current = get_tier(table, broker.tier_id)
    selected = select_tier(
        table,
        int(broker.referred_sellers_count or 0),
        Decimal(str(broker.total_sales_volume or 0)),
    )
    if selected is None or selected.id <= broker.tier_id:
        return TierDecision(old_tier=current, new_tier=current)

    result = await db.execute(
        update(Broker)
        .where(Broker.id == broker.id, Broker.tier_id < selected.id)
        .values(tier_id=selected.id)
    )
    if result.rowcount != 1:
        return TierDecision(old_tier=current, new_tier=current)
    set_committed_value(broker, "tier_id", selected.id)

    pct = (selected.commission_rate * 100).normalize()
    notification = record_notification(
        db,
        broker_id=broker.id,
        type="tier_upgrade",
        title="Tier Upgrade!",
        message=(
            f"Congratulations! You've been upgraded to {selected.name} tier "
            f"with {pct:f}% commission."
        ),
        data={
            "old_tier_id": current.id,
            "old_tier_name": current.name,
            "new_tier_id": selected.id,
            "new_tier_name": selected.name,
            "commission_rate": str(selected.commission_rate),
        },
    )
    logger.info(
        "Broker %s upgraded from %s to %s", broker.id, current.name, selected.name,
    )
    return TierDecision(old_tier=current, new_tier=selected, notification=notification)
