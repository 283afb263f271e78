"""affiliate core tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "brokers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(35), nullable=False, unique=True),
        sa.Column("referral_code", sa.String(20), nullable=False, unique=True),
        sa.Column("tier_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_earnings", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("total_sales_volume", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("referred_sellers_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("kyc_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_earnings >= 0", name="ck_broker_earnings_non_negative"),
        sa.CheckConstraint("total_sales_volume >= 0", name="ck_broker_volume_non_negative"),
        sa.CheckConstraint("referred_sellers_count >= 0", name="ck_broker_referrals_non_negative"),
        sa.CheckConstraint("status IN ('pending', 'active', 'suspended')", name="ck_broker_status"),
    )
    op.create_index("idx_broker_wallet", "brokers", ["wallet_address"])
    op.create_index("idx_broker_referral_code", "brokers", ["referral_code"])
    op.create_index("idx_broker_earnings", "brokers", ["total_earnings"])

    op.create_table(
        "sellers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(35), nullable=False, unique=True),
        sa.Column("referred_by_broker_id", sa.String(36), sa.ForeignKey("brokers.id"), nullable=True),
        sa.Column("referral_code", sa.String(20), nullable=True),
        sa.Column("referral_locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_seller_wallet", "sellers", ["wallet_address"])
    op.create_index("idx_seller_referred_by", "sellers", ["referred_by_broker_id"])

    op.create_table(
        "commissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("broker_id", sa.String(36), sa.ForeignKey("brokers.id"), nullable=False),
        sa.Column("seller_id", sa.String(36), sa.ForeignKey("sellers.id"), nullable=False),
        sa.Column("sale_amount_usd", sa.Numeric(15, 2), nullable=False),
        sa.Column("commission_usd", sa.Numeric(15, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("tier_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("transaction_hash", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("sale_amount_usd > 0", name="ck_commission_sale_positive"),
        sa.CheckConstraint("commission_usd >= 0", name="ck_commission_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'cancelled')", name="ck_commission_status",
        ),
    )
    op.create_index("idx_commission_broker", "commissions", ["broker_id"])
    op.create_index("idx_commission_seller", "commissions", ["seller_id"])
    op.create_index("idx_commission_status", "commissions", ["status"])
    op.create_index("idx_commission_created", "commissions", ["created_at"])

    op.create_table(
        "referral_clicks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("broker_id", sa.String(36), sa.ForeignKey("brokers.id"), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("converted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("conversion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_referral_click_code", "referral_clicks", ["referral_code"])
    op.create_index("idx_referral_click_broker", "referral_clicks", ["broker_id"])
    op.create_index("idx_referral_click_converted", "referral_clicks", ["referral_code", "converted"])

    op.create_table(
        "broker_notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("broker_id", sa.String(36), sa.ForeignKey("brokers.id"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.Text(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_notification_broker", "broker_notifications", ["broker_id"])
    op.create_index("idx_notification_type", "broker_notifications", ["type"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(35), nullable=True, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_profile_wallet", "profiles", ["wallet_address"])


def downgrade() -> None:
    op.drop_table("profiles")
    op.drop_table("broker_notifications")
    op.drop_table("referral_clicks")
    op.drop_table("commissions")
    op.drop_table("sellers")
    op.drop_table("brokers")
