"""vip loyalty ledger

Revision ID: 3c9d1e7a5b20
Revises:
Create Date: 2026-10-19 10:12:44.318207
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from vipledger.models.user import GUID

# revision identifiers, used by Alembic.
revision: str = "3c9d1e7a5b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("artist", "vip", "staff", "admin", name="user_role")
vip_tier = sa.Enum("silver", "gold", "black", name="vip_tier")
vip_status = sa.Enum("active", "suspended", "cancelled", name="vip_status")
points_source = sa.Enum(
    "event_checkin", "consumption", "consumption_pos", "manual_adjust", "tier_bonus", name="points_source"
)
consumption_source = sa.Enum("manual", "pos", name="consumption_source")
pos_order_status = sa.Enum("pending", "paid", "failed", "cancelled", "refunded", name="pos_order_status")
nfc_card_type = sa.Enum("artist", "vip", "staff", "guest", name="nfc_card_type")
checkin_source = sa.Enum("artist_profile", "vip_pass", "event_checkin", "admin", name="checkin_source")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("hashed_password", sa.String(), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "vip_memberships",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("tier", vip_tier, nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", vip_status, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("points_balance >= 0", name="ck_vip_memberships_balance_non_negative"),
    )
    op.create_index("ix_vip_memberships_lifetime", "vip_memberships", ["lifetime_points"])
    op.create_index("ix_vip_memberships_tier", "vip_memberships", ["tier"])

    op.create_table(
        "vip_point_rules",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("action_type", sa.String(length=64), nullable=False, unique=True),
        sa.Column("points_per_unit", sa.Numeric(12, 6), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "vip_points_log",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", points_source, nullable=False),
        sa.Column("ref_id", sa.String(length=64), nullable=True),
        sa.Column("delta_points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "source", "ref_id", name="uq_vip_points_log_idempotency"),
    )
    op.create_index("ix_vip_points_log_user_created", "vip_points_log", ["user_id", "created_at"])

    op.create_table(
        "vip_consumptions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", sa.String(length=100), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source", consumption_source, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_vip_consumptions_user", "vip_consumptions", ["user_id"])

    op.create_table(
        "pos_orders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("staff_user_id", GUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("customer_user_id", GUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", pos_order_status, nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    )
    op.create_index("ix_pos_orders_status", "pos_orders", ["status"])
    op.create_index("ix_pos_orders_customer", "pos_orders", ["customer_user_id"])

    op.create_table(
        "pos_order_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("order_id", GUID(), sa.ForeignKey("pos_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
    )
    op.create_index("ix_pos_order_items_order_id", "pos_order_items", ["order_id"])

    op.create_table(
        "nfc_cards",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("card_uid", sa.String(length=64), nullable=False),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", nfc_card_type, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_nfc_cards_card_uid", "nfc_cards", ["card_uid"], unique=True)
    op.create_index("ix_nfc_cards_user_id", "nfc_cards", ["user_id"])

    op.create_table(
        "checkins",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("nfc_card_id", GUID(), sa.ForeignKey("nfc_cards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_id", sa.String(length=100), nullable=True),
        sa.Column("source", checkin_source, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
    )
    op.create_index("ix_checkins_user_timestamp", "checkins", ["user_id", "timestamp"])
    op.create_index("ix_checkins_event_id", "checkins", ["event_id"])


def downgrade() -> None:
    op.drop_index("ix_checkins_event_id", table_name="checkins")
    op.drop_index("ix_checkins_user_timestamp", table_name="checkins")
    op.drop_table("checkins")
    op.drop_index("ix_nfc_cards_user_id", table_name="nfc_cards")
    op.drop_index("ix_nfc_cards_card_uid", table_name="nfc_cards")
    op.drop_table("nfc_cards")
    op.drop_index("ix_pos_order_items_order_id", table_name="pos_order_items")
    op.drop_table("pos_order_items")
    op.drop_index("ix_pos_orders_customer", table_name="pos_orders")
    op.drop_index("ix_pos_orders_status", table_name="pos_orders")
    op.drop_table("pos_orders")
    op.drop_index("ix_vip_consumptions_user", table_name="vip_consumptions")
    op.drop_table("vip_consumptions")
    op.drop_index("ix_vip_points_log_user_created", table_name="vip_points_log")
    op.drop_table("vip_points_log")
    op.drop_table("vip_point_rules")
    op.drop_index("ix_vip_memberships_tier", table_name="vip_memberships")
    op.drop_index("ix_vip_memberships_lifetime", table_name="vip_memberships")
    op.drop_table("vip_memberships")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (
        checkin_source,
        nfc_card_type,
        pos_order_status,
        consumption_source,
        points_source,
        vip_status,
        vip_tier,
        user_role,
    ):
        enum_type.drop(bind, checkfirst=True)
