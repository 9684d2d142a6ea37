import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vipledger.db.session import Base
from vipledger.domain.enums import ConsumptionSource, PointsSource, VIPStatus, VIPTier
from vipledger.models.user import GUID, User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VIPMembership(Base):
    __tablename__ = "vip_memberships"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="ck_vip_memberships_balance_non_negative"),
        Index("ix_vip_memberships_lifetime", "lifetime_points"),
        Index("ix_vip_memberships_tier", "tier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    tier: Mapped[VIPTier] = mapped_column(SqlEnum(VIPTier, name="vip_tier"), default=VIPTier.silver, nullable=False)
    points_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[VIPStatus] = mapped_column(
        SqlEnum(VIPStatus, name="vip_status"), default=VIPStatus.active, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship("User", lazy="joined")


class VIPPointRule(Base):
    __tablename__ = "vip_point_rules"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    action_type: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    points_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="EUR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PointsLedgerEntry(Base):
    """One immutable point movement. Never updated after insert."""

    __tablename__ = "vip_points_log"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "ref_id", name="uq_vip_points_log_idempotency"),
        Index("ix_vip_points_log_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[PointsSource] = mapped_column(SqlEnum(PointsSource, name="points_source"), nullable=False)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delta_points: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class VIPConsumption(Base):
    __tablename__ = "vip_consumptions"
    __table_args__ = (
        UniqueConstraint("pos_order_id", name="uq_vip_consumptions_pos_order_id"),
        Index("ix_vip_consumptions_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[ConsumptionSource] = mapped_column(
        SqlEnum(ConsumptionSource, name="consumption_source"), default=ConsumptionSource.manual, nullable=False
    )
    # Set for spend settled from a POS order; one row per order.
    pos_order_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("pos_orders.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
