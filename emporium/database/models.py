"""
emporium.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- users           — Spendable EXP balance and level per player
- ledger_entries  — Append-only history of balance deltas
- rewards         — Catalog entries (price, stock, eligibility, boost params)
- redemptions     — One row per exchange, with an immutable reward snapshot
- entitlements    — Digital items a user owns
- admin_log       — Append-only audit trail of admin mutations
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Emporium ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RewardType(enum.StrEnum):
    """Catalog type tag; decides which fulfillment path a redemption takes."""
    AVATAR = "AVATAR"
    ACCESSORY = "ACCESSORY"
    TITLE_BADGE = "TITLE_BADGE"
    BADGE = "BADGE"
    BOOST = "BOOST"
    PHYSICAL = "PHYSICAL"


class RedemptionStatus(enum.StrEnum):
    """Fulfillment lifecycle of a redemption."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class LedgerReason(enum.StrEnum):
    """Why a balance delta was applied."""
    REDEMPTION = "REDEMPTION"
    REFUND = "REFUND"
    MANUAL_AWARD = "MANUAL_AWARD"


# ---------------------------------------------------------------------------
# Users — balance holder
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1)
    current_exp: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    ledger: Mapped[list[LedgerEntry]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    entitlements: Mapped[list[Entitlement]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("current_exp >= 0", name="ck_users_exp_non_negative"),
        CheckConstraint("level >= 1", name="ck_users_level_positive"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} exp={self.current_exp} lvl={self.level}>"


# ---------------------------------------------------------------------------
# Ledger — append-only balance history
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One balance delta.  ``SUM(delta)`` per user equals ``users.current_exp``."""
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    redemption_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("redemptions.id"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="ledger")

    __table_args__ = (
        Index("ix_ledger_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry user={self.user_id} delta={self.delta} reason={self.reason}>"


# ---------------------------------------------------------------------------
# Rewards — the catalog
# ---------------------------------------------------------------------------
class Reward(Base):
    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    item_id: Mapped[str | None] = mapped_column(String(100), default=None)
    price_exp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    required_level: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_user: Mapped[int | None] = mapped_column(Integer, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    boost_duration_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    boost_multiplier: Mapped[float | None] = mapped_column(Float, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("price_exp >= 0", name="ck_rewards_price_non_negative"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_rewards_stock_non_negative"),
        Index("ix_rewards_active_price", "is_active", "price_exp"),
    )

    @property
    def requires_shipping(self) -> bool:
        return self.type == RewardType.PHYSICAL

    @property
    def unlimited(self) -> bool:
        return self.stock is None

    def __repr__(self) -> str:
        return f"<Reward id={self.id} type={self.type} name={self.name!r} stock={self.stock}>"


# ---------------------------------------------------------------------------
# Redemptions — never deleted, only stamped into a new status
# ---------------------------------------------------------------------------
class Redemption(Base):
    """An exchange of EXP for a reward.

    ``reward_name``, ``reward_type``, ``reward_image_url`` and ``exp_cost``
    are copied from the catalog at redemption time so later catalog edits
    never rewrite history.
    """
    __tablename__ = "redemptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    reward_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rewards.id"), nullable=False
    )
    item_id: Mapped[str | None] = mapped_column(String(100), default=None)
    reward_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reward_name: Mapped[str] = mapped_column(String(120), nullable=False)
    reward_image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    exp_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    shipping_address: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), default=None)
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    boost_multiplier: Mapped[float | None] = mapped_column(Float, default=None)
    cancel_reason: Mapped[str | None] = mapped_column(Text, default=None)
    admin_notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("exp_cost >= 0", name="ck_redemptions_cost_non_negative"),
        Index("ix_redemptions_user_time", "user_id", "created_at"),
        Index("ix_redemptions_user_reward", "user_id", "reward_id"),
        Index("ix_redemptions_status_time", "status", "created_at"),
        Index("ix_redemptions_type_status", "reward_type", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Redemption id={self.id} user={self.user_id} "
            f"reward={self.reward_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Entitlements — digital ownership
# ---------------------------------------------------------------------------
class Entitlement(Base):
    __tablename__ = "entitlements"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    item_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    reward_type: Mapped[str] = mapped_column(String(20), nullable=False)
    redemption_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("redemptions.id"), nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="entitlements")

    def __repr__(self) -> str:
        return f"<Entitlement user={self.user_id} item={self.item_id!r}>"


# ---------------------------------------------------------------------------
# Admin log — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
