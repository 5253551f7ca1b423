"""Create users, ledger, catalog, redemption, entitlement and audit tables

Revision ID: 4c2e9a7b1f03
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c2e9a7b1f03"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create the reward economy schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_exp", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("current_exp >= 0", name="ck_users_exp_non_negative"),
        sa.CheckConstraint("level >= 1", name="ck_users_level_positive"),
    )

    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("item_id", sa.String(100), nullable=True),
        sa.Column("price_exp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock", sa.Integer(), nullable=True),
        sa.Column("required_level", sa.Integer(), nullable=True),
        sa.Column("limit_per_user", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("boost_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("boost_multiplier", sa.Float(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("price_exp >= 0", name="ck_rewards_price_non_negative"),
        sa.CheckConstraint(
            "stock IS NULL OR stock >= 0", name="ck_rewards_stock_non_negative"
        ),
    )
    op.create_index("ix_rewards_active_price", "rewards", ["is_active", "price_exp"])

    op.create_table(
        "redemptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id"), nullable=False),
        sa.Column("item_id", sa.String(100), nullable=True),
        sa.Column("reward_type", sa.String(20), nullable=False),
        sa.Column("reward_name", sa.String(120), nullable=False),
        sa.Column("reward_image_url", sa.String(500), nullable=True),
        sa.Column("exp_cost", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("shipping_address", postgresql.JSONB(), nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("boost_multiplier", sa.Float(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("exp_cost >= 0", name="ck_redemptions_cost_non_negative"),
    )
    op.create_index("ix_redemptions_user_time", "redemptions", ["user_id", "created_at"])
    op.create_index("ix_redemptions_user_reward", "redemptions", ["user_id", "reward_id"])
    op.create_index("ix_redemptions_status_time", "redemptions", ["status", "created_at"])
    op.create_index("ix_redemptions_type_status", "redemptions", ["reward_type", "status"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column(
            "redemption_id", sa.Integer(), sa.ForeignKey("redemptions.id"), nullable=True
        ),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_ledger_user_time", "ledger_entries", ["user_id", "created_at"])

    op.create_table(
        "entitlements",
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("item_id", sa.String(100), primary_key=True),
        sa.Column("reward_type", sa.String(20), nullable=False),
        sa.Column(
            "redemption_id", sa.Integer(), sa.ForeignKey("redemptions.id"), nullable=True
        ),
        _timestamp("granted_at"),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _timestamp("timestamp"),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop the reward economy schema."""
    op.drop_table("admin_log")
    op.drop_table("entitlements")
    op.drop_table("ledger_entries")
    op.drop_table("redemptions")
    op.drop_table("rewards")
    op.drop_table("users")
