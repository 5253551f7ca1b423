"""
emporium.constants — Shared Constants & Helpers
================================================

Single source of truth for reward-type groupings, lifecycle status sets,
and clock helpers.  Import from here instead of duplicating in services
and routes.
"""

from __future__ import annotations

from datetime import UTC, datetime

from emporium.database.models import RedemptionStatus, RewardType

# ---------------------------------------------------------------------------
# Reward type groupings
# ---------------------------------------------------------------------------
DIGITAL_TYPES: frozenset[RewardType] = frozenset({
    RewardType.AVATAR,
    RewardType.ACCESSORY,
    RewardType.TITLE_BADGE,
    RewardType.BADGE,
    RewardType.BOOST,
})

SHIPPABLE_TYPES: frozenset[RewardType] = frozenset({RewardType.PHYSICAL})


# ---------------------------------------------------------------------------
# Lifecycle status groupings
# ---------------------------------------------------------------------------
TERMINAL_STATUSES: frozenset[RedemptionStatus] = frozenset({
    RedemptionStatus.RECEIVED,
    RedemptionStatus.CANCELLED,
    RedemptionStatus.REFUNDED,
})

# Statuses the shipping manifest export picks up
MANIFEST_STATUSES: tuple[RedemptionStatus, ...] = (
    RedemptionStatus.APPROVED,
    RedemptionStatus.PROCESSING,
)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_BOOST_MINUTES = 60
DEFAULT_BOOST_MULTIPLIER = 2.0
DEFAULT_MAX_CONFLICT_RETRIES = 3

DEFAULT_CANCEL_REASON = "Cancelled by user"
DEFAULT_REFUND_NOTE = "Refunded by admin"
REPAIR_NOTE = "auto-corrected"


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_digital(reward_type: str) -> bool:
    return reward_type in DIGITAL_TYPES


def requires_shipping(reward_type: str) -> bool:
    return reward_type in SHIPPABLE_TYPES
