"""
emporium.engine.effects — RewardEffect Tagged Variant
======================================================

What redeeming a reward *does* depends on its type tag.  Instead of
branching on an all-optional field bag at every call site, a catalog row
is turned into exactly one effect, and each effect carries only the
fields it needs:

* :class:`ItemGrant`    — AVATAR, ACCESSORY, TITLE_BADGE, BADGE: own ``item_id``
* :class:`BoostGrant`   — BOOST: own ``item_id`` and start a timed multiplier
* :class:`ShippedGoods` — PHYSICAL: starts the manual shipping workflow

Pure module — no DB I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from emporium.constants import DEFAULT_BOOST_MINUTES, DEFAULT_BOOST_MULTIPLIER
from emporium.database.models import RedemptionStatus, RewardType

if TYPE_CHECKING:
    from emporium.database.models import Reward

__all__ = [
    "BoostGrant",
    "ItemGrant",
    "RewardEffect",
    "ShippedGoods",
    "effect_for",
    "initial_status",
]


@dataclass(frozen=True, slots=True)
class ItemGrant:
    """Permanent ownership of a cosmetic or badge."""

    reward_type: RewardType
    item_id: str


@dataclass(frozen=True, slots=True)
class BoostGrant:
    """Time-boxed EXP multiplier, active from redemption for ``duration``."""

    item_id: str
    duration_minutes: int
    multiplier: float

    @property
    def reward_type(self) -> RewardType:
        return RewardType.BOOST

    def window(self, start: datetime) -> tuple[datetime, datetime]:
        """Return ``(activated_at, expires_at)`` for a boost starting at *start*."""
        return start, start + timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True, slots=True)
class ShippedGoods:
    """A real-world item moved along by administrators."""

    @property
    def reward_type(self) -> RewardType:
        return RewardType.PHYSICAL


RewardEffect = ItemGrant | BoostGrant | ShippedGoods


def effect_for(
    reward: Reward,
    *,
    default_boost_minutes: int = DEFAULT_BOOST_MINUTES,
    default_boost_multiplier: float = DEFAULT_BOOST_MULTIPLIER,
) -> RewardEffect:
    """Build the effect for a catalog row.

    Raises
    ------
    ValueError
        If the type tag is unknown or a digital reward has no ``item_id``.
    """
    reward_type = RewardType(reward.type)

    if reward_type == RewardType.PHYSICAL:
        return ShippedGoods()

    if not reward.item_id:
        raise ValueError(f"Digital reward {reward.id} has no item_id to grant")

    if reward_type == RewardType.BOOST:
        return BoostGrant(
            item_id=reward.item_id,
            duration_minutes=reward.boost_duration_minutes or default_boost_minutes,
            multiplier=reward.boost_multiplier or default_boost_multiplier,
        )

    return ItemGrant(reward_type=reward_type, item_id=reward.item_id)


def initial_status(effect: RewardEffect) -> RedemptionStatus:
    """Digital effects are fulfilled in the creating transaction."""
    if isinstance(effect, ShippedGoods):
        return RedemptionStatus.PENDING
    return RedemptionStatus.DELIVERED
