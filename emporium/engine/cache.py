"""
emporium.engine.cache — Bounded, Time-Expiring Catalog Cache
=============================================================

Owned strictly by **read paths** (catalog listing and reward detail).
Entries are immutable :class:`RewardView` snapshots held in a
``cachetools.TTLCache``, so memory is bounded by ``maxsize`` and
staleness by ``ttl``.

Balance and stock on the write path never go through this cache:
``redeem``/``cancel`` always read the rows inside their own transaction.
Admin catalog writes and successful redemptions call :meth:`invalidate`
explicitly so the displayed stock catches up immediately.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from cachetools import TTLCache
from sqlalchemy import select
from sqlalchemy.orm import Session

from emporium.database.models import Reward

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_ACTIVE_KEY = "active"


@dataclass(frozen=True, slots=True)
class RewardView:
    """Read-only snapshot of a catalog row, safe to share across threads."""

    id: int
    type: str
    name: str
    description: str
    image_url: str | None
    item_id: str | None
    price_exp: int
    stock: int | None
    required_level: int | None
    limit_per_user: int | None
    is_active: bool
    boost_duration_minutes: int | None
    boost_multiplier: float | None
    requires_shipping: bool
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Reward) -> RewardView:
        return cls(
            id=row.id,
            type=row.type,
            name=row.name,
            description=row.description,
            image_url=row.image_url,
            item_id=row.item_id,
            price_exp=row.price_exp,
            stock=row.stock,
            required_level=row.required_level,
            limit_per_user=row.limit_per_user,
            is_active=row.is_active,
            boost_duration_minutes=row.boost_duration_minutes,
            boost_multiplier=row.boost_multiplier,
            requires_shipping=row.requires_shipping,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "item_id": self.item_id,
            "price_exp": self.price_exp,
            "stock": self.stock,
            "required_level": self.required_level,
            "limit_per_user": self.limit_per_user,
            "is_active": self.is_active,
            "boost_duration_minutes": self.boost_duration_minutes,
            "boost_multiplier": self.boost_multiplier,
            "requires_shipping": self.requires_shipping,
        }


class CatalogCache:
    """Thread-safe TTL cache in front of the ``rewards`` table.

    Usage::

        cache = CatalogCache(engine, ttl=30, maxsize=256)
        rewards = cache.list_active(reward_type="BOOST", user_level=3)
        reward = cache.get_reward(7)
        cache.invalidate(7)          # after an admin edit or a redemption
    """

    def __init__(self, engine: Engine, *, ttl: float = 30.0, maxsize: int = 256) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # key → RewardView | tuple[RewardView, ...]
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_reward(self, reward_id: int) -> RewardView | None:
        key = ("reward", reward_id)
        with self._lock:
            hit = self._entries.get(key)
        if hit is not None:
            return hit

        with Session(self._engine) as session:
            row = session.get(Reward, reward_id)
            view = RewardView.from_row(row) if row is not None else None

        if view is not None:
            with self._lock:
                self._entries[key] = view
        return view

    def list_active(
        self,
        reward_type: str | None = None,
        user_level: int | None = None,
    ) -> list[RewardView]:
        """Active rewards ordered by price, optionally filtered.

        *user_level* hides rewards whose ``required_level`` is above it.
        """
        with self._lock:
            views = self._entries.get(_ACTIVE_KEY)

        if views is None:
            with Session(self._engine) as session:
                rows = session.scalars(
                    select(Reward)
                    .where(Reward.is_active.is_(True))
                    .order_by(Reward.price_exp, Reward.id)
                ).all()
                views = tuple(RewardView.from_row(r) for r in rows)
            with self._lock:
                self._entries[_ACTIVE_KEY] = views
            logger.debug("Catalog cache refilled: %d active rewards", len(views))

        result = list(views)
        if reward_type is not None:
            result = [v for v in result if v.type == reward_type]
        if user_level is not None:
            result = [
                v for v in result
                if v.required_level is None or v.required_level <= user_level
            ]
        return result

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def invalidate(self, reward_id: int | None = None) -> None:
        """Drop one reward (plus the active listing), or everything."""
        with self._lock:
            if reward_id is None:
                self._entries.clear()
            else:
                self._entries.pop(("reward", reward_id), None)
                self._entries.pop(_ACTIVE_KEY, None)
        logger.debug("Catalog cache invalidated (reward_id=%s)", reward_id)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)
