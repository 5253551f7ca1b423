"""
tests/test_cache.py — CatalogCache Unit Tests
==============================================

Read-path caching: hits avoid the database, filters apply on cached
snapshots, entries expire with the TTL, and invalidation is explicit.
"""

from __future__ import annotations

import time

import pytest
from conftest import seed_reward
from sqlalchemy.orm import Session

from emporium.database.models import Reward, RewardType
from emporium.engine.cache import CatalogCache, RewardView


@pytest.fixture
def engine(db_engine):
    return db_engine


def _set_stock(engine, reward_id: int, stock: int) -> None:
    with Session(engine) as s:
        s.get(Reward, reward_id).stock = stock
        s.commit()


class TestCatalogCache:
    def test_hit_serves_snapshot_until_invalidated(self, engine):
        rid = seed_reward(engine, stock=10)
        cache = CatalogCache(engine, ttl=300)

        assert cache.get_reward(rid).stock == 10
        _set_stock(engine, rid, 3)
        assert cache.get_reward(rid).stock == 10

        cache.invalidate(rid)
        assert cache.get_reward(rid).stock == 3

    def test_ttl_expiry(self, engine):
        rid = seed_reward(engine, stock=10)
        cache = CatalogCache(engine, ttl=0.05)
        cache.get_reward(rid)
        _set_stock(engine, rid, 1)
        time.sleep(0.1)
        assert cache.get_reward(rid).stock == 1

    def test_missing_reward_is_not_cached(self, engine):
        cache = CatalogCache(engine, ttl=300)
        assert cache.get_reward(999) is None
        assert cache.size == 0

    def test_list_active_orders_by_price(self, engine):
        cheap = seed_reward(engine, price_exp=50)
        pricey = seed_reward(engine, price_exp=500)
        seed_reward(engine, price_exp=10, is_active=False)
        cache = CatalogCache(engine, ttl=300)
        assert [v.id for v in cache.list_active()] == [cheap, pricey]

    def test_filters(self, engine):
        boost = seed_reward(engine, type=RewardType.BOOST, price_exp=10)
        badge = seed_reward(engine, type=RewardType.BADGE, price_exp=20, required_level=5)
        cache = CatalogCache(engine, ttl=300)

        assert [v.id for v in cache.list_active(reward_type="BOOST")] == [boost]
        assert [v.id for v in cache.list_active(user_level=4)] == [boost]
        assert [v.id for v in cache.list_active(user_level=5)] == [boost, badge]

    def test_full_invalidate_clears_everything(self, engine):
        rid = seed_reward(engine)
        cache = CatalogCache(engine, ttl=300)
        cache.get_reward(rid)
        cache.list_active()
        assert cache.size == 2
        cache.invalidate()
        assert cache.size == 0

    def test_maxsize_bounds_memory(self, engine):
        ids = [seed_reward(engine, item_id=f"item_{i}") for i in range(5)]
        cache = CatalogCache(engine, ttl=300, maxsize=3)
        for rid in ids:
            cache.get_reward(rid)
        assert cache.size == 3

    def test_view_is_immutable(self, engine):
        rid = seed_reward(engine, type=RewardType.PHYSICAL, stock=2)
        view = CatalogCache(engine, ttl=300).get_reward(rid)
        assert isinstance(view, RewardView)
        assert view.to_dict()["requires_shipping"] is True
        with pytest.raises(AttributeError):
            view.stock = 0
