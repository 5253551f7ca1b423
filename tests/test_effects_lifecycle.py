"""
tests/test_effects_lifecycle.py — Reward Effects & Status Rules
================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from emporium.database.models import RedemptionStatus, Reward, RewardType
from emporium.engine.effects import (
    BoostGrant,
    ItemGrant,
    ShippedGoods,
    effect_for,
    initial_status,
)
from emporium.engine.lifecycle import check_forward, is_boost_active, is_terminal, next_status
from emporium.errors import ConflictError, ErrorKind

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _reward(reward_type: RewardType, **overrides) -> Reward:
    data = dict(id=7, type=reward_type.value, name="r", description="d", price_exp=10)
    data.update(overrides)
    return Reward(**data)


# ===========================================================================
# Effects
# ===========================================================================
class TestEffectFor:
    @pytest.mark.parametrize("reward_type", [
        RewardType.AVATAR, RewardType.ACCESSORY, RewardType.TITLE_BADGE, RewardType.BADGE,
    ])
    def test_item_types_grant_items(self, reward_type):
        effect = effect_for(_reward(reward_type, item_id="thing"))
        assert effect == ItemGrant(reward_type=reward_type, item_id="thing")
        assert initial_status(effect) == RedemptionStatus.DELIVERED

    def test_boost_carries_its_parameters(self):
        effect = effect_for(_reward(
            RewardType.BOOST, item_id="boost_2x",
            boost_duration_minutes=30, boost_multiplier=1.5,
        ))
        assert isinstance(effect, BoostGrant)
        assert effect.duration_minutes == 30
        assert effect.multiplier == 1.5
        assert effect.reward_type == RewardType.BOOST

    def test_boost_falls_back_to_defaults(self):
        effect = effect_for(
            _reward(RewardType.BOOST, item_id="boost"),
            default_boost_minutes=45,
            default_boost_multiplier=3.0,
        )
        assert (effect.duration_minutes, effect.multiplier) == (45, 3.0)

    def test_boost_window(self):
        effect = BoostGrant(item_id="b", duration_minutes=60, multiplier=2.0)
        assert effect.window(T0) == (T0, T0 + timedelta(minutes=60))

    def test_physical_ships(self):
        effect = effect_for(_reward(RewardType.PHYSICAL))
        assert isinstance(effect, ShippedGoods)
        assert initial_status(effect) == RedemptionStatus.PENDING

    def test_digital_without_item_id_is_rejected(self):
        with pytest.raises(ValueError, match="item_id"):
            effect_for(_reward(RewardType.BADGE, item_id=None))

    def test_unknown_type_is_rejected(self):
        reward = Reward(id=1, type="SPACESHIP", name="r", description="d", price_exp=1)
        with pytest.raises(ValueError):
            effect_for(reward)


# ===========================================================================
# Lifecycle
# ===========================================================================
S = RedemptionStatus


class TestLifecycle:
    def test_forward_chain(self):
        chain = [S.PENDING, S.APPROVED, S.PROCESSING, S.SHIPPED, S.DELIVERED, S.RECEIVED]
        for current, target in zip(chain, chain[1:]):
            assert next_status(current) == target
            check_forward(current, target)

    @pytest.mark.parametrize("status", [S.RECEIVED, S.CANCELLED, S.REFUNDED])
    def test_terminal_statuses(self, status):
        assert is_terminal(status)
        with pytest.raises(ConflictError) as exc_info:
            check_forward(status, S.DELIVERED)
        assert exc_info.value.kind == ErrorKind.ALREADY_TERMINAL

    def test_skipping_a_step_is_invalid(self):
        with pytest.raises(ConflictError) as exc_info:
            check_forward(S.PENDING, S.SHIPPED)
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION
        assert exc_info.value.status_code == 409

    def test_going_backwards_is_invalid(self):
        with pytest.raises(ConflictError):
            check_forward(S.SHIPPED, S.APPROVED)

    def test_boost_active_until_expiry(self):
        expires = T0 + timedelta(minutes=60)
        assert is_boost_active(expires, T0 + timedelta(minutes=30))
        assert not is_boost_active(expires, T0 + timedelta(minutes=60))
        assert not is_boost_active(expires, T0 + timedelta(minutes=61))
        assert not is_boost_active(None, T0)

    def test_boost_active_with_naive_timestamps(self):
        """SQLite hands back naive datetimes; they are read as UTC."""
        expires = (T0 + timedelta(minutes=60)).replace(tzinfo=None)
        assert is_boost_active(expires, T0)
