"""
tests/test_cancellation.py — Cancel & Refund Tests
===================================================
Compensating transitions: credit returned exactly once, stock restored
on cancel but not on refund, ownership and cancellability enforced.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import seed_reward, seed_user
from sqlalchemy import select
from sqlalchemy.orm import Session

from emporium.database.models import (
    AdminLog,
    Entitlement,
    Redemption,
    RedemptionStatus,
    Reward,
    RewardType,
    User,
)
from emporium.errors import ConflictError, ErrorKind, NotFoundError, NotOwnerError
from emporium.services import cancellation_service, redemption_service

T0 = datetime(2026, 5, 1, 8, 0, tzinfo=UTC)
ADMIN = 99999


@pytest.fixture
def engine(db_engine):
    return db_engine


def _state(engine, user_id: int, reward_id: int) -> tuple[int, int | None]:
    with Session(engine) as s:
        return s.get(User, user_id).current_exp, s.get(Reward, reward_id).stock


@pytest.fixture
def pending(engine, address):
    """A PENDING physical redemption: user 1 paid 300 of 1000, stock 5 → 4."""
    uid = seed_user(engine, 1, exp=1000)
    rid = seed_reward(engine, type=RewardType.PHYSICAL, price_exp=300, stock=5)
    redemption = redemption_service.redeem(
        engine, user_id=uid, reward_id=rid, shipping_address=address, now=T0,
    )
    return uid, rid, redemption


class TestCancel:
    def test_cancel_restores_balance_and_stock(self, engine, pending):
        uid, rid, redemption = pending
        assert _state(engine, uid, rid) == (700, 4)

        cancelled = cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)

        assert cancelled.status == RedemptionStatus.CANCELLED
        assert cancelled.cancel_reason == "Cancelled by user"
        assert _state(engine, uid, rid) == (1000, 5)

    def test_custom_reason_is_kept(self, engine, pending):
        uid, _, redemption = pending
        cancelled = cancellation_service.cancel(
            engine, redemption.id, requesting_user_id=uid, reason="Changed my mind",
        )
        assert cancelled.cancel_reason == "Changed my mind"

    def test_second_cancel_is_rejected_without_double_credit(self, engine, pending):
        uid, rid, redemption = pending
        cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)

        with pytest.raises(ConflictError) as exc_info:
            cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)

        assert exc_info.value.kind == ErrorKind.ALREADY_TERMINAL
        assert _state(engine, uid, rid) == (1000, 5)

    def test_other_user_cannot_cancel(self, engine, pending):
        uid, rid, redemption = pending
        seed_user(engine, 2, exp=0)
        with pytest.raises(NotOwnerError) as exc_info:
            cancellation_service.cancel(engine, redemption.id, requesting_user_id=2)
        assert exc_info.value.kind == ErrorKind.NOT_OWNER
        assert exc_info.value.status_code == 403
        assert _state(engine, uid, rid) == (700, 4)

    def test_admin_cancel_is_audited(self, engine, pending):
        uid, rid, redemption = pending
        cancellation_service.cancel(
            engine, redemption.id, requesting_user_id=ADMIN, as_admin=True, reason="fraud",
        )
        assert _state(engine, uid, rid) == (1000, 5)
        with Session(engine) as s:
            log = s.scalars(select(AdminLog).where(AdminLog.action_type == "CANCEL")).one()
        assert log.actor_id == ADMIN
        assert log.before_snapshot["status"] == "PENDING"
        assert log.after_snapshot["status"] == "CANCELLED"

    def test_approved_order_is_not_cancellable(self, engine, pending):
        from emporium.services import fulfillment_service

        uid, _, redemption = pending
        fulfillment_service.advance_redemption(
            engine, redemption.id, RedemptionStatus.APPROVED, actor_id=ADMIN,
        )
        with pytest.raises(ConflictError) as exc_info:
            cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)
        assert exc_info.value.kind == ErrorKind.NOT_CANCELLABLE

    def test_digital_is_not_cancellable(self, engine):
        uid = seed_user(engine, 5, exp=500)
        rid = seed_reward(engine, type=RewardType.AVATAR, price_exp=100)
        redemption = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)
        with pytest.raises(ConflictError) as exc_info:
            cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)
        assert exc_info.value.kind == ErrorKind.NOT_CANCELLABLE

    def test_unknown_redemption(self, engine):
        with pytest.raises(NotFoundError):
            cancellation_service.cancel(engine, 12345, requesting_user_id=1)


class TestRefund:
    def test_refund_credits_but_keeps_stock_consumed(self, engine, pending):
        uid, rid, redemption = pending
        refunded = cancellation_service.refund(
            engine, redemption.id, actor_id=ADMIN, admin_notes="lost in transit",
        )
        assert refunded.status == RedemptionStatus.REFUNDED
        assert refunded.admin_notes == "lost in transit"
        assert _state(engine, uid, rid) == (1000, 4)

    def test_refund_revokes_entitlement(self, engine):
        uid = seed_user(engine, 6, exp=500)
        rid = seed_reward(engine, type=RewardType.ACCESSORY, price_exp=100, item_id="hat")
        redemption = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)

        cancellation_service.refund(engine, redemption.id, actor_id=ADMIN)

        with Session(engine) as s:
            assert s.get(Entitlement, (uid, "hat")) is None
            assert s.get(User, uid).current_exp == 500

    def test_refund_keeps_item_owned_by_a_later_redemption(self, engine):
        uid = seed_user(engine, 7, exp=500)
        rid = seed_reward(engine, type=RewardType.AVATAR, price_exp=100, item_id="owl")
        first = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)
        second = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)

        cancellation_service.refund(engine, first.id, actor_id=ADMIN)

        with Session(engine) as s:
            ent = s.get(Entitlement, (uid, "owl"))
            assert ent is not None
            assert ent.redemption_id == second.id
            assert s.get(Redemption, second.id).status == RedemptionStatus.DELIVERED

        cancellation_service.refund(engine, second.id, actor_id=ADMIN)
        with Session(engine) as s:
            assert s.get(Entitlement, (uid, "owl")) is None
            assert s.get(User, uid).current_exp == 500

    def test_refund_twice_is_rejected(self, engine, pending):
        uid, rid, redemption = pending
        cancellation_service.refund(engine, redemption.id, actor_id=ADMIN)
        with pytest.raises(ConflictError) as exc_info:
            cancellation_service.refund(engine, redemption.id, actor_id=ADMIN)
        assert exc_info.value.kind == ErrorKind.ALREADY_TERMINAL
        assert _state(engine, uid, rid) == (1000, 4)

    def test_refund_after_cancel_is_rejected(self, engine, pending):
        uid, _, redemption = pending
        cancellation_service.cancel(engine, redemption.id, requesting_user_id=uid)
        with pytest.raises(ConflictError):
            cancellation_service.refund(engine, redemption.id, actor_id=ADMIN)
