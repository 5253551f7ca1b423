"""
tests/test_fulfillment.py — Physical Fulfillment & Manifest Tests
==================================================================
"""

from __future__ import annotations

import csv
import io
from datetime import UTC, datetime

import pytest
from conftest import seed_reward, seed_user
from sqlalchemy import select
from sqlalchemy.orm import Session

from emporium.database.models import AdminLog, RedemptionStatus, RewardType, User
from emporium.errors import ConflictError, ErrorKind
from emporium.services import fulfillment_service, redemption_service

T0 = datetime(2026, 6, 1, 10, 0, tzinfo=UTC)
ADMIN = 99999
S = RedemptionStatus


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def order(engine, address):
    uid = seed_user(engine, 1, exp=1000)
    rid = seed_reward(engine, type=RewardType.PHYSICAL, name="Plush Toy",
                      price_exp=500, stock=10)
    redemption = redemption_service.redeem(
        engine, user_id=uid, reward_id=rid, shipping_address=address, now=T0,
    )
    return uid, redemption


def _advance(engine, redemption_id, target, **kw):
    return fulfillment_service.advance_redemption(
        engine, redemption_id, target, actor_id=ADMIN, **kw,
    )


class TestAdvance:
    def test_full_shipping_path(self, engine, order):
        uid, redemption = order
        _advance(engine, redemption.id, S.APPROVED)
        _advance(engine, redemption.id, S.PROCESSING)
        shipped = _advance(engine, redemption.id, S.SHIPPED, tracking_number="TH123456789")
        assert shipped.tracking_number == "TH123456789"
        _advance(engine, redemption.id, S.DELIVERED)

        received = fulfillment_service.confirm_received(engine, redemption.id, user_id=uid)
        assert received.status == S.RECEIVED

        with Session(engine) as s:
            logs = s.scalars(select(AdminLog).where(AdminLog.action_type == "ADVANCE")).all()
            assert len(logs) == 4
            assert s.get(User, uid).current_exp == 500

    def test_shipping_requires_tracking_number(self, engine, order):
        _, redemption = order
        _advance(engine, redemption.id, S.APPROVED)
        _advance(engine, redemption.id, S.PROCESSING)
        with pytest.raises(ConflictError) as exc_info:
            _advance(engine, redemption.id, S.SHIPPED, tracking_number="  ")
        assert exc_info.value.kind == ErrorKind.TRACKING_REQUIRED
        assert redemption_service.get_redemption(engine, redemption.id).status == S.PROCESSING

    def test_cannot_skip_steps(self, engine, order):
        _, redemption = order
        with pytest.raises(ConflictError) as exc_info:
            _advance(engine, redemption.id, S.SHIPPED, tracking_number="X")
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    def test_admin_notes_are_stored(self, engine, order):
        _, redemption = order
        approved = _advance(engine, redemption.id, "APPROVED", admin_notes="verified address")
        assert approved.admin_notes == "verified address"

    def test_advance_to_cancelled_refunds_and_restocks(self, engine, order):
        uid, redemption = order
        cancelled = _advance(engine, redemption.id, S.CANCELLED, admin_notes="duplicate")
        assert cancelled.status == S.CANCELLED
        assert cancelled.cancel_reason == "duplicate"
        with Session(engine) as s:
            assert s.get(User, uid).current_exp == 1000

    def test_advance_to_refunded(self, engine, order):
        uid, redemption = order
        _advance(engine, redemption.id, S.APPROVED)
        refunded = _advance(engine, redemption.id, S.REFUNDED)
        assert refunded.status == S.REFUNDED
        with Session(engine) as s:
            assert s.get(User, uid).current_exp == 1000

    def test_terminal_cannot_advance(self, engine, order):
        _, redemption = order
        _advance(engine, redemption.id, S.CANCELLED)
        with pytest.raises(ConflictError) as exc_info:
            _advance(engine, redemption.id, S.APPROVED)
        assert exc_info.value.kind == ErrorKind.ALREADY_TERMINAL

    def test_digital_skips_shipping_steps(self, engine):
        uid = seed_user(engine, 2, exp=500)
        rid = seed_reward(engine, type=RewardType.BADGE, price_exp=10)
        redemption = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)
        with pytest.raises(ConflictError):
            _advance(engine, redemption.id, S.APPROVED)
        received = _advance(engine, redemption.id, S.RECEIVED)
        assert received.status == S.RECEIVED


class TestConfirmReceived:
    def test_only_owner_can_confirm(self, engine, order):
        _, redemption = order
        for target in (S.APPROVED, S.PROCESSING):
            _advance(engine, redemption.id, target)
        _advance(engine, redemption.id, S.SHIPPED, tracking_number="T1")
        _advance(engine, redemption.id, S.DELIVERED)
        with pytest.raises(ConflictError) as exc_info:
            fulfillment_service.confirm_received(engine, redemption.id, user_id=777)
        assert exc_info.value.kind == ErrorKind.NOT_OWNER

    def test_must_be_delivered(self, engine, order):
        uid, redemption = order
        with pytest.raises(ConflictError) as exc_info:
            fulfillment_service.confirm_received(engine, redemption.id, user_id=uid)
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    def test_digital_owner_confirms(self, engine):
        uid = seed_user(engine, 3, exp=500)
        rid = seed_reward(engine, type=RewardType.AVATAR, price_exp=10)
        redemption = redemption_service.redeem(engine, user_id=uid, reward_id=rid, now=T0)
        received = fulfillment_service.confirm_received(engine, redemption.id, user_id=uid)
        assert received.status == S.RECEIVED


class TestShippingManifest:
    def test_manifest_lists_orders_ready_to_ship(self, engine, order, address):
        uid, redemption = order
        still_pending = redemption_service.redeem(
            engine, user_id=uid, reward_id=redemption.reward_id,
            shipping_address=address, now=T0,
        )
        _advance(engine, redemption.id, S.APPROVED)

        text = fulfillment_service.export_shipping_manifest(engine)
        rows = list(csv.DictReader(io.StringIO(text)))

        assert [int(r["redemption_id"]) for r in rows] == [redemption.id]
        assert still_pending.id not in [int(r["redemption_id"]) for r in rows]
        row = rows[0]
        assert row["reward_name"] == "Plush Toy"
        assert row["full_name"] == "Somchai Jaidee"
        assert row["address"] == "99/1 Sukhumvit Rd Unit 4"
        assert row["postal_code"] == "10110"
        assert row["status"] == "APPROVED"
        assert row["created_at"] == "2026-06-01"

    def test_empty_manifest_has_headers(self, engine):
        text = fulfillment_service.export_shipping_manifest(engine)
        assert text.splitlines() == [",".join(fulfillment_service.MANIFEST_HEADERS)]
