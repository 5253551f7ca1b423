"""
tests/test_ledger_service.py — Balance Ledger Tests
====================================================
"""

from __future__ import annotations

import pytest
from conftest import seed_user
from sqlalchemy.orm import Session

from emporium.database.models import LedgerReason, User
from emporium.errors import ConcurrentConflict, NotFoundError
from emporium.services import ledger_service


@pytest.fixture
def engine(db_engine):
    return db_engine


class TestApplyDelta:
    def test_debit_and_credit_are_recorded(self, engine):
        uid = seed_user(engine, exp=100)
        with Session(engine) as s:
            assert ledger_service.apply_delta(s, uid, -40, LedgerReason.REDEMPTION) == 60
            assert ledger_service.apply_delta(s, uid, 15, LedgerReason.REFUND) == 75
            s.commit()
            assert ledger_service.ledger_total(s, uid) == 75

    def test_overdraft_is_a_conflict(self, engine):
        uid = seed_user(engine, exp=10)
        with Session(engine) as s:
            with pytest.raises(ConcurrentConflict):
                ledger_service.apply_delta(s, uid, -11, LedgerReason.REDEMPTION)
            s.rollback()
            assert s.get(User, uid).current_exp == 10


class TestAwardExp:
    def test_award_creates_user(self, engine):
        user = ledger_service.award_exp(engine, user_id=55, amount=300, display_name="Nok")
        assert user.current_exp == 300
        assert user.display_name == "Nok"
        assert ledger_service.get_balance(engine, 55).consistent

    def test_boosted_award_is_floored(self, engine):
        seed_user(engine, 56, exp=0)
        user = ledger_service.award_exp(engine, user_id=56, amount=15, multiplier=1.5)
        assert user.current_exp == 22
        entry = ledger_service.get_balance(engine, 56).entries[0]
        assert entry.delta == 22
        assert "x1.5" in entry.note

    def test_admin_award_note(self, engine):
        ledger_service.award_exp(engine, user_id=57, amount=5, reason="event", actor_id=1)
        entry = ledger_service.get_balance(engine, 57).entries[0]
        assert entry.note == "[admin 1] event"
        assert entry.reason == LedgerReason.MANUAL_AWARD

    @pytest.mark.parametrize("amount, multiplier", [(0, 1.0), (-5, 1.0), (10, 0.5)])
    def test_invalid_awards(self, engine, amount, multiplier):
        with pytest.raises(ValueError):
            ledger_service.award_exp(engine, user_id=58, amount=amount, multiplier=multiplier)


class TestLevelAndBalance:
    def test_set_level(self, engine):
        uid = seed_user(engine, level=1)
        assert ledger_service.set_level(engine, user_id=uid, level=7).level == 7

    def test_set_level_unknown_user(self, engine):
        with pytest.raises(NotFoundError):
            ledger_service.set_level(engine, user_id=404, level=2)

    def test_balance_limit(self, engine):
        uid = seed_user(engine, exp=10)
        for _ in range(5):
            ledger_service.award_exp(engine, user_id=uid, amount=1)
        view = ledger_service.get_balance(engine, uid, limit=3)
        assert view.current_exp == 15
        assert view.ledger_total == 15
        assert len(view.entries) == 3
