"""
emporium.services.ledger_service — Balance Ledger
==================================================

``users.current_exp`` only ever changes through :func:`apply_delta`, which
does two things inside the caller's transaction:

1. a guarded ``UPDATE users SET current_exp = current_exp + :delta
   WHERE id = :uid AND current_exp + :delta >= 0`` — the commit-time
   recheck of the balance; zero rows means another transaction spent
   the EXP first and :class:`ConcurrentConflict` is raised;
2. an append-only ``ledger_entries`` row carrying the delta, the reason
   and the resulting balance.

Because both happen in one transaction, ``SUM(ledger.delta)`` per user
always equals ``current_exp``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from emporium.database.engine import get_session
from emporium.database.models import LedgerEntry, LedgerReason, User
from emporium.errors import ConcurrentConflict, ErrorKind, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class BalanceView:
    """A user's balance plus their most recent ledger entries."""

    user_id: int
    level: int
    current_exp: int
    ledger_total: int
    entries: list[LedgerEntry] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.current_exp == self.ledger_total


# ---------------------------------------------------------------------------
# Transaction-scoped helpers (caller owns the session)
# ---------------------------------------------------------------------------
def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, f"User {user_id} not found")
    return user


def apply_delta(
    session: Session,
    user_id: int,
    delta: int,
    reason: LedgerReason,
    *,
    redemption_id: int | None = None,
    note: str | None = None,
) -> int:
    """Apply *delta* to the user's balance and append a ledger entry.

    Returns the new balance.  Raises :class:`ConcurrentConflict` if the
    balance would go negative at commit time.
    """
    result = session.execute(
        update(User)
        .where(User.id == user_id, User.current_exp + delta >= 0)
        .values(current_exp=User.current_exp + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentConflict(
            f"Balance for user {user_id} changed before {reason.value} could apply"
        )

    balance = session.scalar(select(User.current_exp).where(User.id == user_id))
    session.add(LedgerEntry(
        user_id=user_id,
        delta=delta,
        reason=reason.value,
        balance_after=balance,
        redemption_id=redemption_id,
        note=note,
    ))
    logger.debug(
        "Ledger: user=%s delta=%+d reason=%s balance=%s",
        user_id, delta, reason.value, balance,
    )
    return balance


def ledger_total(session: Session, user_id: int) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.delta), 0))
        .where(LedgerEntry.user_id == user_id)
    ) or 0


# ---------------------------------------------------------------------------
# Engine-level operations
# ---------------------------------------------------------------------------
def get_or_create_user(
    session: Session, user_id: int, display_name: str, level: int = 1,
) -> User:
    """Fetch or insert a User row (new users start at 0 EXP)."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, display_name=display_name, level=level, current_exp=0)
        session.add(user)
        session.flush()
    return user


def award_exp(
    engine: Engine,
    *,
    user_id: int,
    amount: int,
    display_name: str = "Unknown",
    reason: str = "",
    actor_id: int | None = None,
    multiplier: float = 1.0,
) -> User:
    """Credit EXP earned through gameplay or granted by an admin.

    *multiplier* is the caller's active boost multiplier; the credited
    amount is ``floor(amount * multiplier)``.
    """
    if amount <= 0:
        raise ValueError("Award amount must be positive")
    if multiplier < 1:
        raise ValueError("Multiplier must be at least 1")
    credited = int(amount * multiplier)

    with get_session(engine) as session:
        get_or_create_user(session, user_id, display_name)
        note = reason or None
        if actor_id is not None:
            note = f"[admin {actor_id}] {reason}".strip()
        if multiplier != 1.0:
            note = f"{note or ''} (x{multiplier:g})".strip()
        apply_delta(session, user_id, credited, LedgerReason.MANUAL_AWARD, note=note)
        session.flush()
        user = session.get(User, user_id)
        session.refresh(user)
        logger.info("Awarded %d EXP to user %s (%s)", credited, user_id, reason or "-")
        return user


def set_level(engine: Engine, *, user_id: int, level: int) -> User:
    """Record the player's level as reported by the game."""
    if level < 1:
        raise ValueError("Level must be at least 1")
    with get_session(engine) as session:
        user = get_user(session, user_id)
        user.level = level
        session.flush()
        session.refresh(user)
        return user


def get_balance(engine: Engine, user_id: int, *, limit: int = 20) -> BalanceView:
    """Uncached balance read plus the newest *limit* ledger entries."""
    with get_session(engine) as session:
        user = get_user(session, user_id)
        entries = list(session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.id.desc())
            .limit(limit)
        ).all())
        return BalanceView(
            user_id=user.id,
            level=user.level,
            current_exp=user.current_exp,
            ledger_total=ledger_total(session, user_id),
            entries=entries,
        )
