"""
emporium.services.redemption_service — The Redeem Transaction
==============================================================

``redeem`` is the single write path that turns EXP into a reward.  One
attempt is one database transaction:

  1. Load user and reward (``*_NOT_FOUND``)
  2. Count the user's live redemptions of the reward
  3. Advisory checks: eligibility, shipping address
  4. Insert the Redemption with its catalog snapshot
  5. Debit ``price_exp`` through the ledger (guarded: balance >= 0)
  6. Take one unit of stock (guarded: stock > 0; skipped when unlimited)
  7. Re-count live redemptions including this one against the limit
  8. Fulfill the digital effect (entitlement, boost window)
  9. Commit, then invalidate the catalog cache

If a guard in 5/6 loses a race, the attempt raises
``ConcurrentConflict``, the transaction rolls back, and
:func:`~emporium.database.engine.retry_on_conflict` runs the whole
attempt again from step 1.  A rerun that now sees zero stock fails with
``OUT_OF_STOCK`` like any other eligibility failure.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from emporium.constants import DEFAULT_BOOST_MINUTES, DEFAULT_BOOST_MULTIPLIER, utcnow
from emporium.database.engine import get_session, retry_on_conflict
from emporium.database.models import LedgerReason, Redemption, RedemptionStatus
from emporium.engine import eligibility
from emporium.engine.effects import effect_for, initial_status
from emporium.errors import EligibilityError, ErrorKind
from emporium.services import ledger_service
from emporium.services.catalog_service import decrement_stock, get_reward
from emporium.services.fulfillment_service import grant_effect
from emporium.services.status_guard import load_redemption

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from emporium.config import EmporiumConfig
    from emporium.engine.cache import CatalogCache

logger = logging.getLogger(__name__)

# Statuses that free a slot under limit_per_user
_RELEASED = (RedemptionStatus.CANCELLED.value,)


def count_live_redemptions(session: Session, user_id: int, reward_id: int) -> int:
    """Redemptions of *reward_id* by *user_id* that were not cancelled.

    Refunded redemptions still count: a refund returns the EXP but does
    not hand the slot back.
    """
    return session.scalar(
        select(func.count(Redemption.id)).where(
            Redemption.user_id == user_id,
            Redemption.reward_id == reward_id,
            Redemption.status.not_in(_RELEASED),
        )
    ) or 0


def _redeem_once(
    engine: Engine,
    user_id: int,
    reward_id: int,
    shipping_address: dict[str, Any] | None,
    now: datetime,
    boost_minutes: int,
    boost_multiplier: float,
) -> Redemption:
    with get_session(engine) as session:
        user = ledger_service.get_user(session, user_id)
        reward = get_reward(session, reward_id)
        count = count_live_redemptions(session, user_id, reward_id)

        eligibility.validate(user, reward, count)
        address = eligibility.validate_shipping(reward, shipping_address)
        try:
            effect = effect_for(
                reward,
                default_boost_minutes=boost_minutes,
                default_boost_multiplier=boost_multiplier,
            )
        except ValueError as exc:
            raise EligibilityError(ErrorKind.INVALID_REWARD, str(exc)) from exc

        redemption = Redemption(
            user_id=user_id,
            reward_id=reward.id,
            item_id=reward.item_id,
            reward_type=reward.type,
            reward_name=reward.name,
            reward_image_url=reward.image_url,
            exp_cost=reward.price_exp,
            status=initial_status(effect).value,
            shipping_address=address,
            created_at=now,
            updated_at=now,
        )
        session.add(redemption)
        session.flush()

        ledger_service.apply_delta(
            session, user_id, -reward.price_exp, LedgerReason.REDEMPTION,
            redemption_id=redemption.id,
        )
        decrement_stock(session, reward.id)

        if reward.limit_per_user is not None:
            if count_live_redemptions(session, user_id, reward_id) > reward.limit_per_user:
                raise EligibilityError(
                    ErrorKind.PER_USER_LIMIT_EXCEEDED,
                    f"Limit of {reward.limit_per_user} per user reached",
                )

        grant_effect(session, redemption, effect, now=now)
        session.flush()
        session.refresh(redemption)

    logger.info(
        "User %s redeemed reward %s (%s) for %d EXP → redemption %s [%s]",
        user_id, reward_id, redemption.reward_type, redemption.exp_cost,
        redemption.id, redemption.status,
    )
    return redemption


def redeem(
    engine: Engine,
    *,
    user_id: int,
    reward_id: int,
    shipping_address: dict[str, Any] | None = None,
    cache: CatalogCache | None = None,
    config: EmporiumConfig | None = None,
    now: datetime | None = None,
) -> Redemption:
    """Exchange the user's EXP for *reward_id*.

    Returns the committed :class:`Redemption`: ``DELIVERED`` for digital
    rewards (entitlement and boost window already written) and
    ``PENDING`` for physical ones.

    Raises
    ------
    NotFoundError
        Unknown user or reward.
    EligibilityError
        Any validation failure, surfaced without retry.
    ConcurrentConflict
        The retry budget ran out while racing other writers.
    """
    attempts = config.max_conflict_retries if config else 3
    redemption = retry_on_conflict(
        _redeem_once, engine, user_id, reward_id, shipping_address,
        now or utcnow(),
        config.default_boost_minutes if config else DEFAULT_BOOST_MINUTES,
        config.default_boost_multiplier if config else DEFAULT_BOOST_MULTIPLIER,
        attempts=attempts,
    )
    if cache is not None:
        cache.invalidate(reward_id)
    return redemption


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_redemption(engine: Engine, redemption_id: int) -> Redemption:
    with get_session(engine) as session:
        return load_redemption(session, redemption_id)


def list_user_redemptions(engine: Engine, user_id: int, *, limit: int = 50) -> list[Redemption]:
    """A user's redemption history, newest first."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(Redemption)
            .where(Redemption.user_id == user_id)
            .order_by(Redemption.created_at.desc(), Redemption.id.desc())
            .limit(limit)
        ).all())


def list_redemptions(
    engine: Engine,
    *,
    status: RedemptionStatus | str | None = None,
    reward_type: str | None = None,
    limit: int = 50,
) -> list[Redemption]:
    """Admin queue, newest first, optionally filtered by status and type."""
    with get_session(engine) as session:
        stmt = select(Redemption)
        if status is not None:
            stmt = stmt.where(Redemption.status == RedemptionStatus(status).value)
        if reward_type is not None:
            stmt = stmt.where(Redemption.reward_type == reward_type)
        stmt = stmt.order_by(Redemption.created_at.desc(), Redemption.id.desc()).limit(limit)
        return list(session.scalars(stmt).all())
