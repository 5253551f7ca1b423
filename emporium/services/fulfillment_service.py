"""
emporium.services.fulfillment_service — Fulfillment Dispatcher
===============================================================

Two paths, chosen by the redemption's :mod:`~emporium.engine.effects`:

**Digital** (:class:`ItemGrant`, :class:`BoostGrant`)
    :func:`grant_effect` runs *inside* the redeem transaction.  It writes
    the entitlement row and, for boosts, the activation window.  No queue
    or worker: grants are pure data writes with no external dependency.
    Boost activity is evaluated lazily at the point of use
    (:func:`active_boosts`, :func:`effective_multiplier`).

**Physical** (:class:`ShippedGoods`)
    Advanced only by administrators through :func:`advance_redemption`:
    ``PENDING → APPROVED → PROCESSING → SHIPPED → DELIVERED``; ``SHIPPED``
    requires a tracking number.  The owner may confirm ``RECEIVED`` via
    :func:`confirm_received`.  :func:`export_shipping_manifest` hands the
    open orders to the external shipping actor as CSV.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from emporium.constants import MANIFEST_STATUSES, as_utc, is_digital, utcnow
from emporium.database.engine import get_session, retry_on_conflict
from emporium.database.models import (
    Entitlement,
    Redemption,
    RedemptionStatus,
    RewardType,
)
from emporium.engine.effects import BoostGrant, RewardEffect, ShippedGoods
from emporium.engine.lifecycle import check_forward, is_boost_active, is_terminal
from emporium.errors import ConflictError, ErrorKind, NotOwnerError
from emporium.services import cancellation_service
from emporium.services.catalog_service import log_admin_action, row_to_dict
from emporium.services.status_guard import load_redemption, transition

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# A redemption in one of these no longer backs an entitlement
_RELEASED_STATUSES = (RedemptionStatus.CANCELLED.value, RedemptionStatus.REFUNDED.value)

MANIFEST_HEADERS = [
    "redemption_id",
    "created_at",
    "reward_name",
    "full_name",
    "phone",
    "address",
    "sub_district",
    "district",
    "province",
    "postal_code",
    "status",
]


# ---------------------------------------------------------------------------
# Digital path — runs inside the caller's transaction
# ---------------------------------------------------------------------------
def grant_entitlement(
    session: Session,
    *,
    user_id: int,
    item_id: str,
    reward_type: str,
    redemption_id: int | None,
    now: datetime,
) -> bool:
    """Add *item_id* to the user's entitlements.  Returns False if already owned."""
    if session.get(Entitlement, (user_id, item_id)) is not None:
        return False
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(Entitlement(
                user_id=user_id,
                item_id=item_id,
                reward_type=reward_type,
                redemption_id=redemption_id,
                granted_at=now,
            ))
            session.flush()
    except IntegrityError:
        # A concurrent grant of the same item won; ownership is what matters.
        return False
    return True


def grant_effect(
    session: Session,
    redemption: Redemption,
    effect: RewardEffect,
    *,
    now: datetime,
) -> None:
    """Fulfill a digital effect for a freshly inserted redemption."""
    if isinstance(effect, ShippedGoods):
        return

    grant_entitlement(
        session,
        user_id=redemption.user_id,
        item_id=effect.item_id,
        reward_type=effect.reward_type.value,
        redemption_id=redemption.id,
        now=now,
    )

    if isinstance(effect, BoostGrant):
        redemption.activated_at, redemption.expires_at = effect.window(now)
        redemption.boost_multiplier = effect.multiplier


def revoke_entitlement(session: Session, redemption: Redemption) -> bool:
    """Remove the entitlement this redemption granted, if it still owns it.

    When another live redemption of the same item exists the entitlement is
    handed over to it instead of being deleted.  Returns True only when the
    row was deleted.
    """
    if not redemption.item_id:
        return False
    ent = session.get(Entitlement, (redemption.user_id, redemption.item_id))
    if ent is None or ent.redemption_id != redemption.id:
        return False

    successor = session.scalars(
        select(Redemption.id)
        .where(
            Redemption.user_id == redemption.user_id,
            Redemption.item_id == redemption.item_id,
            Redemption.id != redemption.id,
            Redemption.status.not_in(_RELEASED_STATUSES),
        )
        .order_by(Redemption.created_at, Redemption.id)
        .limit(1)
    ).first()
    if successor is not None:
        ent.redemption_id = successor
        logger.info(
            "Entitlement %s for user %s moved from redemption %s to %s",
            redemption.item_id, redemption.user_id, redemption.id, successor,
        )
        return False

    session.delete(ent)
    return True


# ---------------------------------------------------------------------------
# Boost reads — lazily evaluated, no expiry worker
# ---------------------------------------------------------------------------
def active_boosts(
    engine: Engine, user_id: int, *, now: datetime | None = None,
) -> list[Redemption]:
    """Boost redemptions whose window contains *now*."""
    now = now or utcnow()
    with get_session(engine) as session:
        rows = session.scalars(
            select(Redemption)
            .where(
                Redemption.user_id == user_id,
                Redemption.reward_type == RewardType.BOOST.value,
                Redemption.status.in_([
                    RedemptionStatus.DELIVERED.value,
                    RedemptionStatus.RECEIVED.value,
                ]),
                Redemption.expires_at.is_not(None),
            )
            .order_by(Redemption.expires_at)
        ).all()
        return [r for r in rows if is_boost_active(r.expires_at, now)]


def effective_multiplier(
    engine: Engine, user_id: int, *, now: datetime | None = None,
) -> float:
    """The strongest active boost multiplier, or 1.0 when none is active."""
    boosts = active_boosts(engine, user_id, now=now)
    return max((b.boost_multiplier or 1.0 for b in boosts), default=1.0)


def list_entitlements(engine: Engine, user_id: int) -> list[Entitlement]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(Entitlement)
            .where(Entitlement.user_id == user_id)
            .order_by(Entitlement.granted_at, Entitlement.item_id)
        ).all())


# ---------------------------------------------------------------------------
# Physical path — administrative progression
# ---------------------------------------------------------------------------
def _advance_once(
    engine: Engine,
    redemption_id: int,
    target: RedemptionStatus,
    *,
    actor_id: int,
    tracking_number: str | None,
    admin_notes: str | None,
    now: datetime,
) -> Redemption:
    with get_session(engine) as session:
        redemption = load_redemption(session, redemption_id)
        current = redemption.status

        check_forward(current, target)
        if is_digital(redemption.reward_type) and target != RedemptionStatus.RECEIVED:
            # Digital rows skip the shipping steps; APPROVED ones are repaired, not advanced
            raise ConflictError(
                ErrorKind.INVALID_TRANSITION,
                f"{redemption.reward_type} redemptions do not go through {target}",
            )

        values: dict = {}
        tracking = (tracking_number or "").strip() or None
        if target == RedemptionStatus.SHIPPED:
            tracking = tracking or redemption.tracking_number
            if not tracking:
                raise ConflictError(
                    ErrorKind.TRACKING_REQUIRED, "A tracking number is required to ship"
                )
        if tracking:
            values["tracking_number"] = tracking
        if admin_notes:
            values["admin_notes"] = admin_notes

        before = row_to_dict(redemption)
        transition(
            session, redemption,
            expected=current, target=target, now=now, **values,
        )
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type="ADVANCE",
            target_table="redemptions",
            target_id=str(redemption.id),
            before=before,
            after=row_to_dict(redemption),
            reason=admin_notes,
        )

    logger.info(
        "Redemption %s advanced %s → %s by %s",
        redemption_id, current, target.value, actor_id,
    )
    return redemption


def advance_redemption(
    engine: Engine,
    redemption_id: int,
    next_status: RedemptionStatus | str,
    *,
    actor_id: int,
    tracking_number: str | None = None,
    admin_notes: str | None = None,
    attempts: int = 3,
    now: datetime | None = None,
) -> Redemption:
    """Administrative status change.

    Forward steps go through the lifecycle rules.  ``CANCELLED`` and
    ``REFUNDED`` are compensating transitions and are delegated to
    :mod:`~emporium.services.cancellation_service` so their economic
    effects (credit, stock) are applied in the same transaction.
    """
    target = RedemptionStatus(next_status)
    now = now or utcnow()

    if target == RedemptionStatus.CANCELLED:
        return cancellation_service.cancel(
            engine, redemption_id,
            requesting_user_id=actor_id,
            reason=admin_notes,
            as_admin=True,
            attempts=attempts,
            now=now,
        )
    if target == RedemptionStatus.REFUNDED:
        return cancellation_service.refund(
            engine, redemption_id,
            actor_id=actor_id,
            admin_notes=admin_notes,
            attempts=attempts,
            now=now,
        )

    return retry_on_conflict(
        _advance_once, engine, redemption_id, target,
        actor_id=actor_id,
        tracking_number=tracking_number,
        admin_notes=admin_notes,
        now=now,
        attempts=attempts,
    )


def _confirm_once(
    engine: Engine, redemption_id: int, user_id: int, now: datetime,
) -> Redemption:
    with get_session(engine) as session:
        redemption = load_redemption(session, redemption_id)
        if redemption.user_id != user_id:
            raise NotOwnerError("This redemption belongs to someone else")
        if is_terminal(redemption.status):
            raise ConflictError(
                ErrorKind.ALREADY_TERMINAL, f"Redemption is already {redemption.status}"
            )
        if redemption.status != RedemptionStatus.DELIVERED:
            raise ConflictError(
                ErrorKind.INVALID_TRANSITION, "Only delivered rewards can be confirmed"
            )
        transition(
            session, redemption,
            expected=RedemptionStatus.DELIVERED.value,
            target=RedemptionStatus.RECEIVED,
            now=now,
        )
    logger.info("Redemption %s confirmed received by user %s", redemption_id, user_id)
    return redemption


def confirm_received(
    engine: Engine,
    redemption_id: int,
    *,
    user_id: int,
    attempts: int = 3,
    now: datetime | None = None,
) -> Redemption:
    """Owner confirms a ``DELIVERED`` redemption as ``RECEIVED``."""
    return retry_on_conflict(
        _confirm_once, engine, redemption_id, user_id, now or utcnow(),
        attempts=attempts,
    )


# ---------------------------------------------------------------------------
# Shipping manifest for the external carrier
# ---------------------------------------------------------------------------
def export_shipping_manifest(engine: Engine) -> str:
    """CSV of physical redemptions waiting to ship (APPROVED / PROCESSING)."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(Redemption)
            .where(
                Redemption.reward_type == RewardType.PHYSICAL.value,
                Redemption.status.in_([s.value for s in MANIFEST_STATUSES]),
            )
            .order_by(Redemption.created_at, Redemption.id)
        ).all()

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(MANIFEST_HEADERS)
    for r in rows:
        addr = r.shipping_address or {}
        if not addr:
            continue
        street = f"{addr.get('address_line1', '')} {addr.get('address_line2', '')}".strip()
        created = as_utc(r.created_at)
        writer.writerow([
            r.id,
            created.date().isoformat() if created else "",
            r.reward_name,
            addr.get("full_name", ""),
            addr.get("phone", ""),
            street,
            addr.get("sub_district", ""),
            addr.get("district", ""),
            addr.get("province", ""),
            addr.get("postal_code", ""),
            r.status,
        ])
    return buf.getvalue()
