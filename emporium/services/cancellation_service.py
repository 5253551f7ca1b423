"""
emporium.services.cancellation_service — Compensating Transitions
==================================================================

Two ways out of a live redemption, each one transaction:

``cancel``
    Owner (or admin) withdraws a **physical** order that is still
    ``PENDING``.  Status → ``CANCELLED``, the full ``exp_cost`` is
    credited back and one unit of stock is returned.

``refund``
    Admin-only, for fulfillment that failed at any non-terminal stage.
    Status → ``REFUNDED``, the ``exp_cost`` is credited back; stock is
    *not* restored (the unit is considered consumed) and an entitlement
    granted by this redemption is revoked.

Both transitions are status-guarded, so a second attempt sees a
terminal row and fails with ``ALREADY_TERMINAL``: the credit is never
applied twice.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from emporium.constants import DEFAULT_CANCEL_REASON, DEFAULT_REFUND_NOTE, utcnow
from emporium.database.engine import get_session, retry_on_conflict
from emporium.database.models import LedgerReason, Redemption, RedemptionStatus, RewardType
from emporium.engine.lifecycle import is_terminal
from emporium.errors import ConflictError, ErrorKind, NotOwnerError
from emporium.services import ledger_service
from emporium.services.catalog_service import increment_stock, log_admin_action, row_to_dict
from emporium.services.status_guard import load_redemption, transition

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from emporium.engine.cache import CatalogCache

logger = logging.getLogger(__name__)


def _cancel_once(
    engine: Engine,
    redemption_id: int,
    requesting_user_id: int,
    reason: str | None,
    as_admin: bool,
    now: datetime,
) -> Redemption:
    with get_session(engine) as session:
        redemption = load_redemption(session, redemption_id)

        if not as_admin and redemption.user_id != requesting_user_id:
            raise NotOwnerError("This redemption belongs to someone else")
        if is_terminal(redemption.status):
            raise ConflictError(
                ErrorKind.ALREADY_TERMINAL, f"Redemption is already {redemption.status}"
            )
        if (
            redemption.reward_type != RewardType.PHYSICAL
            or redemption.status != RedemptionStatus.PENDING
        ):
            raise ConflictError(
                ErrorKind.NOT_CANCELLABLE,
                "Only physical rewards that are still pending can be cancelled",
            )

        before = row_to_dict(redemption)
        transition(
            session, redemption,
            expected=RedemptionStatus.PENDING.value,
            target=RedemptionStatus.CANCELLED,
            now=now,
            cancel_reason=(reason or "").strip() or DEFAULT_CANCEL_REASON,
        )
        ledger_service.apply_delta(
            session, redemption.user_id, redemption.exp_cost, LedgerReason.REFUND,
            redemption_id=redemption.id,
            note="cancelled",
        )
        increment_stock(session, redemption.reward_id)

        if as_admin:
            log_admin_action(
                session,
                actor_id=requesting_user_id,
                action_type="CANCEL",
                target_table="redemptions",
                target_id=str(redemption.id),
                before=before,
                after=row_to_dict(redemption),
                reason=reason,
            )

    logger.info(
        "Redemption %s cancelled by %s (%d EXP returned to user %s)",
        redemption_id, requesting_user_id, redemption.exp_cost, redemption.user_id,
    )
    return redemption


def cancel(
    engine: Engine,
    redemption_id: int,
    *,
    requesting_user_id: int,
    reason: str | None = None,
    as_admin: bool = False,
    cache: CatalogCache | None = None,
    attempts: int = 3,
    now: datetime | None = None,
) -> Redemption:
    """Cancel a pending physical redemption and credit its cost back.

    Raises
    ------
    NotFoundError
        ``REDEMPTION_NOT_FOUND``.
    ConflictError
        ``NOT_OWNER`` (unless *as_admin*), ``ALREADY_TERMINAL`` or
        ``NOT_CANCELLABLE``.
    """
    redemption = retry_on_conflict(
        _cancel_once, engine, redemption_id, requesting_user_id, reason, as_admin,
        now or utcnow(),
        attempts=attempts,
    )
    if cache is not None:
        cache.invalidate(redemption.reward_id)
    return redemption


def _refund_once(
    engine: Engine,
    redemption_id: int,
    actor_id: int,
    admin_notes: str | None,
    now: datetime,
) -> Redemption:
    # Deferred: fulfillment_service routes admin CANCELLED/REFUNDED here
    from emporium.services.fulfillment_service import revoke_entitlement

    with get_session(engine) as session:
        redemption = load_redemption(session, redemption_id)
        if is_terminal(redemption.status):
            raise ConflictError(
                ErrorKind.ALREADY_TERMINAL, f"Redemption is already {redemption.status}"
            )

        before = row_to_dict(redemption)
        note = (admin_notes or "").strip() or DEFAULT_REFUND_NOTE
        transition(
            session, redemption,
            expected=redemption.status,
            target=RedemptionStatus.REFUNDED,
            now=now,
            admin_notes=note,
        )
        ledger_service.apply_delta(
            session, redemption.user_id, redemption.exp_cost, LedgerReason.REFUND,
            redemption_id=redemption.id,
            note="refunded",
        )
        revoked = revoke_entitlement(session, redemption)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type="REFUND",
            target_table="redemptions",
            target_id=str(redemption.id),
            before=before,
            after=row_to_dict(redemption),
            reason=note,
        )

    logger.info(
        "Redemption %s refunded by %s (%d EXP, entitlement revoked=%s)",
        redemption_id, actor_id, redemption.exp_cost, revoked,
    )
    return redemption


def refund(
    engine: Engine,
    redemption_id: int,
    *,
    actor_id: int,
    admin_notes: str | None = None,
    attempts: int = 3,
    now: datetime | None = None,
) -> Redemption:
    """Admin refund of a non-terminal redemption; stock is not restored."""
    return retry_on_conflict(
        _refund_once, engine, redemption_id, actor_id, admin_notes, now or utcnow(),
        attempts=attempts,
    )
