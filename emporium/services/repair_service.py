"""
emporium.services.repair_service — Digital Redemption Consistency Repair
=========================================================================

Digital rewards are fulfilled in the creating transaction, so a digital
redemption sitting at ``APPROVED`` can only come from data written
before that rule (or by hand).  :func:`scan` finds those rows and moves
each one to ``DELIVERED``:

* the status change is guarded on ``status = 'APPROVED'`` so a row is
  corrected at most once, even with two repair runs racing;
* ``admin_notes`` gets an ``auto-corrected`` marker;
* BOOST rows missing their window get ``activated_at = now`` and
  ``expires_at = now + duration``;
* the owning entitlement is written if it is missing.

A second run over the same data finds nothing and reports ``count = 0``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from emporium.constants import (
    DEFAULT_BOOST_MINUTES,
    DEFAULT_BOOST_MULTIPLIER,
    DIGITAL_TYPES,
    REPAIR_NOTE,
    utcnow,
)
from emporium.database.engine import get_session
from emporium.database.models import Redemption, RedemptionStatus, Reward, RewardType
from emporium.errors import ConcurrentConflict
from emporium.services.catalog_service import log_admin_action, row_to_dict
from emporium.services.fulfillment_service import grant_entitlement
from emporium.services.status_guard import transition

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Actor recorded in admin_log when the repair runs unattended
SYSTEM_ACTOR_ID = 0


def _note(existing: str | None) -> str:
    if existing:
        return f"{existing} | {REPAIR_NOTE}"
    return REPAIR_NOTE


def scan(
    engine: Engine,
    *,
    reward_types: Iterable[RewardType | str] = DIGITAL_TYPES,
    dry_run: bool = False,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Correct digital redemptions stranded at ``APPROVED``.

    Parameters
    ----------
    reward_types : digital types to scan (physical types are ignored)
    dry_run : report what would change without writing anything
    actor_id : admin recorded in ``admin_log``; defaults to the system actor

    Returns
    -------
    dict
        ``{"count": int, "dry_run": bool, "corrected": [{"redemption_id",
        "user_id", "reward_type", "item_id"}, ...]}``
    """
    now = now or utcnow()
    types = [RewardType(t).value for t in reward_types if RewardType(t) in DIGITAL_TYPES]
    actor = SYSTEM_ACTOR_ID if actor_id is None else actor_id
    corrected: list[dict[str, Any]] = []

    if not types:
        return {"count": 0, "dry_run": dry_run, "corrected": corrected}

    with get_session(engine) as session:
        stranded = session.scalars(
            select(Redemption)
            .where(
                Redemption.reward_type.in_(types),
                Redemption.status == RedemptionStatus.APPROVED.value,
            )
            .order_by(Redemption.id)
        ).all()

        for redemption in stranded:
            entry = {
                "redemption_id": redemption.id,
                "user_id": redemption.user_id,
                "reward_type": redemption.reward_type,
                "item_id": redemption.item_id,
            }
            if dry_run:
                corrected.append(entry)
                continue

            values: dict[str, Any] = {"admin_notes": _note(redemption.admin_notes)}
            if redemption.reward_type == RewardType.BOOST and redemption.expires_at is None:
                reward = session.get(Reward, redemption.reward_id)
                minutes = (reward.boost_duration_minutes if reward else None) or DEFAULT_BOOST_MINUTES
                values["activated_at"] = now
                values["expires_at"] = now + timedelta(minutes=minutes)
                if redemption.boost_multiplier is None:
                    values["boost_multiplier"] = (
                        (reward.boost_multiplier if reward else None) or DEFAULT_BOOST_MULTIPLIER
                    )

            before = row_to_dict(redemption)
            try:
                # Zero rows matched means nothing was written, so no rollback is needed
                transition(
                    session, redemption,
                    expected=RedemptionStatus.APPROVED.value,
                    target=RedemptionStatus.DELIVERED,
                    now=now,
                    **values,
                )
            except ConcurrentConflict:
                logger.info("Repair: redemption %s already moved, skipping", redemption.id)
                continue

            if redemption.item_id:
                grant_entitlement(
                    session,
                    user_id=redemption.user_id,
                    item_id=redemption.item_id,
                    reward_type=redemption.reward_type,
                    redemption_id=redemption.id,
                    now=now,
                )
            log_admin_action(
                session,
                actor_id=actor,
                action_type="REPAIR",
                target_table="redemptions",
                target_id=str(redemption.id),
                before=before,
                after=row_to_dict(redemption),
                reason=REPAIR_NOTE,
            )
            corrected.append(entry)

    logger.info(
        "Consistency repair %s: %d digital redemption(s) %s",
        "dry run" if dry_run else "run",
        len(corrected),
        "would be corrected" if dry_run else "corrected",
    )
    return {"count": len(corrected), "dry_run": dry_run, "corrected": corrected}
