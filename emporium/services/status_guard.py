"""
emporium.services.status_guard — Status-Guarded Redemption Writes
==================================================================

Every redemption status change is one conditional UPDATE::

    UPDATE redemptions SET status = :target, updated_at = :now, ...
    WHERE id = :id AND status = :expected

If another transaction moved the row first, zero rows match and
:class:`ConcurrentConflict` is raised, so stale writes are rejected
rather than applied and transitions stay monotonic.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from emporium.database.models import Redemption, RedemptionStatus
from emporium.errors import ConcurrentConflict, ErrorKind, NotFoundError


def load_redemption(session: Session, redemption_id: int) -> Redemption:
    redemption = session.get(Redemption, redemption_id)
    if redemption is None:
        raise NotFoundError(
            ErrorKind.REDEMPTION_NOT_FOUND, f"Redemption {redemption_id} not found"
        )
    return redemption


def transition(
    session: Session,
    redemption: Redemption,
    *,
    expected: str,
    target: RedemptionStatus,
    now: datetime,
    **values: Any,
) -> Redemption:
    """Move *redemption* from *expected* to *target*, stamping ``updated_at``.

    Extra column values (``tracking_number``, ``admin_notes``…) are written
    in the same statement.  The in-session object is refreshed afterwards.
    """
    result = session.execute(
        update(Redemption)
        .where(Redemption.id == redemption.id, Redemption.status == expected)
        .values(status=target.value, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentConflict(
            f"Redemption {redemption.id} is no longer {expected}"
        )
    session.refresh(redemption)
    return redemption
