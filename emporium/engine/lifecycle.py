"""
emporium.engine.lifecycle — Redemption Status Transition Rules
===============================================================

Pure rules for the fulfillment state machine::

    PENDING → APPROVED → PROCESSING → SHIPPED → DELIVERED → RECEIVED
       │                                          ▲
       └─► CANCELLED                 digital ─────┘ (created here)

    any non-terminal ──► REFUNDED   (admin, fulfillment failed)

Transitions are monotonic.  The services apply them with a
status-guarded UPDATE so a stale writer is rejected instead of applied.
"""

from __future__ import annotations

from datetime import datetime

from emporium.constants import TERMINAL_STATUSES, as_utc
from emporium.database.models import RedemptionStatus
from emporium.errors import ConflictError, ErrorKind

S = RedemptionStatus

# Administrative forward progression
FORWARD: dict[RedemptionStatus, RedemptionStatus] = {
    S.PENDING: S.APPROVED,
    S.APPROVED: S.PROCESSING,
    S.PROCESSING: S.SHIPPED,
    S.SHIPPED: S.DELIVERED,
    S.DELIVERED: S.RECEIVED,
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def next_status(current: str) -> RedemptionStatus | None:
    """The single forward step from *current*, or ``None`` when there is none."""
    return FORWARD.get(RedemptionStatus(current))


def check_forward(current: str, target: str) -> None:
    """Raise unless *target* is the forward step from *current*."""
    if is_terminal(current):
        raise ConflictError(
            ErrorKind.ALREADY_TERMINAL, f"Redemption is already {current}"
        )
    expected = next_status(current)
    if expected is None or expected != target:
        raise ConflictError(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot move from {current} to {target}"
            + (f" (next step is {expected})" if expected else ""),
        )


def is_boost_active(expires_at: datetime | None, now: datetime) -> bool:
    """A boost is active until ``expires_at``; evaluated lazily at read time."""
    if expires_at is None:
        return False
    return as_utc(now) < as_utc(expires_at)
