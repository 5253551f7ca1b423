"""
emporium.errors — Typed Redemption Error Taxonomy
==================================================

Every expected failure of the economy engine is raised as a subclass of
:class:`RedemptionError` carrying an :class:`ErrorKind`.  Validation and
conflict errors are ordinary outcomes surfaced verbatim to the caller;
only :class:`ConcurrentConflict` is retried automatically.

Hierarchy::

    RedemptionError
    ├── EligibilityError     INACTIVE, INSUFFICIENT_LEVEL, INSUFFICIENT_BALANCE,
    │                        OUT_OF_STOCK, PER_USER_LIMIT_EXCEEDED,
    │                        SHIPPING_ADDRESS_REQUIRED, INVALID_REWARD
    ├── ConflictError        ALREADY_TERMINAL, NOT_CANCELLABLE,
    │   │                    INVALID_TRANSITION, TRACKING_REQUIRED
    │   ├── NotOwnerError        NOT_OWNER
    │   └── ConcurrentConflict   CONCURRENT_CONFLICT
    ├── NotFoundError        REWARD_NOT_FOUND, REDEMPTION_NOT_FOUND, USER_NOT_FOUND
    └── StoreUnavailable     STORE_UNAVAILABLE
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    # Validation
    INACTIVE = "INACTIVE"
    INSUFFICIENT_LEVEL = "INSUFFICIENT_LEVEL"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PER_USER_LIMIT_EXCEEDED = "PER_USER_LIMIT_EXCEEDED"
    SHIPPING_ADDRESS_REQUIRED = "SHIPPING_ADDRESS_REQUIRED"
    INVALID_REWARD = "INVALID_REWARD"
    # Conflict
    CONCURRENT_CONFLICT = "CONCURRENT_CONFLICT"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    NOT_CANCELLABLE = "NOT_CANCELLABLE"
    NOT_OWNER = "NOT_OWNER"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    TRACKING_REQUIRED = "TRACKING_REQUIRED"
    # Lookup
    REWARD_NOT_FOUND = "REWARD_NOT_FOUND"
    REDEMPTION_NOT_FOUND = "REDEMPTION_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    # System
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class RedemptionError(Exception):
    """Base class for every typed failure raised by the engine."""

    status_code: int = 400

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ").capitalize()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value}>"


class EligibilityError(RedemptionError):
    status_code = 422


class ConflictError(RedemptionError):
    status_code = 409


class NotOwnerError(ConflictError):
    status_code = 403

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorKind.NOT_OWNER, message)


class ConcurrentConflict(ConflictError):
    """A commit-time precondition no longer held; safe to retry."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorKind.CONCURRENT_CONFLICT, message)


class NotFoundError(RedemptionError):
    status_code = 404


class StoreUnavailable(RedemptionError):
    status_code = 503

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorKind.STORE_UNAVAILABLE, message)
