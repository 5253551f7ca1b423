"""
emporium.engine.eligibility — Redemption Eligibility Validator
===============================================================

Pure, read-only rule check over a catalog row, a user's balance/level,
and how many live redemptions of the reward the user already holds.
No DB I/O — callers pass the count in.

Checks run in a fixed order and stop at the first failure:

    1. reward is active                       → INACTIVE
    2. level >= required_level (if set)       → INSUFFICIENT_LEVEL
    3. current_exp >= price_exp               → INSUFFICIENT_BALANCE
    4. stock > 0 (if finite)                  → OUT_OF_STOCK
    5. live redemptions < limit_per_user      → PER_USER_LIMIT_EXCEEDED

This is advisory.  The redemption transaction re-checks stock, balance
and the per-user limit at commit time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from emporium.errors import EligibilityError, ErrorKind

if TYPE_CHECKING:
    from emporium.database.models import Reward, User

# Fields a shipping address must carry (address_line2 is optional)
REQUIRED_ADDRESS_FIELDS: tuple[str, ...] = (
    "full_name",
    "phone",
    "address_line1",
    "sub_district",
    "district",
    "province",
    "postal_code",
)


def validate(user: User, reward: Reward, redemption_count: int) -> None:
    """Raise :class:`EligibilityError` if *user* may not redeem *reward*.

    Parameters
    ----------
    user : the redeeming user (``level``, ``current_exp``)
    reward : the catalog row
    redemption_count : the user's non-cancelled redemptions of this reward
    """
    if not reward.is_active:
        raise EligibilityError(
            ErrorKind.INACTIVE, f"Reward '{reward.name}' is no longer available"
        )

    if reward.required_level is not None and user.level < reward.required_level:
        raise EligibilityError(
            ErrorKind.INSUFFICIENT_LEVEL,
            f"Requires level {reward.required_level} (you are level {user.level})",
        )

    if user.current_exp < reward.price_exp:
        raise EligibilityError(
            ErrorKind.INSUFFICIENT_BALANCE,
            f"Not enough EXP (needs {reward.price_exp}, have {user.current_exp})",
        )

    if reward.stock is not None and reward.stock <= 0:
        raise EligibilityError(ErrorKind.OUT_OF_STOCK, f"'{reward.name}' is out of stock")

    if reward.limit_per_user is not None and redemption_count >= reward.limit_per_user:
        raise EligibilityError(
            ErrorKind.PER_USER_LIMIT_EXCEEDED,
            f"Limit of {reward.limit_per_user} per user reached",
        )


def validate_shipping(reward: Reward, address: dict[str, Any] | None) -> dict[str, Any] | None:
    """Check the shipping address against the reward type.

    Returns the normalized address (stripped strings, empty optional
    fields dropped), or ``None`` for rewards that don't ship.
    """
    if not reward.requires_shipping:
        return None

    if not address:
        raise EligibilityError(
            ErrorKind.SHIPPING_ADDRESS_REQUIRED, "A shipping address is required"
        )

    missing = [
        key for key in REQUIRED_ADDRESS_FIELDS
        if not str(address.get(key) or "").strip()
    ]
    if missing:
        raise EligibilityError(
            ErrorKind.SHIPPING_ADDRESS_REQUIRED,
            f"Shipping address is missing: {', '.join(missing)}",
        )

    normalized = {key: str(address[key]).strip() for key in REQUIRED_ADDRESS_FIELDS}
    line2 = str(address.get("address_line2") or "").strip()
    if line2:
        normalized["address_line2"] = line2
    return normalized
