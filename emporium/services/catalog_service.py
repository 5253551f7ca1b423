"""
emporium.services.catalog_service — Audited Catalog Mutations
==============================================================

Every admin write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Validate and apply the change
  4. Write admin_log with before/after JSON
  5. Commit, then invalidate the read-path catalog cache

Rewards are never hard-deleted: redemptions reference them, so
"delete" means ``is_active = False``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from emporium.constants import DIGITAL_TYPES
from emporium.database.engine import get_session
from emporium.database.models import AdminLog, Reward, RewardType
from emporium.errors import ConcurrentConflict, EligibilityError, ErrorKind, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from emporium.engine.cache import CatalogCache

logger = logging.getLogger(__name__)

EDITABLE_FIELDS: frozenset[str] = frozenset({
    "type",
    "name",
    "description",
    "image_url",
    "item_id",
    "price_exp",
    "stock",
    "required_level",
    "limit_per_user",
    "is_active",
    "boost_duration_minutes",
    "boost_multiplier",
})

_BOOST_FIELDS = ("boost_duration_minutes", "boost_multiplier")


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _invalid(message: str) -> EligibilityError:
    return EligibilityError(ErrorKind.INVALID_REWARD, message)


def validate_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Check a full set of reward fields and return them normalized.

    * name and description must be non-empty
    * price >= 0; stock, when finite, >= 0
    * digital rewards need an ``item_id`` (the entitlement key)
    * BOOST needs duration >= 1 minute and multiplier >= 1;
      other types have their boost parameters cleared
    """
    out = dict(fields)

    try:
        reward_type = RewardType(out.get("type"))
    except ValueError:
        raise _invalid(f"Unknown reward type: {out.get('type')!r}") from None
    out["type"] = reward_type.value

    name = (out.get("name") or "").strip()
    if not name:
        raise _invalid("Reward name is required")
    out["name"] = name

    description = (out.get("description") or "").strip()
    if not description:
        raise _invalid("Reward description is required")
    out["description"] = description

    price = out.get("price_exp")
    if price is None or int(price) < 0:
        raise _invalid("price_exp must be a non-negative integer")
    out["price_exp"] = int(price)

    stock = out.get("stock")
    if stock is not None and int(stock) < 0:
        raise _invalid("stock must be non-negative (omit it for unlimited)")

    for key in ("required_level", "limit_per_user"):
        value = out.get(key)
        if value is not None and int(value) < 1:
            raise _invalid(f"{key} must be at least 1 when set")

    item_id = (out.get("item_id") or "").strip() or None
    if reward_type in DIGITAL_TYPES and not item_id:
        raise _invalid(f"{reward_type.value} rewards need an item_id")
    out["item_id"] = item_id

    if reward_type == RewardType.BOOST:
        duration = out.get("boost_duration_minutes")
        multiplier = out.get("boost_multiplier")
        if duration is None or int(duration) < 1:
            raise _invalid("boost_duration_minutes must be at least 1")
        if multiplier is None or float(multiplier) < 1:
            raise _invalid("boost_multiplier must be at least 1")
    else:
        for key in _BOOST_FIELDS:
            out[key] = None

    return out


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_reward(session: Session, reward_id: int) -> Reward:
    reward = session.get(Reward, reward_id)
    if reward is None:
        raise NotFoundError(ErrorKind.REWARD_NOT_FOUND, f"Reward {reward_id} not found")
    return reward


def list_rewards(engine: Engine, *, include_inactive: bool = False) -> list[Reward]:
    """Admin listing, uncached."""
    with get_session(engine) as session:
        stmt = select(Reward).order_by(Reward.price_exp, Reward.id)
        if not include_inactive:
            stmt = stmt.where(Reward.is_active.is_(True))
        return list(session.scalars(stmt).all())


# ---------------------------------------------------------------------------
# Stock (caller owns the transaction)
# ---------------------------------------------------------------------------
def decrement_stock(session: Session, reward_id: int) -> None:
    """Take one unit; raises :class:`ConcurrentConflict` if none is left.

    No-op for unlimited rewards (``stock IS NULL``).
    """
    result = session.execute(
        update(Reward)
        .where(Reward.id == reward_id, Reward.stock.is_not(None), Reward.stock > 0)
        .values(stock=Reward.stock - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return
    stock = session.scalar(select(Reward.stock).where(Reward.id == reward_id))
    if stock is None:
        return
    raise ConcurrentConflict(f"Stock for reward {reward_id} ran out before commit")


def increment_stock(session: Session, reward_id: int) -> None:
    """Return one unit to a finite-stock reward; no-op when unlimited."""
    session.execute(
        update(Reward)
        .where(Reward.id == reward_id, Reward.stock.is_not(None))
        .values(stock=Reward.stock + 1)
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Audited mutations
# ---------------------------------------------------------------------------
def create_reward(
    engine: Engine,
    *,
    actor_id: int,
    cache: CatalogCache | None = None,
    **fields: Any,
) -> Reward:
    """Validate and insert a catalog entry.  New rewards start active."""
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise _invalid(f"Unknown reward fields: {sorted(unknown)}")
    fields.setdefault("is_active", True)
    data = validate_fields(fields)

    with get_session(engine) as session:
        reward = Reward(**data)
        session.add(reward)
        session.flush()
        session.refresh(reward)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type="CREATE",
            target_table="rewards",
            target_id=str(reward.id),
            before=None,
            after=row_to_dict(reward),
        )

    if cache is not None:
        cache.invalidate()
    logger.info("Reward %s created by %s: %s", reward.id, actor_id, reward.name)
    return reward


def update_reward(
    engine: Engine,
    reward_id: int,
    *,
    actor_id: int,
    cache: CatalogCache | None = None,
    **changes: Any,
) -> Reward:
    """Apply a partial update; the merged row must still validate.

    Existing redemptions keep their snapshot, so editing price or name
    never rewrites history.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise _invalid(f"Unknown reward fields: {sorted(unknown)}")

    with get_session(engine) as session:
        reward = get_reward(session, reward_id)
        before = row_to_dict(reward)
        merged = {key: getattr(reward, key) for key in EDITABLE_FIELDS}
        merged.update(changes)
        data = validate_fields(merged)
        for key, value in data.items():
            setattr(reward, key, value)
        session.flush()
        session.refresh(reward)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type="UPDATE",
            target_table="rewards",
            target_id=str(reward.id),
            before=before,
            after=row_to_dict(reward),
        )

    if cache is not None:
        cache.invalidate(reward_id)
    logger.info("Reward %s updated by %s", reward_id, actor_id)
    return reward


def deactivate_reward(
    engine: Engine,
    reward_id: int,
    *,
    actor_id: int,
    cache: CatalogCache | None = None,
) -> Reward:
    """Soft delete: hide the reward from the catalog and block redemption."""
    with get_session(engine) as session:
        reward = get_reward(session, reward_id)
        before = row_to_dict(reward)
        reward.is_active = False
        session.flush()
        session.refresh(reward)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type="DEACTIVATE",
            target_table="rewards",
            target_id=str(reward.id),
            before=before,
            after=row_to_dict(reward),
        )

    if cache is not None:
        cache.invalidate(reward_id)
    logger.info("Reward %s deactivated by %s", reward_id, actor_id)
    return reward
