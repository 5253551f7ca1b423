"""
emporium.api.routes.admin — Admin catalog & fulfillment endpoints (JWT‑protected)
==================================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import Engine

from emporium.api.deps import get_catalog_cache, get_config, get_current_admin, get_engine
from emporium.api.routes.rewards import redemption_dict
from emporium.config import EmporiumConfig
from emporium.constants import DIGITAL_TYPES
from emporium.database.models import RedemptionStatus, Reward, RewardType
from emporium.engine.cache import CatalogCache
from emporium.services import (
    cancellation_service,
    catalog_service,
    fulfillment_service,
    ledger_service,
    redemption_service,
    repair_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RewardCreate(BaseModel):
    type: RewardType
    name: str
    description: str
    image_url: str | None = None
    item_id: str | None = None
    price_exp: int
    stock: int | None = None
    required_level: int | None = None
    limit_per_user: int | None = None
    boost_duration_minutes: int | None = None
    boost_multiplier: float | None = None


class RewardUpdate(BaseModel):
    type: RewardType | None = None
    name: str | None = None
    description: str | None = None
    image_url: str | None = None
    item_id: str | None = None
    price_exp: int | None = None
    stock: int | None = None
    required_level: int | None = None
    limit_per_user: int | None = None
    is_active: bool | None = None
    boost_duration_minutes: int | None = None
    boost_multiplier: float | None = None


class AdvanceRequest(BaseModel):
    next_status: RedemptionStatus
    tracking_number: str | None = None
    admin_notes: str | None = None


class AdminNote(BaseModel):
    reason: str | None = None


class ManualAward(BaseModel):
    amount: int
    display_name: str = "Unknown"
    reason: str = ""
    apply_boost: bool = False


class LevelUpdate(BaseModel):
    level: int


class RepairRequest(BaseModel):
    dry_run: bool = False
    reward_types: list[RewardType] | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _reward_dict(r: Reward) -> dict:
    return {
        "id": r.id,
        "type": r.type,
        "name": r.name,
        "description": r.description,
        "image_url": r.image_url,
        "item_id": r.item_id,
        "price_exp": r.price_exp,
        "stock": r.stock,
        "required_level": r.required_level,
        "limit_per_user": r.limit_per_user,
        "is_active": r.is_active,
        "boost_duration_minutes": r.boost_duration_minutes,
        "boost_multiplier": r.boost_multiplier,
        "requires_shipping": r.requires_shipping,
    }


def _actor(admin: dict) -> int:
    return admin["user_id"]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@router.get("/rewards")
def list_rewards(
    include_inactive: bool = Query(True),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = catalog_service.list_rewards(engine, include_inactive=include_inactive)
    return {"rewards": [_reward_dict(r) for r in rows]}


@router.post("/rewards", status_code=201)
def create_reward(
    body: RewardCreate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
):
    reward = catalog_service.create_reward(
        engine, actor_id=_actor(admin), cache=cache, **body.model_dump(),
    )
    return _reward_dict(reward)


@router.patch("/rewards/{reward_id}")
def update_reward(
    reward_id: int,
    body: RewardUpdate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(400, "No fields to update")
    reward = catalog_service.update_reward(
        engine, reward_id, actor_id=_actor(admin), cache=cache, **changes,
    )
    return _reward_dict(reward)


@router.delete("/rewards/{reward_id}")
def deactivate_reward(
    reward_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
):
    reward = catalog_service.deactivate_reward(
        engine, reward_id, actor_id=_actor(admin), cache=cache,
    )
    return _reward_dict(reward)


# ---------------------------------------------------------------------------
# Redemptions
# ---------------------------------------------------------------------------
@router.get("/redemptions")
def list_redemptions(
    status: RedemptionStatus | None = Query(None),
    reward_type: RewardType | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = redemption_service.list_redemptions(
        engine,
        status=status,
        reward_type=reward_type.value if reward_type else None,
        limit=limit,
    )
    return {"redemptions": [redemption_dict(r) for r in rows]}


@router.get("/redemptions/export")
def export_manifest(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    """Shipping manifest for physical orders awaiting dispatch."""
    csv_text = fulfillment_service.export_shipping_manifest(engine)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="shipping_manifest.csv"'},
    )


@router.get("/redemptions/{redemption_id}")
def get_redemption(
    redemption_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return redemption_dict(redemption_service.get_redemption(engine, redemption_id))


@router.post("/redemptions/{redemption_id}/advance")
def advance_redemption(
    redemption_id: int,
    body: AdvanceRequest,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: EmporiumConfig = Depends(get_config),
):
    redemption = fulfillment_service.advance_redemption(
        engine,
        redemption_id,
        body.next_status,
        actor_id=_actor(admin),
        tracking_number=body.tracking_number,
        admin_notes=body.admin_notes,
        attempts=cfg.max_conflict_retries,
    )
    return redemption_dict(redemption)


@router.post("/redemptions/{redemption_id}/cancel")
def cancel_redemption(
    redemption_id: int,
    body: AdminNote | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
    cfg: EmporiumConfig = Depends(get_config),
):
    redemption = cancellation_service.cancel(
        engine,
        redemption_id,
        requesting_user_id=_actor(admin),
        reason=body.reason if body else None,
        as_admin=True,
        cache=cache,
        attempts=cfg.max_conflict_retries,
    )
    return redemption_dict(redemption)


@router.post("/redemptions/{redemption_id}/refund")
def refund_redemption(
    redemption_id: int,
    body: AdminNote | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: EmporiumConfig = Depends(get_config),
):
    redemption = cancellation_service.refund(
        engine,
        redemption_id,
        actor_id=_actor(admin),
        admin_notes=body.reason if body else None,
        attempts=cfg.max_conflict_retries,
    )
    return redemption_dict(redemption)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.post("/users/{user_id}/award")
def award_exp(
    user_id: int,
    body: ManualAward,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    if body.amount <= 0:
        raise HTTPException(400, "Award amount must be positive")
    multiplier = 1.0
    if body.apply_boost:
        multiplier = fulfillment_service.effective_multiplier(engine, user_id)
    user = ledger_service.award_exp(
        engine,
        user_id=user_id,
        amount=body.amount,
        display_name=body.display_name,
        reason=body.reason,
        actor_id=_actor(admin),
        multiplier=multiplier,
    )
    return {
        "user_id": str(user.id),
        "current_exp": user.current_exp,
        "level": user.level,
        "multiplier": multiplier,
    }


@router.put("/users/{user_id}/level")
def set_level(
    user_id: int,
    body: LevelUpdate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    if body.level < 1:
        raise HTTPException(400, "Level must be at least 1")
    user = ledger_service.set_level(engine, user_id=user_id, level=body.level)
    return {"user_id": str(user.id), "level": user.level}


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@router.post("/repair")
def run_consistency_repair(
    body: RepairRequest | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    body = body or RepairRequest()
    return repair_service.scan(
        engine,
        reward_types=body.reward_types or DIGITAL_TYPES,
        dry_run=body.dry_run,
        actor_id=_actor(admin),
    )
