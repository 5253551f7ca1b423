"""
emporium.api.routes.rewards — Player-facing catalog and redemption endpoints
=============================================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from emporium.api.deps import get_catalog_cache, get_config, get_current_user, get_engine
from emporium.config import EmporiumConfig
from emporium.constants import as_utc, utcnow
from emporium.database.models import Entitlement, LedgerEntry, Redemption
from emporium.engine.cache import CatalogCache
from emporium.services import (
    cancellation_service,
    fulfillment_service,
    ledger_service,
    redemption_service,
)

router = APIRouter(tags=["rewards"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    address_line1: str
    address_line2: str | None = None
    sub_district: str
    district: str
    province: str
    postal_code: str


class RedeemRequest(BaseModel):
    shipping_address: ShippingAddress | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def redemption_dict(r: Redemption) -> dict:
    return {
        "id": r.id,
        "user_id": str(r.user_id),
        "reward_id": r.reward_id,
        "reward_type": r.reward_type,
        "reward_name": r.reward_name,
        "reward_image_url": r.reward_image_url,
        "item_id": r.item_id,
        "exp_cost": r.exp_cost,
        "status": r.status,
        "shipping_address": r.shipping_address,
        "tracking_number": r.tracking_number,
        "activated_at": _iso(r.activated_at),
        "expires_at": _iso(r.expires_at),
        "boost_multiplier": r.boost_multiplier,
        "cancel_reason": r.cancel_reason,
        "admin_notes": r.admin_notes,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }


def _entitlement_dict(e: Entitlement) -> dict:
    return {
        "item_id": e.item_id,
        "reward_type": e.reward_type,
        "redemption_id": e.redemption_id,
        "granted_at": _iso(e.granted_at),
    }


def _ledger_dict(e: LedgerEntry) -> dict:
    return {
        "id": e.id,
        "delta": e.delta,
        "reason": e.reason,
        "balance_after": e.balance_after,
        "redemption_id": e.redemption_id,
        "note": e.note,
        "created_at": _iso(e.created_at),
    }


# ---------------------------------------------------------------------------
# Catalog (cached read path)
# ---------------------------------------------------------------------------
@router.get("/rewards")
def list_rewards(
    reward_type: str | None = Query(None, alias="type"),
    level: int | None = Query(None, ge=1),
    cache: CatalogCache = Depends(get_catalog_cache),
):
    views = cache.list_active(reward_type=reward_type, user_level=level)
    return {"rewards": [v.to_dict() for v in views]}


@router.get("/rewards/{reward_id}")
def get_reward(reward_id: int, cache: CatalogCache = Depends(get_catalog_cache)):
    view = cache.get_reward(reward_id)
    if view is None or not view.is_active:
        raise HTTPException(404, "Reward not found")
    return view.to_dict()


@router.post("/rewards/{reward_id}/redeem", status_code=201)
def redeem_reward(
    reward_id: int,
    body: RedeemRequest | None = None,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
    cfg: EmporiumConfig = Depends(get_config),
):
    address = None
    if body is not None and body.shipping_address is not None:
        address = body.shipping_address.model_dump(exclude_none=True)
    redemption = redemption_service.redeem(
        engine,
        user_id=user["user_id"],
        reward_id=reward_id,
        shipping_address=address,
        cache=cache,
        config=cfg,
    )
    return redemption_dict(redemption)


# ---------------------------------------------------------------------------
# Current player
# ---------------------------------------------------------------------------
@router.get("/me/balance")
def my_balance(
    limit: int = Query(20, ge=1, le=200),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    view = ledger_service.get_balance(engine, user["user_id"], limit=limit)
    return {
        "user_id": str(view.user_id),
        "level": view.level,
        "current_exp": view.current_exp,
        "ledger": [_ledger_dict(e) for e in view.entries],
    }


@router.get("/me/redemptions")
def my_redemptions(
    limit: int | None = Query(None, ge=1, le=500),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: EmporiumConfig = Depends(get_config),
):
    rows = redemption_service.list_user_redemptions(
        engine, user["user_id"], limit=limit or cfg.history_page_size,
    )
    return {"redemptions": [redemption_dict(r) for r in rows]}


@router.get("/me/entitlements")
def my_entitlements(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    rows = fulfillment_service.list_entitlements(engine, user["user_id"])
    return {"entitlements": [_entitlement_dict(e) for e in rows]}


@router.get("/me/boosts")
def my_boosts(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    now = utcnow()
    boosts = fulfillment_service.active_boosts(engine, user["user_id"], now=now)
    return {
        "boosts": [
            {
                "redemption_id": b.id,
                "item_id": b.item_id,
                "multiplier": b.boost_multiplier,
                "activated_at": _iso(b.activated_at),
                "expires_at": _iso(b.expires_at),
            }
            for b in boosts
        ],
        "effective_multiplier": fulfillment_service.effective_multiplier(
            engine, user["user_id"], now=now,
        ),
    }


@router.post("/me/redemptions/{redemption_id}/cancel")
def cancel_my_redemption(
    redemption_id: int,
    body: CancelRequest | None = None,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cache: CatalogCache = Depends(get_catalog_cache),
    cfg: EmporiumConfig = Depends(get_config),
):
    redemption = cancellation_service.cancel(
        engine,
        redemption_id,
        requesting_user_id=user["user_id"],
        reason=body.reason if body else None,
        cache=cache,
        attempts=cfg.max_conflict_retries,
    )
    return redemption_dict(redemption)


@router.post("/me/redemptions/{redemption_id}/received")
def confirm_my_redemption(
    redemption_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: EmporiumConfig = Depends(get_config),
):
    redemption = fulfillment_service.confirm_received(
        engine,
        redemption_id,
        user_id=user["user_id"],
        attempts=cfg.max_conflict_retries,
    )
    return redemption_dict(redemption)
