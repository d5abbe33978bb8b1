# multipack_hub/routers/rules.py
"""
Rule configuration endpoints used by the embedded admin UI.

Every mutation is followed by a best-effort reconciliation of the shop;
its failure never fails the configuration action.
"""
from __future__ import annotations
from typing import Any, Dict, List
import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from multipack_hub.database import get_session, transaction
from multipack_hub.exceptions import RuleValidationError
from multipack_hub.models import PendingOrderOut, VariantRuleIn, VariantRuleOut
from multipack_hub.routers.deps import GatewayFactory, get_gateway_factory, require_shop_session
from multipack_hub.services.ledger import OrderLedger
from multipack_hub.services.reconciler import MultipackReconciler
from multipack_hub.services.rules import RuleService
from multipack_hub.services.side_effects import best_effort

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops/{shop}", tags=["rules"])


async def _reconcile_shop(shop: str, gateway_factory: GatewayFactory) -> None:
    shop_session = await require_shop_session(shop)
    async with gateway_factory(shop_session) as gateway:
        await MultipackReconciler(gateway).reconcile(shop)


@router.get("/rules", response_model=List[VariantRuleOut])
async def list_rules(shop: str, db: AsyncSession = Depends(get_session)):
    return await RuleService(db).list_rules(shop)


@router.put("/rules/{variant_id:path}", response_model=VariantRuleOut)
async def save_rule(
    shop: str,
    variant_id: str,
    payload: VariantRuleIn = Body(...),
    db: AsyncSession = Depends(get_session),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
):
    # committed before reconciling; the reconciler reads through its own session
    try:
        async with transaction(db):
            rule = await RuleService(db).save_rule(shop, variant_id, payload)
    except RuleValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    out = VariantRuleOut.model_validate(rule)

    await best_effort(f"reconcile {shop} after rule save", _reconcile_shop(shop, gateway_factory))
    return out


@router.delete("/rules/{variant_id:path}")
async def delete_rule(
    shop: str,
    variant_id: str,
    db: AsyncSession = Depends(get_session),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    if not (variant_id or "").strip():
        raise HTTPException(status_code=400, detail="Variant ID is required")
    async with transaction(db):
        deleted = await RuleService(db).delete_rule(shop, variant_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Rule not found")

    await best_effort(f"reconcile {shop} after rule delete", _reconcile_shop(shop, gateway_factory))
    return {"success": True}


@router.get("/orders/pending", response_model=List[PendingOrderOut])
async def list_pending_orders(shop: str):
    """Orders claimed but never confirmed by Shopify; these need a manual inventory check."""
    return await OrderLedger().list_pending(shop)
