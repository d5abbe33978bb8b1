# multipack_hub/routers/webhooks.py
"""
Shopify webhooks: orders/paid, orders/cancelled, inventory_levels/update.

Only authentication problems produce an error status. Everything else
answers 200: a failed response makes Shopify redeliver, and redelivery is
already handled by the processed-order ledger.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from multipack_hub.models import InventoryLevelPayload, OrderPayload
from multipack_hub.routers.deps import GatewayFactory, WebhookContext, authenticate_webhook, get_gateway_factory
from multipack_hub.services.orders import OrderAdjustmentEngine
from multipack_hub.services.reconciler import MultipackReconciler
from multipack_hub.services.side_effects import best_effort

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _parse_order(ctx: WebhookContext) -> Optional[OrderPayload]:
    try:
        order = OrderPayload.model_validate(ctx.payload)
    except ValidationError as e:
        logger.error(f"[{ctx.shop}] Unreadable {ctx.topic} payload: {e}")
        return None
    if not order.order_id:
        logger.info(f"[{ctx.shop}] Order ID not found in {ctx.topic} payload")
        return None
    return order


@router.post("/orders/paid")
async def orders_paid(
    ctx: WebhookContext = Depends(authenticate_webhook),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    logger.info(f"Received {ctx.topic or 'orders/paid'} webhook for {ctx.shop}")
    order = _parse_order(ctx)
    if order is None:
        return {"ok": True}

    try:
        async with gateway_factory(ctx.session) as gateway:
            result = await OrderAdjustmentEngine(gateway).handle_paid(ctx.shop, order)
    except Exception:
        logger.exception(f"[{ctx.shop}] Error processing paid order {order.order_id}")
        return {"ok": True, "outcome": "error"}
    return {"ok": True, "outcome": result.outcome.value}


@router.post("/orders/cancelled")
async def orders_cancelled(
    ctx: WebhookContext = Depends(authenticate_webhook),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    logger.info(f"Received {ctx.topic or 'orders/cancelled'} webhook for {ctx.shop}")
    order = _parse_order(ctx)
    if order is None:
        return {"ok": True}

    try:
        async with gateway_factory(ctx.session) as gateway:
            result = await OrderAdjustmentEngine(gateway).handle_cancelled(ctx.shop, order)
    except Exception:
        logger.exception(f"[{ctx.shop}] Error processing cancelled order {order.order_id}")
        return {"ok": True, "outcome": "error"}
    return {"ok": True, "outcome": result.outcome.value}


@router.post("/inventory_levels/update")
async def inventory_levels_update(
    ctx: WebhookContext = Depends(authenticate_webhook),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    logger.info(f"Received {ctx.topic or 'inventory_levels/update'} webhook for {ctx.shop}")
    try:
        level = InventoryLevelPayload.model_validate(ctx.payload)
        logger.info(f"[{ctx.shop}] Inventory level changed: item {level.inventory_item_id} at {level.location_id}")
    except ValidationError:
        logger.info(f"[{ctx.shop}] Inventory level payload not understood, reconciling anyway")

    async def _reconcile() -> None:
        async with gateway_factory(ctx.session) as gateway:
            await MultipackReconciler(gateway).reconcile(ctx.shop)

    await best_effort(f"reconcile {ctx.shop} after inventory level update", _reconcile())
    return {"ok": True}
