# multipack_hub/routers/sync.py
"""
Scheduled multipack sync.

GET /cron/sync-multipack-inventory?secret=...  runs the reconciler for every
shop that has at least one rule. In production the shared CRON_SECRET is
required.
"""
from __future__ import annotations
from typing import Optional
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from multipack_hub.database import get_session
from multipack_hub.exceptions import UnauthorizedError
from multipack_hub.models import ShopSyncResult, SyncSummary
from multipack_hub.routers.deps import GatewayFactory, get_gateway_factory, require_shop_session
from multipack_hub.services.reconciler import MultipackReconciler
from multipack_hub.services.rules import RuleService
from multipack_hub.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["sync"])


def _secret_ok(provided: Optional[str]) -> bool:
    if not settings.is_production:
        return True
    if not settings.CRON_SECRET or not provided:
        return False
    return hmac.compare_digest(settings.CRON_SECRET, provided)


@router.get("/sync-multipack-inventory", response_model=SyncSummary)
async def sync_multipack_inventory(
    secret: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_session),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
):
    if not _secret_ok(secret):
        raise HTTPException(status_code=401, detail="Unauthorized")

    logger.info("Starting scheduled multipack inventory sync")
    shops = await RuleService(db).shops_with_rules()
    logger.info(f"Found {len(shops)} shops to process")

    summary = SyncSummary(shopsProcessed=len(shops))
    for shop in shops:
        try:
            shop_session = await require_shop_session(shop)
        except UnauthorizedError as e:
            logger.info(f"Skipping {shop}: {e}")
            summary.results.append(ShopSyncResult(shop=shop, success=False, error=str(e)))
            continue

        try:
            async with gateway_factory(shop_session) as gateway:
                report = await MultipackReconciler(gateway).reconcile(shop)
        except Exception as e:
            logger.exception(f"Error processing shop {shop}")
            summary.results.append(ShopSyncResult(shop=shop, success=False, error=str(e) or "Unknown error"))
            continue

        if report.failed:
            logger.warning(f"[{shop}] Reconciliation finished with {report.failed} failures")
            summary.results.append(ShopSyncResult(
                shop=shop, success=False, error=f"{report.failed} multipack updates failed",
                updated=report.updated, unchanged=report.unchanged, skipped=report.skipped,
            ))
        else:
            summary.results.append(ShopSyncResult(
                shop=shop, success=True,
                updated=report.updated, unchanged=report.unchanged, skipped=report.skipped,
            ))

    summary.successful = sum(1 for r in summary.results if r.success)
    summary.failed = sum(1 for r in summary.results if not r.success)
    logger.info(f"Scheduled sync finished: {summary.successful} ok, {summary.failed} failed")
    return summary
