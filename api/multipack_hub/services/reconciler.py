# multipack_hub/services/reconciler.py
"""
Multipack Reconciler.

For every deduction-mapping rule of a shop that is allowed to be computed,
and for every active location, recompute the bundle count from the live
availability of the rule's target variants and write it as the multipack
variant's "available" quantity (compare-and-set).

Failures are isolated per rule and per location, and reconcile() never
raises: it is called as a side effect of rule saves and webhooks.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict
import logging

from multipack_hub.adapters.shopify_admin import InventoryGateway, Location
from multipack_hub.database import get_session_context
from multipack_hub.services.bundles import compute_bundle_count
from multipack_hub.services.rules import MappingRule, RuleService

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    shop: str
    rules: int = 0
    skipped: int = 0
    locations: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0


class MultipackReconciler:

    def __init__(self, gateway: InventoryGateway):
        self.gateway = gateway

    async def reconcile(self, shop: str) -> ReconcileReport:
        report = ReconcileReport(shop=shop)
        try:
            await self._reconcile(shop, report)
        except Exception:
            logger.exception(f"[{shop}] Multipack reconciliation aborted")
            report.failed += 1
        return report

    async def _reconcile(self, shop: str, report: ReconcileReport) -> None:
        logger.info(f"[{shop}] Calculating multipack inventory")

        async with get_session_context() as db:
            rules = await RuleService(db).load_mapping_rules(shop)
        report.rules = len(rules)
        if not rules:
            logger.info(f"[{shop}] No variant rules with deduction mappings")
            return

        locations = await self.gateway.get_active_locations()
        report.locations = len(locations)
        if not locations:
            logger.info(f"[{shop}] No active locations")
            return

        for rule in rules:
            if rule.is_self_referential:
                logger.info(f"[{shop}] Skipping {rule.variant_id}: maps to itself")
                report.skipped += 1
                continue
            if not rule.calculate_inventory_for_self_mapping:
                logger.info(f"[{shop}] Skipping {rule.variant_id}: calculation toggle is off")
                report.skipped += 1
                continue

            for location in locations:
                try:
                    await self._reconcile_location(shop, rule, location, report)
                except Exception:
                    logger.exception(f"[{shop}] Error processing {rule.variant_id} at {location.id}")
                    report.failed += 1

        logger.info(
            f"[{shop}] Multipack inventory done: updated={report.updated} "
            f"unchanged={report.unchanged} skipped={report.skipped} failed={report.failed}"
        )

    async def _available(self, variant_id: str, location_id: str) -> int:
        try:
            return await self.gateway.get_available_quantity(variant_id, location_id)
        except Exception:
            logger.exception(f"Availability lookup failed for {variant_id} at {location_id}, treating as 0")
            return 0

    async def _reconcile_location(
        self, shop: str, rule: MappingRule, location: Location, report: ReconcileReport
    ) -> None:
        availability: Dict[str, int] = {}
        for m in rule.mappings:
            if m.target_variant_id not in availability:
                availability[m.target_variant_id] = await self._available(m.target_variant_id, location.id)

        bundles = compute_bundle_count(rule.mappings, availability.__getitem__)

        item_id = await self.gateway.get_inventory_item_id(rule.variant_id)
        if not item_id:
            logger.error(f"[{shop}] Cannot update {rule.variant_id}: no inventory item")
            report.failed += 1
            return

        current = await self.gateway.get_item_available(item_id, location.id)
        if current == bundles:
            report.unchanged += 1
            return

        if await self.gateway.set_available_quantity(item_id, location.id, bundles, current):
            logger.info(f"[{shop}] {rule.variant_id} at {location.name or location.id}: {current} -> {bundles} bundles")
            report.updated += 1
        else:
            logger.error(f"[{shop}] Failed to update {rule.variant_id} at {location.name or location.id}")
            report.failed += 1
