# multipack_hub/services/orders.py
"""
Order Adjustment Engine.

Reacts to orders/paid and orders/cancelled:

    paid       claim marker (pending) -> resolve location -> forward deltas
               -> consolidate -> one compare-and-set batch -> mark applied
               -> best-effort reconciliation
    cancelled  marker must exist; pending is released as is, applied is moved
               to reversing (one delivery wins) -> resolve location
               -> reverse deltas (mirror image of paid) -> consolidate
               -> one compare-and-set batch -> release marker
               -> best-effort reconciliation

Paid and cancelled share one interpreter (RuleShape.forward_deltas /
reverse_deltas), so a paid + cancelled pair nets to zero for every rule shape.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import enum
import logging

from multipack_hub.adapters.shopify_admin import InventoryGateway, QuantityUpdate, variant_gid
from multipack_hub.database import get_session_context
from multipack_hub.db_models import ProcessedOrderStatus
from multipack_hub.models import OrderPayload
from multipack_hub.services.ledger import OrderLedger
from multipack_hub.services.reconciler import MultipackReconciler
from multipack_hub.services.rules import RuleBook, RuleService
from multipack_hub.services.side_effects import best_effort

logger = logging.getLogger(__name__)

SHOPIFY_MANAGED = "shopify"


class OrderOutcome(str, enum.Enum):
    applied = "applied"
    reversed = "reversed"
    duplicate = "duplicate"
    not_processed = "not_processed"
    no_line_items = "no_line_items"
    no_location = "no_location"
    nothing_to_adjust = "nothing_to_adjust"
    unconfirmed = "unconfirmed"
    failed = "failed"


@dataclass
class InventoryAdjustment:
    inventory_item_id: str
    location_id: str
    delta: int


@dataclass
class OrderResult:
    order_id: str
    outcome: OrderOutcome
    adjustments: List[InventoryAdjustment] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def consolidate(adjustments: List[InventoryAdjustment]) -> List[InventoryAdjustment]:
    """
    Sum deltas per (inventory item, location), keeping first-seen order.

    Overlapping compare-and-set entries for the same level would overwrite
    each other, so each level must appear once per batch. Net-zero entries
    are dropped.
    """
    merged: Dict[Tuple[str, str], InventoryAdjustment] = {}
    for adj in adjustments:
        key = (adj.inventory_item_id, adj.location_id)
        if key in merged:
            merged[key].delta += adj.delta
        else:
            merged[key] = InventoryAdjustment(adj.inventory_item_id, adj.location_id, adj.delta)
    return [a for a in merged.values() if a.delta != 0]


class OrderAdjustmentEngine:

    def __init__(
        self,
        gateway: InventoryGateway,
        ledger: Optional[OrderLedger] = None,
        reconciler: Optional[MultipackReconciler] = None,
    ):
        self.gateway = gateway
        self.ledger = ledger or OrderLedger()
        self.reconciler = reconciler if reconciler is not None else MultipackReconciler(gateway)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_paid(self, shop: str, order: OrderPayload) -> OrderResult:
        order_id = order.order_id

        if not await self.ledger.claim(shop, order_id):
            logger.info(f"[{shop}] Order {order_id} already processed, skipping")
            return OrderResult(order_id, OrderOutcome.duplicate)

        if not order.line_items:
            logger.info(f"[{shop}] Order {order_id} has no line items")
            await self.ledger.mark_applied(shop, order_id)
            return OrderResult(order_id, OrderOutcome.no_line_items)

        location_id = await self.resolve_location(shop, order)
        if not location_id:
            # marker stays pending: a later cancellation releases it without reversing
            logger.warning(f"[{shop}] No fulfillment location for order {order_id}, skipping adjustment")
            return OrderResult(order_id, OrderOutcome.no_location)

        book = await self._load_rule_book(shop)
        adjustments = await self.compute_adjustments(shop, order, book, location_id, reverse=False)
        if not adjustments:
            await self.ledger.mark_applied(shop, order_id)
            return OrderResult(order_id, OrderOutcome.nothing_to_adjust)

        errors = await self.apply(shop, order, adjustments)
        if errors:
            logger.error(f"[{shop}] Inventory adjustment for order {order_id} rejected, marker left pending")
            return OrderResult(order_id, OrderOutcome.failed, adjustments, errors)

        await self.ledger.mark_applied(shop, order_id)
        logger.info(f"[{shop}] Adjusted inventory for order {order_id} ({len(adjustments)} levels)")

        await best_effort(f"reconcile {shop} after paid order {order_id}", self.reconciler.reconcile(shop))
        return OrderResult(order_id, OrderOutcome.applied, adjustments)

    async def handle_cancelled(self, shop: str, order: OrderPayload) -> OrderResult:
        order_id = order.order_id

        marker = await self.ledger.get(shop, order_id)
        if marker is None:
            logger.info(f"[{shop}] Order {order_id} was not processed by us, skipping reversal")
            return OrderResult(order_id, OrderOutcome.not_processed)

        if marker.status == ProcessedOrderStatus.pending and await self.ledger.release(
            shop, order_id, status=ProcessedOrderStatus.pending
        ):
            logger.warning(
                f"[{shop}] Order {order_id} was claimed but its adjustment never confirmed; "
                f"released without reversal, check inventory manually"
            )
            return OrderResult(order_id, OrderOutcome.unconfirmed)

        if not await self.ledger.begin_reversal(shop, order_id):
            logger.info(f"[{shop}] Order {order_id} is already being reversed, skipping")
            return OrderResult(order_id, OrderOutcome.duplicate)

        result = OrderResult(order_id, OrderOutcome.failed)
        try:
            result = await self._reverse(shop, order)
        except Exception:
            logger.exception(f"[{shop}] Reversal of order {order_id} failed part-way")
        finally:
            # always release the marker
            await self.ledger.release(shop, order_id)

        if result.outcome == OrderOutcome.reversed:
            await best_effort(f"reconcile {shop} after cancelled order {order_id}", self.reconciler.reconcile(shop))
        return result

    async def _reverse(self, shop: str, order: OrderPayload) -> OrderResult:
        order_id = order.order_id

        if not order.line_items:
            logger.info(f"[{shop}] Cancelled order {order_id} has no line items, nothing to reverse")
            return OrderResult(order_id, OrderOutcome.no_line_items)

        location_id = await self.resolve_location(shop, order)
        if not location_id:
            logger.warning(f"[{shop}] No location for cancelled order {order_id}; adjustment NOT reversed")
            return OrderResult(order_id, OrderOutcome.no_location)

        book = await self._load_rule_book(shop)
        adjustments = await self.compute_adjustments(shop, order, book, location_id, reverse=True)
        if not adjustments:
            return OrderResult(order_id, OrderOutcome.nothing_to_adjust)

        errors = await self.apply(shop, order, adjustments)
        if errors:
            logger.error(f"[{shop}] Inventory reversal for order {order_id} rejected: {errors}")
            return OrderResult(order_id, OrderOutcome.failed, adjustments, errors)

        logger.info(f"[{shop}] Reversed inventory adjustments for cancelled order {order_id}")
        return OrderResult(order_id, OrderOutcome.reversed, adjustments)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_rule_book(self, shop: str) -> RuleBook:
        async with get_session_context() as db:
            return await RuleService(db).load_rule_book(shop)

    async def resolve_location(self, shop: str, order: OrderPayload) -> Optional[str]:
        """Assigned location of the first fulfillment order, else the shop's first active location."""
        location_id = await self.gateway.get_order_fulfillment_location(order.order_gid)
        if location_id:
            return location_id

        # subscription orders may not have a scheduled fulfillment order yet
        locations = await self.gateway.get_active_locations()
        if locations:
            logger.info(f"[{shop}] Using fallback location {locations[0].id} for order {order.order_id}")
            return locations[0].id
        return None

    async def compute_adjustments(
        self,
        shop: str,
        order: OrderPayload,
        book: RuleBook,
        location_id: str,
        reverse: bool = False,
    ) -> List[InventoryAdjustment]:
        adjustments: List[InventoryAdjustment] = []

        for line in order.line_items:
            if line.variant_inventory_management != SHOPIFY_MANAGED or line.variant_id is None:
                continue
            if line.quantity <= 0:
                continue

            ordered = variant_gid(line.variant_id)
            shape = book.get(ordered)
            if shape is None:
                continue  # platform's own deduction stands

            own_item = await self.gateway.get_inventory_item_id(ordered)
            if not own_item:
                logger.info(f"[{shop}] No inventory item for {ordered}, line item skipped")
                continue

            deltas = shape.reverse_deltas(line.quantity) if reverse else shape.forward_deltas(line.quantity)
            for d in deltas:
                item_id = own_item if d.variant_id == ordered else await self.gateway.get_inventory_item_id(d.variant_id)
                if not item_id:
                    logger.info(f"[{shop}] No inventory item for target {d.variant_id}, delta {d.delta} dropped")
                    continue
                adjustments.append(InventoryAdjustment(item_id, location_id, d.delta))

        return consolidate(adjustments)

    async def apply(
        self, shop: str, order: OrderPayload, adjustments: List[InventoryAdjustment]
    ) -> List[Dict[str, Any]]:
        """Read compare values and submit all levels in one batch tagged with the order."""
        updates: List[QuantityUpdate] = []
        for adj in adjustments:
            current = await self.gateway.get_item_available(adj.inventory_item_id, adj.location_id)
            updates.append(QuantityUpdate(
                inventory_item_id=adj.inventory_item_id,
                location_id=adj.location_id,
                quantity=max(0, current + adj.delta),
                compare_quantity=current,
            ))
        return await self.gateway.set_quantities(updates, reference_document_uri=order.order_gid)
