# multipack_hub/services/ledger.py
"""
Processed-order ledger (idempotency markers).

A marker row per (shop, order_id) means "this order's paid adjustment has
been claimed and not yet reversed". The unique constraint is the only
mutual-exclusion between concurrent webhook deliveries: whoever inserts the
row owns the order.

Status:
- pending    claimed, adjustment not (yet) confirmed by Shopify
- applied    adjustment batch accepted (or there was nothing to adjust)
- reversing  a cancellation owns the order and is undoing the adjustment

Leaving "applied" goes through begin_reversal(), a conditional UPDATE, so
only one cancellation delivery can ever reverse an order.
"""
from __future__ import annotations
from typing import List, Optional
import logging

from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError

from multipack_hub.database import get_session_context
from multipack_hub.db_models import ProcessedOrder, ProcessedOrderStatus

logger = logging.getLogger(__name__)


class OrderLedger:
    """Each call runs in its own short transaction so markers are visible to other deliveries immediately."""

    async def claim(self, shop: str, order_id: str) -> bool:
        """Insert a pending marker. False if the order is already claimed."""
        try:
            async with get_session_context() as db:
                db.add(ProcessedOrder(shop=shop, order_id=order_id, status=ProcessedOrderStatus.pending))
        except IntegrityError:
            logger.info(f"[{shop}] Order {order_id} already claimed by another delivery")
            return False
        return True

    async def get(self, shop: str, order_id: str) -> Optional[ProcessedOrder]:
        async with get_session_context() as db:
            result = await db.execute(
                select(ProcessedOrder).where(ProcessedOrder.shop == shop, ProcessedOrder.order_id == order_id)
            )
            return result.scalar_one_or_none()

    async def mark_applied(self, shop: str, order_id: str) -> None:
        async with get_session_context() as db:
            await db.execute(
                update(ProcessedOrder)
                .where(ProcessedOrder.shop == shop, ProcessedOrder.order_id == order_id)
                .values(status=ProcessedOrderStatus.applied)
            )

    async def begin_reversal(self, shop: str, order_id: str) -> bool:
        """Move an applied marker to reversing. False if it is not (or no longer) applied."""
        async with get_session_context() as db:
            result = await db.execute(
                update(ProcessedOrder)
                .where(
                    ProcessedOrder.shop == shop,
                    ProcessedOrder.order_id == order_id,
                    ProcessedOrder.status == ProcessedOrderStatus.applied,
                )
                .values(status=ProcessedOrderStatus.reversing)
            )
            return (result.rowcount or 0) == 1

    async def release(
        self, shop: str, order_id: str, status: Optional[ProcessedOrderStatus] = None
    ) -> bool:
        """
        Delete the marker; the order may be processed again afterwards.

        With ``status`` only a marker still in that state is deleted.
        """
        stmt = delete(ProcessedOrder).where(ProcessedOrder.shop == shop, ProcessedOrder.order_id == order_id)
        if status is not None:
            stmt = stmt.where(ProcessedOrder.status == status)
        async with get_session_context() as db:
            result = await db.execute(stmt)
            return (result.rowcount or 0) > 0

    async def list_pending(self, shop: str) -> List[ProcessedOrder]:
        async with get_session_context() as db:
            result = await db.execute(
                select(ProcessedOrder)
                .where(ProcessedOrder.shop == shop, ProcessedOrder.status == ProcessedOrderStatus.pending)
                .order_by(ProcessedOrder.created_at)
            )
            return list(result.scalars().all())
