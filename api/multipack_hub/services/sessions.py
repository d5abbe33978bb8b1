# multipack_hub/services/sessions.py
from __future__ import annotations
from typing import Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from multipack_hub.db_models import ShopSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Read access to the shop sessions written by the OAuth layer."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_for_shop(self, shop: str) -> Optional[ShopSession]:
        """Any session of the shop, online ones first; None when the shop never installed."""
        result = await self.db.execute(
            select(ShopSession)
            .where(ShopSession.shop == shop)
            .order_by(ShopSession.is_online.desc(), ShopSession.created_at.desc())
        )
        return result.scalars().first()
