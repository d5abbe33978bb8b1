# multipack_hub/routers/deps.py
"""
Shared FastAPI dependencies: shop sessions, Shopify gateways and webhook
authentication.
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Optional
import base64
import hashlib
import hmac
import json
import logging

from fastapi import HTTPException, Request

from multipack_hub.adapters.shopify_admin import InventoryGateway, ShopifyAdminClient
from multipack_hub.database import get_session_context
from multipack_hub.db_models import ShopSession
from multipack_hub.exceptions import UnauthorizedError
from multipack_hub.services.sessions import SessionStore
from multipack_hub.settings import settings

logger = logging.getLogger(__name__)

HMAC_HEADER = "X-Shopify-Hmac-Sha256"
SHOP_HEADER = "X-Shopify-Shop-Domain"
TOPIC_HEADER = "X-Shopify-Topic"

GatewayFactory = Callable[[ShopSession], AsyncContextManager[InventoryGateway]]


# ============================================================================
# Sessions / gateways
# ============================================================================

async def require_shop_session(shop: str) -> ShopSession:
    async with get_session_context() as db:
        shop_session = await SessionStore(db).find_for_shop(shop)
    if shop_session is None:
        raise UnauthorizedError(f"No active session for shop {shop}")
    if not shop_session.access_token:
        raise UnauthorizedError(f"No access token for shop {shop}")
    return shop_session


@asynccontextmanager
async def open_gateway(shop_session: ShopSession) -> AsyncIterator[InventoryGateway]:
    async with ShopifyAdminClient(shop_session.shop, shop_session.access_token) as client:
        yield InventoryGateway(client)


def get_gateway_factory() -> GatewayFactory:
    return open_gateway


# ============================================================================
# Webhooks
# ============================================================================

def verify_webhook_hmac(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


@dataclass
class WebhookContext:
    shop: str
    topic: str
    payload: Dict[str, Any]
    session: ShopSession


async def authenticate_webhook(request: Request) -> WebhookContext:
    """Signature + shop header + stored session; anything missing is a 401."""
    body = await request.body()

    if settings.SHOPIFY_API_SECRET and not verify_webhook_hmac(
        body, request.headers.get(HMAC_HEADER), settings.SHOPIFY_API_SECRET
    ):
        logger.warning(f"Webhook with invalid signature rejected ({request.url.path})")
        raise HTTPException(status_code=401, detail="Unauthorized")

    shop = (request.headers.get(SHOP_HEADER) or "").strip()
    if not shop:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        shop_session = await require_shop_session(shop)
    except UnauthorizedError as e:
        logger.warning(f"Webhook rejected: {e}")
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        logger.error(f"[{shop}] Webhook body is not JSON, ignoring payload")
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    return WebhookContext(
        shop=shop,
        topic=request.headers.get(TOPIC_HEADER, ""),
        payload=payload,
        session=shop_session,
    )
