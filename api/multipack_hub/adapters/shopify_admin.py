# -*- coding: utf-8 -*-
# multipack_hub/adapters/shopify_admin.py
"""
Shopify Admin GraphQL adapter.

ShopifyAdminClient is the thin transport (httpx); InventoryGateway wraps the
handful of queries/mutations the reconciler and the order engine need:

- active locations
- variant -> inventory item resolution
- "available" quantity of an inventory item at a location
- inventorySetQuantities with compareQuantity (optimistic concurrency)
- assigned location of an order's first fulfillment order

Gateway methods never raise on remote failures: reads degrade to 0 / None /
empty, writes report failure through their return value.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import httpx

from multipack_hub.exceptions import ShopifyAPIError
from multipack_hub.settings import settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"
LOCATIONS_PAGE_SIZE = 250

VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"


def variant_gid(variant_id: Any) -> str:
    s = str(variant_id)
    return s if s.startswith("gid://") else f"{VARIANT_GID_PREFIX}{s}"


# ============================================================================
# GraphQL documents
# ============================================================================

Q_LOCATIONS = """
query getLocations($first: Int!) {
  locations(first: $first) {
    edges { node { id isActive name } }
  }
}
"""

Q_VARIANT_ITEM = """
query getVariant($id: ID!) {
  productVariant(id: $id) {
    id
    inventoryItem { id }
  }
}
"""

Q_INVENTORY_LEVEL = """
query getInventoryLevel($inventoryItemId: ID!, $locationId: ID!) {
  inventoryItem(id: $inventoryItemId) {
    inventoryLevel(locationId: $locationId) {
      id
      quantities(names: ["available"]) { name quantity }
    }
  }
}
"""

Q_ORDER_LOCATION = """
query getOrder($id: ID!) {
  order(id: $id) {
    id
    fulfillmentOrders(first: 1) {
      edges { node { assignedLocation { location { id } } } }
    }
  }
}
"""

M_SET_QUANTITIES = """
mutation setInventoryQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { id reason changes { name delta quantityAfterChange } }
    userErrors { field message }
  }
}
"""


# ============================================================================
# Value types
# ============================================================================

@dataclass(frozen=True)
class Location:
    id: str
    is_active: bool
    name: str = ""


@dataclass(frozen=True)
class QuantityUpdate:
    inventory_item_id: str
    location_id: str
    quantity: int
    compare_quantity: int

    def as_input(self) -> Dict[str, Any]:
        return {
            "inventoryItemId": self.inventory_item_id,
            "locationId": self.location_id,
            "quantity": self.quantity,
            "compareQuantity": self.compare_quantity,
        }


# ============================================================================
# Transport
# ============================================================================

class ShopifyAdminClient:
    """Async GraphQL client for one shop's Admin API."""

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = shop
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.endpoint = f"https://{shop}/admin/api/{self.api_version}/graphql.json"
        self._access_token = access_token
        self._timeout = timeout if timeout is not None else settings.SHOPIFY_HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    ACCESS_TOKEN_HEADER: self._access_token,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ShopifyAdminClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a GraphQL document and return its `data` object."""
        client = self._ensure_client()
        try:
            resp = await client.post(self.endpoint, json={"query": query, "variables": variables or {}})
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"{self.shop}: request failed: {e}") from e

        if resp.status_code >= 400:
            raise ShopifyAPIError(
                f"{self.shop}: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise ShopifyAPIError(f"{self.shop}: invalid JSON response") from e

        if body.get("errors"):
            errors = body["errors"] if isinstance(body["errors"], list) else [{"message": str(body["errors"])}]
            raise ShopifyAPIError(
                f"{self.shop}: GraphQL errors: " + ", ".join(str(e.get("message")) for e in errors),
                errors=errors,
                status_code=resp.status_code,
            )
        return body.get("data") or {}


# ============================================================================
# Gateway
# ============================================================================

class InventoryGateway:
    """
    Inventory operations on top of ShopifyAdminClient.

    One gateway per request: the variant -> inventory item cache lives as
    long as the gateway does.
    """

    def __init__(self, client: ShopifyAdminClient):
        self.client = client
        self.shop = client.shop
        self._item_ids: Dict[str, Optional[str]] = {}

    async def get_active_locations(self) -> List[Location]:
        try:
            data = await self.client.graphql(Q_LOCATIONS, {"first": LOCATIONS_PAGE_SIZE})
        except ShopifyAPIError as e:
            logger.error(f"[{self.shop}] Failed to list locations: {e}")
            return []

        edges = ((data.get("locations") or {}).get("edges")) or []
        out: List[Location] = []
        for edge in edges:
            node = (edge or {}).get("node") or {}
            if node.get("id") and node.get("isActive"):
                out.append(Location(id=node["id"], is_active=True, name=node.get("name") or ""))
        return out

    async def get_inventory_item_id(self, variant_id: str) -> Optional[str]:
        variant_id = variant_gid(variant_id)
        if variant_id in self._item_ids:
            return self._item_ids[variant_id]

        try:
            data = await self.client.graphql(Q_VARIANT_ITEM, {"id": variant_id})
        except ShopifyAPIError as e:
            # transient; do not cache
            logger.error(f"[{self.shop}] Failed to resolve inventory item for {variant_id}: {e}")
            return None

        item_id = (((data.get("productVariant") or {}).get("inventoryItem")) or {}).get("id")
        if not item_id:
            logger.info(f"[{self.shop}] No inventory item found for variant {variant_id}")
        self._item_ids[variant_id] = item_id
        return item_id

    async def get_item_available(self, inventory_item_id: str, location_id: str) -> int:
        try:
            data = await self.client.graphql(
                Q_INVENTORY_LEVEL,
                {"inventoryItemId": inventory_item_id, "locationId": location_id},
            )
        except ShopifyAPIError as e:
            logger.error(f"[{self.shop}] Failed to read level of {inventory_item_id} at {location_id}: {e}")
            return 0

        level = ((data.get("inventoryItem") or {}).get("inventoryLevel")) or {}
        for q in level.get("quantities") or []:
            if q.get("name", "available") == "available":
                return int(q.get("quantity") or 0)
        return 0

    async def get_available_quantity(self, variant_id: str, location_id: str) -> int:
        item_id = await self.get_inventory_item_id(variant_id)
        if not item_id:
            return 0
        return await self.get_item_available(item_id, location_id)

    async def set_quantities(
        self,
        updates: List[QuantityUpdate],
        reference_document_uri: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Submit one inventorySetQuantities batch; returns its user errors (empty = success)."""
        if not updates:
            return []

        payload: Dict[str, Any] = {
            "name": "available",
            "reason": "correction",
            "quantities": [u.as_input() for u in updates],
        }
        if reference_document_uri:
            payload["referenceDocumentUri"] = reference_document_uri

        try:
            data = await self.client.graphql(M_SET_QUANTITIES, {"input": payload})
        except ShopifyAPIError as e:
            logger.error(f"[{self.shop}] inventorySetQuantities failed: {e}")
            return [{"field": None, "message": str(e)}]

        user_errors = ((data.get("inventorySetQuantities") or {}).get("userErrors")) or []
        if user_errors:
            logger.error(f"[{self.shop}] inventorySetQuantities user errors: {user_errors}")
        return list(user_errors)

    async def set_available_quantity(
        self,
        inventory_item_id: str,
        location_id: str,
        quantity: int,
        compare_quantity: int,
    ) -> bool:
        errors = await self.set_quantities([
            QuantityUpdate(
                inventory_item_id=inventory_item_id,
                location_id=location_id,
                quantity=max(0, quantity),
                compare_quantity=compare_quantity,
            )
        ])
        return not errors

    async def get_order_fulfillment_location(self, order_gid: str) -> Optional[str]:
        try:
            data = await self.client.graphql(Q_ORDER_LOCATION, {"id": order_gid})
        except ShopifyAPIError as e:
            logger.error(f"[{self.shop}] Failed to load fulfillment orders for {order_gid}: {e}")
            return None

        edges = (((data.get("order") or {}).get("fulfillmentOrders") or {}).get("edges")) or []
        if not edges:
            return None
        node = (edges[0] or {}).get("node") or {}
        return (((node.get("assignedLocation") or {}).get("location")) or {}).get("id")
