from __future__ import annotations
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field, ConfigDict

from multipack_hub.db_models import ProcessedOrderStatus


class DeductionMapping(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_variant_id: str = Field(alias="targetVariantId")
    multiplier: int


class VariantRuleIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deduction_mappings: List[Dict[str, Any]] = Field(default_factory=list, alias="deductionMappings")
    calculate_inventory_for_self_mapping: bool = Field(default=False, alias="calculateInventoryForSelfMapping")


class VariantRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    shop: str
    variant_id: str
    type: Optional[str] = None
    multiplier: Optional[int] = None
    variety_pack_flavor_ids: Optional[str] = None
    deduction_mappings: Optional[str] = None
    calculate_inventory_for_self_mapping: bool = False


# ---------------------------------------------------------------------------
# Webhook payloads (REST shape, only the fields we read)
# ---------------------------------------------------------------------------

class OrderLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    variant_id: Optional[Union[int, str]] = None
    quantity: int = 0
    variant_inventory_management: Optional[str] = None


class OrderPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    admin_graphql_api_id: Optional[str] = None
    line_items: List[OrderLineItem] = Field(default_factory=list)

    @property
    def order_id(self) -> str:
        if self.id is not None:
            return str(self.id)
        if self.admin_graphql_api_id:
            return self.admin_graphql_api_id.rsplit("/", 1)[-1]
        return ""

    @property
    def order_gid(self) -> str:
        return self.admin_graphql_api_id or f"gid://shopify/Order/{self.id}"


class InventoryLevelPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    inventory_item_id: Optional[int] = None
    location_id: Optional[int] = None
    available: Optional[int] = None
    updated_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Sync summary
# ---------------------------------------------------------------------------

class ShopSyncResult(BaseModel):
    shop: str
    success: bool
    error: Optional[str] = None
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0


class SyncSummary(BaseModel):
    success: bool = True
    shopsProcessed: int = 0
    successful: int = 0
    failed: int = 0
    results: List[ShopSyncResult] = Field(default_factory=list)


class PendingOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    status: ProcessedOrderStatus
    created_at: Optional[Any] = None
