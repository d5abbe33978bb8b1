# multipack_hub/services/rules.py
"""
Variant rules: storage access and interpretation.

A stored VariantRule row is resolved once into one of three shapes:

- MappingRule           deductionMappings: [{targetVariantId, multiplier}, ...]
- LegacyMultiplierRule  type == "multiplier" (an N-pack of the variant itself)
- VarietyPackRule       type == "variety_pack" (one unit of each flavor variant)

Every shape answers the same two questions for a line item quantity: which
per-variant deltas an order applies (forward) and which undo it (reverse).
The platform has already taken 1 x quantity off the ordered variant by the
time a paid webhook arrives; the deltas are relative to that.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
import json
import logging

from pydantic import ValidationError
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from multipack_hub.db_models import VariantRule, RuleType
from multipack_hub.exceptions import RuleValidationError
from multipack_hub.models import DeductionMapping, VariantRuleIn

logger = logging.getLogger(__name__)

LEGACY_DEFAULT_MULTIPLIER = 3

ERR_VARIANT_REQUIRED = "Variant ID is required"
ERR_MAPPINGS_REQUIRED = "At least one deduction mapping is required"
ERR_MAPPING_INVALID = "Each mapping must have a valid target variant and multiplier >= 1"
ERR_MAPPINGS_FORMAT = "Invalid deduction mappings format"


# ============================================================================
# Shapes
# ============================================================================

@dataclass(frozen=True)
class Mapping:
    target_variant_id: str
    multiplier: int


@dataclass(frozen=True)
class VariantDelta:
    variant_id: str
    delta: int


class RuleShape:
    variant_id: str

    def forward_deltas(self, quantity: int) -> List[VariantDelta]:
        raise NotImplementedError

    def reverse_deltas(self, quantity: int) -> List[VariantDelta]:
        return [VariantDelta(d.variant_id, -d.delta) for d in self.forward_deltas(quantity)]


@dataclass(frozen=True)
class MappingRule(RuleShape):
    variant_id: str
    mappings: Tuple[Mapping, ...]
    calculate_inventory_for_self_mapping: bool = False

    @property
    def is_self_referential(self) -> bool:
        return any(m.target_variant_id == self.variant_id for m in self.mappings)

    @property
    def auto_reconciled(self) -> bool:
        # self-referential rules are managed by hand, whatever the toggle says
        if self.is_self_referential:
            return False
        return self.calculate_inventory_for_self_mapping

    def forward_deltas(self, quantity: int) -> List[VariantDelta]:
        out = [VariantDelta(m.target_variant_id, -(quantity * m.multiplier)) for m in self.mappings]
        # credit back the platform's own deduction; the real one went to the targets
        out.append(VariantDelta(self.variant_id, quantity))
        return out


@dataclass(frozen=True)
class LegacyMultiplierRule(RuleShape):
    variant_id: str
    multiplier: int = LEGACY_DEFAULT_MULTIPLIER

    def forward_deltas(self, quantity: int) -> List[VariantDelta]:
        return [VariantDelta(self.variant_id, -(quantity * (self.multiplier - 1)))]


@dataclass(frozen=True)
class VarietyPackRule(RuleShape):
    variant_id: str
    flavor_variant_ids: Tuple[str, ...] = field(default_factory=tuple)

    def forward_deltas(self, quantity: int) -> List[VariantDelta]:
        out = [VariantDelta(fid, -quantity) for fid in self.flavor_variant_ids]
        out.append(VariantDelta(self.variant_id, quantity))
        return out


# ============================================================================
# Parsing / interpretation
# ============================================================================

def parse_mappings(raw: Any) -> List[Mapping]:
    """
    Parse stored or submitted deduction mappings.

    Accepts the JSON text kept in the database or an already decoded list.
    Raises RuleValidationError with a merchant-facing message.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise RuleValidationError(ERR_MAPPINGS_FORMAT) from e
    if not isinstance(raw, list):
        raise RuleValidationError(ERR_MAPPINGS_FORMAT)

    out: List[Mapping] = []
    for item in raw:
        if not isinstance(item, dict):
            raise RuleValidationError(ERR_MAPPING_INVALID)
        try:
            m = DeductionMapping.model_validate(item)
        except ValidationError as e:
            raise RuleValidationError(ERR_MAPPING_INVALID) from e
        if not m.target_variant_id or m.multiplier < 1:
            raise RuleValidationError(ERR_MAPPING_INVALID)
        out.append(Mapping(target_variant_id=m.target_variant_id, multiplier=m.multiplier))
    return out


def dump_mappings(mappings: Iterable[Mapping]) -> str:
    return json.dumps([
        {"targetVariantId": m.target_variant_id, "multiplier": m.multiplier}
        for m in mappings
    ])


def _parse_flavor_ids(raw: str) -> Tuple[str, ...]:
    ids = json.loads(raw)
    if not isinstance(ids, list):
        raise ValueError("varietyPackFlavorIds is not a list")
    return tuple(str(i) for i in ids if i)


def interpret_rule(rule: VariantRule) -> Optional[RuleShape]:
    """Resolve a stored row to its shape; None means the rule is inert."""
    if rule.deduction_mappings:
        try:
            mappings = parse_mappings(rule.deduction_mappings)
        except RuleValidationError as e:
            logger.error(f"[{rule.shop}] Bad deduction mappings for {rule.variant_id}: {e}; trying legacy fields")
        else:
            if not mappings:
                return None
            return MappingRule(
                variant_id=rule.variant_id,
                mappings=tuple(mappings),
                calculate_inventory_for_self_mapping=bool(rule.calculate_inventory_for_self_mapping),
            )

    if rule.type == RuleType.multiplier.value:
        return LegacyMultiplierRule(
            variant_id=rule.variant_id,
            multiplier=rule.multiplier or LEGACY_DEFAULT_MULTIPLIER,
        )

    if rule.type == RuleType.variety_pack.value and rule.variety_pack_flavor_ids:
        try:
            flavors = _parse_flavor_ids(rule.variety_pack_flavor_ids)
        except ValueError as e:
            logger.error(f"[{rule.shop}] Bad variety pack flavor ids for {rule.variant_id}: {e}")
            return None
        return VarietyPackRule(variant_id=rule.variant_id, flavor_variant_ids=flavors)

    return None


class RuleBook:
    """Per-operation variant_id -> shape lookup. Build a fresh one for every webhook / pass."""

    def __init__(self, shapes: Optional[Dict[str, RuleShape]] = None):
        self._shapes: Dict[str, RuleShape] = dict(shapes or {})

    @classmethod
    def from_rows(cls, rows: Iterable[VariantRule]) -> "RuleBook":
        shapes: Dict[str, RuleShape] = {}
        for row in rows:
            shape = interpret_rule(row)
            if shape is not None:
                shapes[row.variant_id] = shape
        return cls(shapes)

    def get(self, variant_id: str) -> Optional[RuleShape]:
        return self._shapes.get(variant_id)

    def __len__(self) -> int:
        return len(self._shapes)

    def __contains__(self, variant_id: str) -> bool:
        return variant_id in self._shapes


# ============================================================================
# Storage
# ============================================================================

class RuleService:
    """Rule CRUD scoped by shop."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_rules(self, shop: str) -> List[VariantRule]:
        result = await self.db.execute(
            select(VariantRule).where(VariantRule.shop == shop).order_by(VariantRule.created_at)
        )
        return list(result.scalars().all())

    async def get_rule(self, shop: str, variant_id: str) -> Optional[VariantRule]:
        result = await self.db.execute(
            select(VariantRule).where(VariantRule.shop == shop, VariantRule.variant_id == variant_id)
        )
        return result.scalar_one_or_none()

    async def save_rule(self, shop: str, variant_id: str, payload: VariantRuleIn) -> VariantRule:
        """Validate and upsert a deduction-mapping rule."""
        if not (variant_id or "").strip():
            raise RuleValidationError(ERR_VARIANT_REQUIRED)
        mappings = parse_mappings(payload.deduction_mappings)
        if not mappings:
            raise RuleValidationError(ERR_MAPPINGS_REQUIRED)

        rule = await self.get_rule(shop, variant_id)
        if rule is None:
            rule = VariantRule(shop=shop, variant_id=variant_id)
            self.db.add(rule)
        rule.deduction_mappings = dump_mappings(mappings)
        rule.calculate_inventory_for_self_mapping = payload.calculate_inventory_for_self_mapping
        await self.db.flush()
        logger.info(f"[{shop}] Saved rule for {variant_id} ({len(mappings)} mappings)")
        return rule

    async def delete_rule(self, shop: str, variant_id: str) -> bool:
        result = await self.db.execute(
            delete(VariantRule).where(VariantRule.shop == shop, VariantRule.variant_id == variant_id)
        )
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"[{shop}] Deleted rule for {variant_id}")
        return deleted

    async def shops_with_rules(self) -> List[str]:
        result = await self.db.execute(select(VariantRule.shop).distinct().order_by(VariantRule.shop))
        return [s for s in result.scalars().all()]

    async def load_rule_book(self, shop: str) -> RuleBook:
        return RuleBook.from_rows(await self.list_rules(shop))

    async def load_mapping_rules(self, shop: str) -> List[MappingRule]:
        """Rules that resolve to a non-empty MappingRule; legacy and inert rows are left out."""
        shapes = [interpret_rule(row) for row in await self.list_rules(shop)]
        return [s for s in shapes if isinstance(s, MappingRule)]
