# multipack_hub/db_models.py
"""
SQLAlchemy ORM Models for Multipack Hub.

Three tables: variant rules, processed-order markers and shop sessions.
Every row is scoped by the shop domain.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional
import enum
import uuid

from sqlalchemy import (
    String, Integer, Boolean, Text, DateTime, Index, UniqueConstraint,
    Enum as SQLEnum, func
)
from sqlalchemy.orm import Mapped, mapped_column

from multipack_hub.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


# ============================================================================
# ENUMS
# ============================================================================

class RuleType(str, enum.Enum):
    multiplier = "multiplier"
    variety_pack = "variety_pack"


class ProcessedOrderStatus(str, enum.Enum):
    pending = "pending"
    applied = "applied"
    reversing = "reversing"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. VARIANT RULES
# ============================================================================

class VariantRule(TimestampMixin, Base):
    __tablename__ = "variant_rules"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Legacy shapes; new rules carry deduction_mappings instead
    type: Mapped[Optional[str]] = mapped_column(String(50))
    multiplier: Mapped[Optional[int]] = mapped_column(Integer)
    variety_pack_flavor_ids: Mapped[Optional[str]] = mapped_column(Text)
    # JSON array of {"targetVariantId", "multiplier"}, stored as text
    deduction_mappings: Mapped[Optional[str]] = mapped_column(Text)
    calculate_inventory_for_self_mapping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("shop", "variant_id", name="uq_variant_rules_shop_variant"),
        Index("idx_variant_rules_shop", "shop"),
    )

    def __repr__(self) -> str:
        return f"<VariantRule {self.shop} {self.variant_id}>"


# ============================================================================
# 2. PROCESSED ORDERS (idempotency ledger)
# ============================================================================

class ProcessedOrder(TimestampMixin, Base):
    __tablename__ = "processed_orders"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ProcessedOrderStatus] = mapped_column(
        SQLEnum(ProcessedOrderStatus, name="processed_order_status"),
        default=ProcessedOrderStatus.pending,
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("shop", "order_id", name="uq_processed_orders_shop_order"),
        Index("idx_processed_orders_shop", "shop"),
    )


# ============================================================================
# 3. SHOP SESSIONS
# ============================================================================

class ShopSession(Base):
    __tablename__ = "shop_sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    scope: Mapped[Optional[str]] = mapped_column(Text)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_shop_sessions_shop", "shop"),
    )
