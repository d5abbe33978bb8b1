# multipack_hub/exceptions.py
"""
Error types shared by services and routers.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class MultipackError(Exception):
    """Base class for Multipack Hub errors."""


class RuleValidationError(MultipackError):
    """Rule payload rejected by the configuration surface (shown to the merchant)."""


class UnauthorizedError(MultipackError):
    """Missing shop session or invalid webhook signature."""


class ShopifyAPIError(MultipackError):
    """Transport or top-level GraphQL failure from the Shopify Admin API."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.errors = errors or []
        self.status_code = status_code
