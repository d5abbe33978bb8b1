# multipack_hub/services/__init__.py
"""
Business logic services for Multipack Hub.
"""
from multipack_hub.services.bundles import compute_bundle_count
from multipack_hub.services.ledger import OrderLedger
from multipack_hub.services.orders import OrderAdjustmentEngine, OrderOutcome, OrderResult
from multipack_hub.services.reconciler import MultipackReconciler, ReconcileReport
from multipack_hub.services.rules import RuleBook, RuleService, interpret_rule

__all__ = [
    "compute_bundle_count",
    "OrderLedger",
    "OrderAdjustmentEngine",
    "OrderOutcome",
    "OrderResult",
    "MultipackReconciler",
    "ReconcileReport",
    "RuleBook",
    "RuleService",
    "interpret_rule",
]
