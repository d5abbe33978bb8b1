# multipack_hub/services/bundles.py
"""
Bundle calculator: how many complete multipacks the source variants allow.
"""
from __future__ import annotations
from typing import Callable, Iterable
import logging

from multipack_hub.services.rules import Mapping

logger = logging.getLogger(__name__)


def compute_bundle_count(mappings: Iterable[Mapping], availability: Callable[[str], int]) -> int:
    """
    min over mappings of floor(available(target) / multiplier).

    No mappings -> 0. A lookup that raises counts as 0 available, and negative
    stock never yields a negative bundle count.
    """
    counts = []
    for m in mappings:
        try:
            available = int(availability(m.target_variant_id) or 0)
        except Exception:
            logger.exception(f"Availability lookup failed for {m.target_variant_id}, treating as 0")
            available = 0
        counts.append(max(0, available) // m.multiplier)

    if not counts:
        return 0
    return min(counts)
