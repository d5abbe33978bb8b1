# multipack_hub/services/side_effects.py
from __future__ import annotations
from typing import Awaitable
import logging

logger = logging.getLogger(__name__)


async def best_effort(label: str, awaitable: Awaitable) -> bool:
    """
    Await a secondary effect inside its own error boundary.

    Whatever it raises is logged and dropped; the caller's primary effect
    has already happened and its outcome does not depend on this one.
    """
    try:
        await awaitable
    except Exception:
        logger.exception(f"Best-effort step failed: {label}")
        return False
    return True
