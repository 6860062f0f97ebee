"""
Context update kind enumeration.
"""

from __future__ import annotations

from enum import Enum


class ContextKind(str, Enum):
    """
    Tag carried by every ContextUpdate.

    INITIAL:
        Full household snapshot sent once after connect.

    INVENTORY_DELTA:
        One inventory row changed.

    CART_SNAPSHOT:
        Shopping list changed; carries the pending cart.
    """

    INITIAL = "initial"
    INVENTORY_DELTA = "inventory_delta"
    CART_SNAPSHOT = "cart_snapshot"
