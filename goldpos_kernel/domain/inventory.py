"""Physical stock lookup owned by the inventory system."""

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class InventoryService(Protocol):
    """
    Stock-on-hand source.

    Ownership tracking never owns stock truth; sale validation only
    cross-checks requested quantities against this.
    """

    def stock_on_hand(self, product_id: str, branch_id: str) -> Decimal:
        ...
