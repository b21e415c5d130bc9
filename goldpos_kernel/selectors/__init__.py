"""Read-only query selectors."""

from goldpos_kernel.selectors.base import BaseSelector
from goldpos_kernel.selectors.cost_lot_selector import CostLotSelector
from goldpos_kernel.selectors.gold_balance_selector import GoldBalanceSelector
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector

__all__ = [
    "BaseSelector",
    "CostLotSelector",
    "GoldBalanceSelector",
    "OwnershipSelector",
]
