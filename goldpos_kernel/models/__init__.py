"""ORM models for the gold ownership engine."""

from goldpos_kernel.models.cost_lot import CostLotIssuanceModel, CostLotModel
from goldpos_kernel.models.gold_balance import (
    MerchantRawGoldBalanceModel,
    RawGoldTransferModel,
    SupplierGoldBalanceModel,
)
from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel
from goldpos_kernel.models.sequence import SequenceCounter


def import_all_models() -> None:
    """Ensure every model is registered on Base.metadata.

    Importing this package already does that; the function gives
    create_tables() an explicit hook to call.
    """


__all__ = [
    "CostLotModel",
    "CostLotIssuanceModel",
    "ProductOwnershipModel",
    "OwnershipMovementModel",
    "SupplierGoldBalanceModel",
    "MerchantRawGoldBalanceModel",
    "RawGoldTransferModel",
    "SequenceCounter",
    "import_all_models",
]
