"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | Rule                         | Why
------------------------|------------------------------|-------------------------------
OwnershipMovement       | no UPDATE, no DELETE         | ownership audit trail
RawGoldTransfer         | no UPDATE, no DELETE         | raw gold audit trail
CostLotIssuance         | no UPDATE, no DELETE         | cost consumption trail
CostLot                 | no DELETE                    | lots are exhausted, not removed
ProductOwnership        | no DELETE                    | consolidation deactivates only

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE SQL is emitted during
flush.  The listeners below raise ImmutabilityViolationError, which aborts
the flush; the caller's transaction is then rolled back.

Bulk ``session.execute(update(...))`` statements bypass mapper events.
Services never issue bulk statements against these tables.

===============================================================================
USAGE
===============================================================================

    from goldpos_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; create_tables() does it

TESTS ONLY:

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from goldpos_kernel.exceptions import ImmutabilityViolationError
from goldpos_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, operation: str, target, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_movement_update(mapper, connection, target):
    _block("OwnershipMovement", "UPDATE", target, "Ownership movements are append-only")


def _check_movement_delete(mapper, connection, target):
    _block("OwnershipMovement", "DELETE", target, "Ownership movements cannot be deleted")


def _check_transfer_update(mapper, connection, target):
    _block("RawGoldTransfer", "UPDATE", target, "Raw gold transfers are append-only")


def _check_transfer_delete(mapper, connection, target):
    _block("RawGoldTransfer", "DELETE", target, "Raw gold transfers cannot be deleted")


def _check_issuance_update(mapper, connection, target):
    _block("CostLotIssuance", "UPDATE", target, "Cost lot issuances are append-only")


def _check_issuance_delete(mapper, connection, target):
    _block("CostLotIssuance", "DELETE", target, "Cost lot issuances cannot be deleted")


def _check_cost_lot_delete(mapper, connection, target):
    _block("CostLot", "DELETE", target, "Cost lots are exhausted, never deleted")


def _check_cost_lot_update(mapper, connection, target):
    """Only the consumption fields of a lot may change."""
    from sqlalchemy import inspect

    frozen = ("product_id", "branch_id", "quantity", "weight", "unit_cost_per_gram",
              "purchase_date", "sequence_order", "source_ref")
    insp = inspect(target)
    for key in frozen:
        if insp.attrs[key].history.has_changes():
            _block("CostLot", "UPDATE", target, f"Cannot modify field '{key}' on a cost lot")


def _check_ownership_delete(mapper, connection, target):
    _block("ProductOwnership", "DELETE", target, "Ownership records are deactivated, never deleted")


def _listeners():
    from goldpos_kernel.models.cost_lot import CostLotIssuanceModel, CostLotModel
    from goldpos_kernel.models.gold_balance import RawGoldTransferModel
    from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel

    return (
        (OwnershipMovementModel, "before_update", _check_movement_update),
        (OwnershipMovementModel, "before_delete", _check_movement_delete),
        (RawGoldTransferModel, "before_update", _check_transfer_update),
        (RawGoldTransferModel, "before_delete", _check_transfer_delete),
        (CostLotIssuanceModel, "before_update", _check_issuance_update),
        (CostLotIssuanceModel, "before_delete", _check_issuance_delete),
        (CostLotModel, "before_update", _check_cost_lot_update),
        (CostLotModel, "before_delete", _check_cost_lot_delete),
        (ProductOwnershipModel, "before_delete", _check_ownership_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for model, identifier, fn in _listeners():
        if not event.contains(model, identifier, fn):
            event.listen(model, identifier, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for model, identifier, fn in _listeners():
        if event.contains(model, identifier, fn):
            event.remove(model, identifier, fn)
