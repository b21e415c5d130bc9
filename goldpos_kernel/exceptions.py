"""
Typed Exception Hierarchy for the Gold Ownership Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers at the POS boundary must react to errors precisely: a sale blocked by
insufficient ownership is shown to the cashier, an overpayment is rejected
back to the payments screen, a concurrency conflict is retried silently.
Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        tracker.record_payment(ownership_id, amount, reference="PAY-1")
    except OverpaymentError as e:
        api_response(code=e.code, outstanding=str(e.outstanding_amount))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GoldPosError (base)
    |
    +-- ValidationError
    |   +-- DifferentKaratRequiredError
    |
    +-- InvariantViolationError
    |   +-- OverpaymentError
    |   +-- ExceedsReceivedWeightError
    |   +-- ExceedsOutstandingDebtError
    |
    +-- BusinessRuleError
    |   +-- InsufficientOwnershipError
    |   +-- PartialFulfillmentError
    |   +-- InsufficientRawGoldError
    |
    +-- PreconditionError
    |   +-- NoCostDataError
    |   +-- NothingToConsolidateError
    |   +-- OwnershipNotFoundError
    |   +-- OwnershipInactiveError
    |   +-- KaratRateNotFoundError
    |
    +-- AuditError
    |   +-- DuplicateMovementError
    |   +-- DuplicateTransferError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

Only ConcurrencyConflictError is retried (see GoldOperations). Everything
else propagates synchronously to the caller; every mutation is all-or-nothing
so nothing needs to be undone by hand.
"""

from decimal import Decimal


class GoldPosError(Exception):
    """
    Base exception for all gold ownership engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "GOLDPOS_ERROR"


# Validation


class ValidationError(GoldPosError):
    """Malformed input, rejected before any mutation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DifferentKaratRequiredError(ValidationError):
    """A karat conversion was requested between identical karat types."""

    code: str = "DIFFERENT_KARAT_REQUIRED"

    def __init__(self, karat_type_id: str):
        self.karat_type_id = karat_type_id
        super().__init__(
            f"Source and target karat must differ (both {karat_type_id})",
            field="to_karat_type_id",
        )


# Invariant violations


class InvariantViolationError(GoldPosError):
    """A mutation would break a balance invariant."""

    code: str = "INVARIANT_VIOLATION"


class OverpaymentError(InvariantViolationError):
    """Payment would push amount_paid above total_cost."""

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        ownership_id: str,
        amount: Decimal,
        outstanding_amount: Decimal,
    ):
        self.ownership_id = ownership_id
        self.amount = amount
        self.outstanding_amount = outstanding_amount
        super().__init__(
            f"Payment of {amount} on ownership {ownership_id} exceeds "
            f"outstanding amount {outstanding_amount}"
        )


class ExceedsReceivedWeightError(InvariantViolationError):
    """Raw-gold payment would exceed the weight received from the supplier."""

    code: str = "EXCEEDS_RECEIVED_WEIGHT"

    def __init__(
        self,
        supplier_id: str,
        karat_type_id: str,
        weight_paid_for: Decimal,
        outstanding_weight: Decimal,
    ):
        self.supplier_id = supplier_id
        self.karat_type_id = karat_type_id
        self.weight_paid_for = weight_paid_for
        self.outstanding_weight = outstanding_weight
        super().__init__(
            f"Paying for {weight_paid_for}g of {karat_type_id} to supplier "
            f"{supplier_id} exceeds outstanding weight {outstanding_weight}g"
        )


class ExceedsOutstandingDebtError(InvariantViolationError):
    """Waive or conversion would reduce a supplier's debt below zero."""

    code: str = "EXCEEDS_OUTSTANDING_DEBT"

    def __init__(
        self,
        supplier_id: str,
        karat_type_id: str,
        weight: Decimal,
        outstanding_weight: Decimal,
    ):
        self.supplier_id = supplier_id
        self.karat_type_id = karat_type_id
        self.weight = weight
        self.outstanding_weight = outstanding_weight
        super().__init__(
            f"{weight}g of {karat_type_id} exceeds outstanding debt of "
            f"{outstanding_weight}g owed to supplier {supplier_id}"
        )


# Business rules


class BusinessRuleError(GoldPosError):
    """Request is well-formed but the current state does not allow it."""

    code: str = "BUSINESS_RULE_VIOLATION"


class InsufficientOwnershipError(BusinessRuleError):
    """Sale requested more units than the merchant owns."""

    code: str = "INSUFFICIENT_OWNERSHIP"

    def __init__(
        self,
        product_id: str,
        branch_id: str,
        requested_quantity: Decimal,
        owned_quantity: Decimal,
    ):
        self.product_id = product_id
        self.branch_id = branch_id
        self.requested_quantity = requested_quantity
        self.owned_quantity = owned_quantity
        super().__init__(
            f"Cannot sell {requested_quantity} of product {product_id} at "
            f"branch {branch_id}: only {owned_quantity} owned"
        )


class PartialFulfillmentError(BusinessRuleError):
    """Cost lots cannot cover the requested quantity."""

    code: str = "PARTIAL_FULFILLMENT"

    def __init__(
        self,
        product_id: str,
        requested_quantity: Decimal,
        available_quantity: Decimal,
    ):
        self.product_id = product_id
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        super().__init__(
            f"Cost lots for product {product_id} cover {available_quantity}, "
            f"requested {requested_quantity}"
        )


class InsufficientRawGoldError(BusinessRuleError):
    """Merchant raw gold balance cannot cover the requested weight."""

    code: str = "INSUFFICIENT_RAW_GOLD"

    def __init__(
        self,
        branch_id: str,
        karat_type_id: str,
        requested_weight: Decimal,
        available_weight: Decimal,
    ):
        self.branch_id = branch_id
        self.karat_type_id = karat_type_id
        self.requested_weight = requested_weight
        self.available_weight = available_weight
        super().__init__(
            f"Insufficient {karat_type_id} raw gold at branch {branch_id}: "
            f"available {available_weight}g, requested {requested_weight}g"
        )


# Preconditions


class PreconditionError(GoldPosError):
    """Required state or reference data is missing."""

    code: str = "PRECONDITION_FAILED"


class NoCostDataError(PreconditionError):
    """No cost lot with remaining weight exists for the product."""

    code: str = "NO_COST_DATA"

    def __init__(self, product_id: str, branch_id: str | None = None):
        self.product_id = product_id
        self.branch_id = branch_id
        scope = f" at branch {branch_id}" if branch_id else ""
        super().__init__(f"No cost data for product {product_id}{scope}")


class NothingToConsolidateError(PreconditionError):
    """Fewer than two active ownership rows match the consolidation key."""

    code: str = "NOTHING_TO_CONSOLIDATE"

    def __init__(
        self,
        product_id: str,
        supplier_id: str,
        branch_id: str,
        record_count: int,
    ):
        self.product_id = product_id
        self.supplier_id = supplier_id
        self.branch_id = branch_id
        self.record_count = record_count
        super().__init__(
            f"Need at least 2 active ownership records for product "
            f"{product_id} / supplier {supplier_id}, found {record_count}"
        )


class OwnershipNotFoundError(PreconditionError):
    """Ownership row does not exist."""

    code: str = "OWNERSHIP_NOT_FOUND"

    def __init__(self, ownership_id: str):
        self.ownership_id = ownership_id
        super().__init__(f"Ownership record not found: {ownership_id}")


class OwnershipInactiveError(PreconditionError):
    """Ownership row was consolidated or depleted and accepts no mutations."""

    code: str = "OWNERSHIP_INACTIVE"

    def __init__(self, ownership_id: str):
        self.ownership_id = ownership_id
        super().__init__(f"Ownership record is inactive: {ownership_id}")


class KaratRateNotFoundError(PreconditionError):
    """No usable gold rate for the karat at the requested time."""

    code: str = "KARAT_RATE_NOT_FOUND"

    def __init__(self, karat_type_id: str, as_of: str):
        self.karat_type_id = karat_type_id
        self.as_of = as_of
        super().__init__(
            f"No gold rate for karat {karat_type_id} as of {as_of}"
        )


# Audit


class AuditError(GoldPosError):
    """Base exception for ledger/audit errors."""

    code: str = "AUDIT_ERROR"


class DuplicateMovementError(AuditError):
    """An identical ownership movement was already recorded."""

    code: str = "DUPLICATE_MOVEMENT"

    def __init__(self, ownership_id: str, movement_type: str, reference_number: str):
        self.ownership_id = ownership_id
        self.movement_type = movement_type
        self.reference_number = reference_number
        super().__init__(
            f"{movement_type} movement {reference_number} already recorded "
            f"for ownership {ownership_id}"
        )


class DuplicateTransferError(AuditError):
    """A raw gold transfer with the same reference was already recorded."""

    code: str = "DUPLICATE_TRANSFER"

    def __init__(self, transfer_type: str, reference_number: str):
        self.transfer_type = transfer_type
        self.reference_number = reference_number
        super().__init__(
            f"{transfer_type} transfer {reference_number} already recorded"
        )


# Concurrency


class ConcurrencyError(GoldPosError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Concurrent modification of the same ownership row or balance key.

    Retryable: the operation had no effect and may be re-run from scratch.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_key: str):
        self.entity_type = entity_type
        self.entity_key = entity_key
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_key}; retry"
        )


# Immutability


class ImmutabilityError(GoldPosError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
