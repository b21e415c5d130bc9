"""
DTOs -- Pure domain data transfer objects for the gold ownership engine.

Responsibility:
    Immutable records returned by services and selectors (cost lots,
    ownership rows, movements, gold balances, transfers), request objects
    accepted by services, and the result shapes of composite operations
    (sale validation, consolidation, balance summaries, alerts).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ORM models convert to these via
    ``to_dto()``; nothing outside the persistence boundary ever sees an ORM
    entity.

Invariants enforced:
    - Derived values (ownership percentage, outstanding amount, outstanding
      weight debt) are computed properties, never stored, so they cannot go
      stale relative to the fields they derive from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from goldpos_kernel.db.types import ZERO, percentage_of, round_money


class MovementType(str, Enum):
    """Ownership ledger movement kinds."""

    PAYMENT = "Payment"
    SALE = "Sale"
    RECEIPT = "Receipt"
    CONSOLIDATION = "Consolidation"
    ADJUSTMENT = "Adjustment"


class TransferType(str, Enum):
    """Raw gold ledger entry kinds."""

    RECEIPT = "Receipt"
    PAYMENT = "Payment"
    WAIVE = "Waive"
    CONVERT = "Convert"
    CREDIT = "Credit"


class CostMethod(str, Enum):
    """Cost valuation methods."""

    WEIGHTED_AVERAGE = "WeightedAverage"
    FIFO = "FIFO"
    LIFO = "LIFO"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class AlertType(str, Enum):
    LOW_OWNERSHIP = "LowOwnership"
    OUTSTANDING_PAYMENT = "OutstandingPayment"


class AlertSeverity(str, Enum):
    MEDIUM = "Medium"
    HIGH = "High"


# ---------------------------------------------------------------------------
# Cost lots
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CostLotRecord:
    """A purchase cost lot as persisted."""

    lot_id: UUID
    product_id: str
    branch_id: str
    supplier_id: str | None
    karat_type_id: str | None
    source_ref: str
    quantity: Decimal
    weight: Decimal
    unit_cost_per_gram: Decimal
    remaining_quantity: Decimal
    remaining_weight: Decimal
    purchase_date: date
    sequence_order: int
    is_exhausted: bool
    created_at: datetime | None = None

    @property
    def remaining_cost(self) -> Decimal:
        return self.remaining_weight * self.unit_cost_per_gram


@dataclass(frozen=True, slots=True)
class CostLotIssuanceRecord:
    """One decrement of one cost lot."""

    issuance_id: UUID
    lot_id: UUID
    quantity: Decimal
    weight: Decimal
    cost: Decimal
    cost_method: CostMethod
    reference_number: str
    created_at: datetime
    created_by: str


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OwnershipRequest:
    """
    Input to OwnershipTracker.create_or_update.

    The upsert key is (product_id, branch_id, supplier_id, purchase_order_id,
    customer_purchase_id).
    """

    product_id: str
    branch_id: str
    total_quantity: Decimal
    total_weight: Decimal
    total_cost: Decimal
    reference_number: str
    supplier_id: str | None = None
    owned_quantity: Decimal = ZERO
    owned_weight: Decimal = ZERO
    amount_paid: Decimal = ZERO
    purchase_order_id: str | None = None
    customer_purchase_id: str | None = None
    source_ref: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class OwnershipRecord:
    """Snapshot of a ProductOwnership row."""

    ownership_id: UUID
    product_id: str
    branch_id: str
    supplier_id: str | None
    purchase_order_id: str | None
    customer_purchase_id: str | None
    source_ref: str | None
    total_quantity: Decimal
    total_weight: Decimal
    owned_quantity: Decimal
    owned_weight: Decimal
    total_cost: Decimal
    amount_paid: Decimal
    is_active: bool
    sequence_order: int
    version: int
    created_at: datetime | None = None
    notes: str | None = None

    @property
    def ownership_percentage(self) -> Decimal:
        return percentage_of(self.owned_weight, self.total_weight)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_cost - self.amount_paid

    @property
    def payment_status(self) -> PaymentStatus:
        if self.amount_paid <= ZERO and self.total_cost > ZERO:
            return PaymentStatus.UNPAID
        if self.amount_paid < self.total_cost:
            return PaymentStatus.PARTIAL
        return PaymentStatus.PAID


@dataclass(frozen=True, slots=True)
class OwnershipMovementRecord:
    """Immutable ownership ledger row with post-mutation snapshot."""

    movement_id: UUID
    ownership_id: UUID
    movement_type: MovementType
    quantity_change: Decimal
    weight_change: Decimal
    amount_change: Decimal
    owned_quantity_after: Decimal
    owned_weight_after: Decimal
    amount_paid_after: Decimal
    ownership_percentage_after: Decimal
    reference_number: str
    created_at: datetime
    created_by: str
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class SaleValidation:
    """
    Outcome of a sale pre-check.

    can_sell depends only on owned quantity; warnings carry everything else
    the cashier should see (partial payment, low ownership, stock mismatch).
    """

    product_id: str
    branch_id: str
    requested_quantity: Decimal
    can_sell: bool
    owned_quantity: Decimal
    total_quantity: Decimal
    owned_weight: Decimal
    total_weight: Decimal
    outstanding_amount: Decimal
    warnings: tuple[str, ...] = ()
    stock_on_hand: Decimal | None = None

    @property
    def ownership_percentage(self) -> Decimal:
        return percentage_of(self.owned_weight, self.total_weight)


@dataclass(frozen=True, slots=True)
class SupplierRiskLine:
    ownership_id: UUID
    supplier_id: str | None
    total_cost: Decimal
    amount_paid: Decimal
    outstanding_amount: Decimal
    payment_status: PaymentStatus


@dataclass(frozen=True, slots=True)
class SaleRiskItem:
    """Products carrying unpaid supplier balances, grouped per product/branch."""

    product_id: str
    branch_id: str
    total_outstanding: Decimal
    ownership_percentage: Decimal
    suppliers: tuple[SupplierRiskLine, ...]


@dataclass(frozen=True, slots=True)
class Page:
    """One page of a paginated listing."""

    items: tuple
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


# ---------------------------------------------------------------------------
# Gold balances
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SupplierGoldBalanceRecord:
    balance_id: UUID
    supplier_id: str
    branch_id: str
    karat_type_id: str
    total_weight_received: Decimal
    total_weight_paid_for: Decimal
    average_cost_per_gram: Decimal
    version: int
    last_transaction_at: datetime | None = None

    @property
    def outstanding_weight_debt(self) -> Decimal:
        return self.total_weight_received - self.total_weight_paid_for

    @property
    def outstanding_monetary_value(self) -> Decimal:
        return round_money(self.outstanding_weight_debt * self.average_cost_per_gram)


@dataclass(frozen=True, slots=True)
class MerchantRawGoldBalanceRecord:
    balance_id: UUID
    branch_id: str
    karat_type_id: str
    available_weight: Decimal
    average_cost_per_gram: Decimal
    total_value: Decimal
    version: int
    last_movement_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RawGoldTransferRecord:
    """Immutable raw gold ledger row."""

    transfer_id: UUID
    transfer_number: str
    transfer_type: TransferType
    branch_id: str
    from_karat_type_id: str | None
    to_karat_type_id: str | None
    from_weight: Decimal
    to_weight: Decimal
    from_rate: Decimal
    to_rate: Decimal
    conversion_factor: Decimal
    transfer_value: Decimal
    created_at: datetime
    created_by: str
    from_supplier_id: str | None = None
    to_supplier_id: str | None = None
    customer_purchase_id: str | None = None
    reference_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ConversionPreview:
    """Value-preserving karat conversion, computed but not applied."""

    from_karat_type_id: str
    to_karat_type_id: str
    from_weight: Decimal
    to_weight: Decimal
    from_rate: Decimal
    to_rate: Decimal
    conversion_factor: Decimal
    from_value: Decimal
    to_value: Decimal
    as_of: datetime


@dataclass(frozen=True, slots=True)
class TransferQuery:
    """Filters for raw gold transfer history."""

    branch_id: str | None = None
    supplier_id: str | None = None
    karat_type_id: str | None = None
    transfer_type: TransferType | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = 1
    page_size: int = 50


@dataclass(frozen=True, slots=True)
class GoldBalanceSummary:
    """Per-branch position: what the merchant owes suppliers vs what it holds."""

    branch_id: str
    supplier_balances: tuple[SupplierGoldBalanceRecord, ...]
    merchant_balances: tuple[MerchantRawGoldBalanceRecord, ...]
    total_outstanding_weight: Decimal
    total_outstanding_value: Decimal
    total_merchant_weight: Decimal
    total_merchant_value: Decimal

    @property
    def net_value(self) -> Decimal:
        return self.total_merchant_value - self.total_outstanding_value


# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConsolidationOpportunity:
    product_id: str
    supplier_id: str
    branch_id: str
    record_count: int
    total_quantity: Decimal
    total_weight: Decimal
    owned_quantity: Decimal
    owned_weight: Decimal
    total_cost: Decimal
    amount_paid: Decimal
    ownership_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_cost - self.amount_paid

    @property
    def ownership_percentage(self) -> Decimal:
        return percentage_of(self.owned_weight, self.total_weight)


@dataclass(frozen=True, slots=True)
class ConsolidationResult:
    consolidated: OwnershipRecord
    source_ids: tuple[UUID, ...]
    blended_cost_per_gram: Decimal
    movement: OwnershipMovementRecord


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OwnershipAlert:
    alert_type: AlertType
    severity: AlertSeverity
    ownership_id: UUID
    product_id: str
    branch_id: str
    supplier_id: str | None
    ownership_percentage: Decimal
    outstanding_amount: Decimal
    message: str
    created_at: datetime | None = None
