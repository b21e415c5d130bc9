"""
Module: goldpos_kernel.models.gold_balance
Responsibility: ORM persistence for karat-denominated gold balances and the
    raw gold transfer ledger.
        - SupplierGoldBalanceModel: weight the merchant owes a supplier, per
          (supplier, branch, karat).
        - MerchantRawGoldBalanceModel: raw gold the merchant holds outright,
          per (branch, karat).
        - RawGoldTransferModel: one immutable row per balance mutation.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.

Invariants enforced:
    - total_weight_paid_for <= total_weight_received (outstanding debt >= 0).
    - available_weight >= 0.
    - Balance keys are unique; balances carry a version_id_col.
    - Transfer numbers are unique; transfers are never updated or deleted.

Audit relevance:
    No balance moves without a transfer row written in the same
    transaction (GoldBalanceLedger guarantees the pairing).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from goldpos_kernel.db.base import Base
from goldpos_kernel.domain.dtos import (
    MerchantRawGoldBalanceRecord,
    RawGoldTransferRecord,
    SupplierGoldBalanceRecord,
    TransferType,
)


class SupplierGoldBalanceModel(Base):
    """
    Gold weight received from a supplier and not yet paid for.

    outstanding_weight_debt is derived; only received and paid_for are stored.
    """

    __tablename__ = "supplier_gold_balances"

    __table_args__ = (
        UniqueConstraint(
            "supplier_id",
            "branch_id",
            "karat_type_id",
            name="uq_supplier_gold_balance_key",
        ),
        CheckConstraint(
            "total_weight_paid_for >= 0 AND total_weight_paid_for <= total_weight_received",
            name="ck_supplier_gold_balance_debt",
        ),
    )

    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    karat_type_id: Mapped[str] = mapped_column(String(64), nullable=False)

    total_weight_received: Mapped[Decimal] = mapped_column(nullable=False)
    total_weight_paid_for: Mapped[Decimal] = mapped_column(nullable=False)
    average_cost_per_gram: Mapped[Decimal] = mapped_column(nullable=False)

    last_transaction_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def outstanding_weight_debt(self) -> Decimal:
        return self.total_weight_received - self.total_weight_paid_for

    def to_dto(self) -> SupplierGoldBalanceRecord:
        return SupplierGoldBalanceRecord(
            balance_id=self.id,
            supplier_id=self.supplier_id,
            branch_id=self.branch_id,
            karat_type_id=self.karat_type_id,
            total_weight_received=self.total_weight_received,
            total_weight_paid_for=self.total_weight_paid_for,
            average_cost_per_gram=self.average_cost_per_gram,
            version=self.version,
            last_transaction_at=self.last_transaction_at,
        )


class MerchantRawGoldBalanceModel(Base):
    """Raw gold owned outright by the merchant at a branch."""

    __tablename__ = "merchant_raw_gold_balances"

    __table_args__ = (
        UniqueConstraint(
            "branch_id",
            "karat_type_id",
            name="uq_merchant_raw_gold_balance_key",
        ),
        CheckConstraint(
            "available_weight >= 0",
            name="ck_merchant_raw_gold_available",
        ),
    )

    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    karat_type_id: Mapped[str] = mapped_column(String(64), nullable=False)

    available_weight: Mapped[Decimal] = mapped_column(nullable=False)
    average_cost_per_gram: Mapped[Decimal] = mapped_column(nullable=False)
    total_value: Mapped[Decimal] = mapped_column(nullable=False)

    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> MerchantRawGoldBalanceRecord:
        return MerchantRawGoldBalanceRecord(
            balance_id=self.id,
            branch_id=self.branch_id,
            karat_type_id=self.karat_type_id,
            available_weight=self.available_weight,
            average_cost_per_gram=self.average_cost_per_gram,
            total_value=self.total_value,
            version=self.version,
            last_movement_at=self.last_movement_at,
        )


class RawGoldTransferModel(Base):
    """Append-only raw gold ledger row."""

    __tablename__ = "raw_gold_transfers"

    __table_args__ = (
        UniqueConstraint("transfer_number", name="uq_raw_gold_transfer_number"),
        UniqueConstraint(
            "transfer_type",
            "reference_number",
            name="uq_raw_gold_transfer_reference",
        ),
        Index("idx_raw_gold_transfer_branch_created", "branch_id", "created_at"),
        Index("idx_raw_gold_transfer_from_supplier", "from_supplier_id"),
        Index("idx_raw_gold_transfer_to_supplier", "to_supplier_id"),
    )

    transfer_number: Mapped[str] = mapped_column(String(32), nullable=False)
    transfer_type: Mapped[str] = mapped_column(String(20), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)

    from_supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    from_karat_type_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_karat_type_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    from_weight: Mapped[Decimal] = mapped_column(nullable=False)
    to_weight: Mapped[Decimal] = mapped_column(nullable=False)
    from_rate: Mapped[Decimal] = mapped_column(nullable=False)
    to_rate: Mapped[Decimal] = mapped_column(nullable=False)
    conversion_factor: Mapped[Decimal] = mapped_column(nullable=False)
    transfer_value: Mapped[Decimal] = mapped_column(nullable=False)

    customer_purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Caller idempotency key; NULLs never collide in the unique constraint
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def to_dto(self) -> RawGoldTransferRecord:
        return RawGoldTransferRecord(
            transfer_id=self.id,
            transfer_number=self.transfer_number,
            transfer_type=TransferType(self.transfer_type),
            branch_id=self.branch_id,
            from_karat_type_id=self.from_karat_type_id,
            to_karat_type_id=self.to_karat_type_id,
            from_weight=self.from_weight,
            to_weight=self.to_weight,
            from_rate=self.from_rate,
            to_rate=self.to_rate,
            conversion_factor=self.conversion_factor,
            transfer_value=self.transfer_value,
            created_at=self.created_at,
            created_by=self.created_by,
            from_supplier_id=self.from_supplier_id,
            to_supplier_id=self.to_supplier_id,
            customer_purchase_id=self.customer_purchase_id,
            reference_number=self.reference_number,
            notes=self.notes,
        )
