"""
Module: goldpos_kernel.models.cost_lot
Responsibility: ORM persistence for purchase cost lots and their issuance
    trail.  Each lot is one batch of a product received at a specific
    per-gram cost; it is the input to weighted-average, FIFO and LIFO costing.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Lots are never deleted (ORM listener in db/immutability.py).
    - quantity / weight / unit_cost_per_gram are frozen at creation; only
      remaining_quantity, remaining_weight and is_exhausted move, and each
      move is recorded as a CostLotIssuanceModel row.
    - (product_id, branch_id, purchase_date, sequence_order) index gives
      deterministic FIFO/LIFO order.

Audit relevance:
    Every gram consumed from a lot is traceable through cost_lot_issuances
    back to the issuing reference number.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from goldpos_kernel.db.base import Base, TrackedBase, UUIDString
from goldpos_kernel.domain.dtos import CostLotIssuanceRecord, CostLotRecord, CostMethod


class CostLotModel(TrackedBase):
    """
    Persistent storage for purchase cost lots.

    Guarantees:
        - remaining_weight <= weight and remaining_quantity <= quantity.
        - is_exhausted is set once remaining_weight reaches zero.

    Non-goals:
        - Does not validate positivity; CostSourceLedger does that before
          the row is created.
    """

    __tablename__ = "cost_lots"

    __table_args__ = (
        Index(
            "idx_cost_lot_product_branch_order",
            "product_id",
            "branch_id",
            "purchase_date",
            "sequence_order",
        ),
        Index("idx_cost_lot_exhausted", "is_exhausted"),
        Index("idx_cost_lot_supplier", "supplier_id"),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    karat_type_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Receiving document (purchase order, receipt number, ...)
    source_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    weight: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost_per_gram: Mapped[Decimal] = mapped_column(nullable=False)

    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_weight: Mapped[Decimal] = mapped_column(nullable=False)

    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    sequence_order: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    is_exhausted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> CostLotRecord:
        """Convert ORM model to frozen domain DTO."""
        return CostLotRecord(
            lot_id=self.id,
            product_id=self.product_id,
            branch_id=self.branch_id,
            supplier_id=self.supplier_id,
            karat_type_id=self.karat_type_id,
            source_ref=self.source_ref,
            quantity=self.quantity,
            weight=self.weight,
            unit_cost_per_gram=self.unit_cost_per_gram,
            remaining_quantity=self.remaining_quantity,
            remaining_weight=self.remaining_weight,
            purchase_date=self.purchase_date,
            sequence_order=self.sequence_order,
            is_exhausted=self.is_exhausted,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<CostLot {self.id}: product={self.product_id} "
            f"{self.remaining_weight}/{self.weight}g @ {self.unit_cost_per_gram}>"
        )


class CostLotIssuanceModel(Base):
    """Append-only record of one decrement of one lot."""

    __tablename__ = "cost_lot_issuances"

    __table_args__ = (
        Index("idx_cost_lot_issuance_lot", "lot_id"),
        Index("idx_cost_lot_issuance_reference", "reference_number"),
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_lots.id"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    weight: Mapped[Decimal] = mapped_column(nullable=False)
    cost: Mapped[Decimal] = mapped_column(nullable=False)
    cost_method: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def to_dto(self) -> CostLotIssuanceRecord:
        return CostLotIssuanceRecord(
            issuance_id=self.id,
            lot_id=self.lot_id,
            quantity=self.quantity,
            weight=self.weight,
            cost=self.cost,
            cost_method=CostMethod(self.cost_method),
            reference_number=self.reference_number,
            created_at=self.created_at,
            created_by=self.created_by,
        )
