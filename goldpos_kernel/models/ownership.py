"""
Module: goldpos_kernel.models.ownership
Responsibility: ORM persistence for partial ownership of product stock
    (ProductOwnershipModel) and its append-only movement ledger
    (OwnershipMovementModel).
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.

Invariants enforced:
    - 0 <= owned_quantity <= total_quantity, 0 <= owned_weight <= total_weight
      and 0 <= amount_paid <= total_cost: CHECK constraints back up the
      service-level validation.
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col, so
      a flush against a stale row raises StaleDataError.
    - Movement idempotence: (ownership_id, movement_type, reference_number)
      is unique.
    - Ownership rows are never deleted; consolidation only deactivates them.
      Movements are never updated or deleted (db/immutability.py).

Audit relevance:
    Every change to owned quantity, owned weight or amount paid has a
    matching movement row carrying the post-change snapshot.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from goldpos_kernel.db.base import Base, TrackedBase, UUIDString
from goldpos_kernel.db.types import percentage_of
from goldpos_kernel.domain.dtos import (
    MovementType,
    OwnershipMovementRecord,
    OwnershipRecord,
)


class ProductOwnershipModel(TrackedBase):
    """
    One tranche of a product's stock at a branch and how much of it is paid.

    Contract:
        ownership_percentage is derived from owned_weight / total_weight on
        every read; there is no stored percentage to drift.

    Guarantees:
        - Rows with is_active=False accept no mutations (enforced by
          OwnershipTracker).
        - sequence_order gives creation order for oldest-first consumption.
    """

    __tablename__ = "product_ownerships"

    __table_args__ = (
        Index("idx_ownership_product_branch", "product_id", "branch_id", "is_active"),
        Index("idx_ownership_supplier", "supplier_id", "branch_id"),
        Index(
            "idx_ownership_upsert_key",
            "product_id",
            "branch_id",
            "supplier_id",
            "purchase_order_id",
            "customer_purchase_id",
        ),
        CheckConstraint(
            "owned_quantity >= 0 AND owned_quantity <= total_quantity",
            name="ck_ownership_owned_quantity",
        ),
        CheckConstraint(
            "owned_weight >= 0 AND owned_weight <= total_weight",
            name="ck_ownership_owned_weight",
        ),
        CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= total_cost",
            name="ck_ownership_amount_paid",
        ),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    purchase_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    total_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    total_weight: Mapped[Decimal] = mapped_column(nullable=False)
    owned_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    owned_weight: Mapped[Decimal] = mapped_column(nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sequence_order: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def ownership_percentage(self) -> Decimal:
        return percentage_of(self.owned_weight, self.total_weight)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_cost - self.amount_paid

    def to_dto(self) -> OwnershipRecord:
        """Convert ORM model to frozen domain DTO."""
        return OwnershipRecord(
            ownership_id=self.id,
            product_id=self.product_id,
            branch_id=self.branch_id,
            supplier_id=self.supplier_id,
            purchase_order_id=self.purchase_order_id,
            customer_purchase_id=self.customer_purchase_id,
            source_ref=self.source_ref,
            total_quantity=self.total_quantity,
            total_weight=self.total_weight,
            owned_quantity=self.owned_quantity,
            owned_weight=self.owned_weight,
            total_cost=self.total_cost,
            amount_paid=self.amount_paid,
            is_active=self.is_active,
            sequence_order=self.sequence_order,
            version=self.version,
            created_at=self.created_at,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<ProductOwnership {self.id}: product={self.product_id} "
            f"branch={self.branch_id} owned={self.owned_quantity}/{self.total_quantity}>"
        )


class OwnershipMovementModel(Base):
    """Append-only ownership ledger row."""

    __tablename__ = "ownership_movements"

    __table_args__ = (
        UniqueConstraint(
            "ownership_id",
            "movement_type",
            "reference_number",
            name="uq_ownership_movement_reference",
        ),
        Index("idx_movement_ownership_created", "ownership_id", "created_at"),
    )

    ownership_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_ownerships.id"),
        nullable=False,
    )
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_change: Mapped[Decimal] = mapped_column(nullable=False)
    weight_change: Mapped[Decimal] = mapped_column(nullable=False)
    amount_change: Mapped[Decimal] = mapped_column(nullable=False)

    # Snapshot after the mutation; historical, never recomputed
    owned_quantity_after: Mapped[Decimal] = mapped_column(nullable=False)
    owned_weight_after: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid_after: Mapped[Decimal] = mapped_column(nullable=False)
    ownership_percentage_after: Mapped[Decimal] = mapped_column(nullable=False)

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def to_dto(self) -> OwnershipMovementRecord:
        return OwnershipMovementRecord(
            movement_id=self.id,
            ownership_id=self.ownership_id,
            movement_type=MovementType(self.movement_type),
            quantity_change=self.quantity_change,
            weight_change=self.weight_change,
            amount_change=self.amount_change,
            owned_quantity_after=self.owned_quantity_after,
            owned_weight_after=self.owned_weight_after,
            amount_paid_after=self.amount_paid_after,
            ownership_percentage_after=self.ownership_percentage_after,
            reference_number=self.reference_number,
            created_at=self.created_at,
            created_by=self.created_by,
            notes=self.notes,
        )
