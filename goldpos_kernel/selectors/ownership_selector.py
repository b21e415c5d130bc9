"""
Module: goldpos_kernel.selectors.ownership_selector
Responsibility: Read-only queries over product ownership rows and their
    movement ledger: per-product lookups, low-ownership and
    outstanding-payment listings, paginated branch listings and the sale
    risk report.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Ownership percentage is never read from storage; filters on it are
      evaluated on the derived value so that listings agree exactly with
      ProductOwnershipModel.ownership_percentage.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from goldpos_kernel.db.types import ZERO, percentage_of
from goldpos_kernel.domain.dtos import (
    OwnershipMovementRecord,
    OwnershipRecord,
    Page,
    PaymentStatus,
    SaleRiskItem,
    SupplierRiskLine,
)
from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel
from goldpos_kernel.selectors.base import BaseSelector


class OwnershipSelector(BaseSelector[ProductOwnershipModel]):
    """Query interface for ownership rows and movements."""

    def get(self, ownership_id: UUID) -> OwnershipRecord | None:
        model = self.session.get(ProductOwnershipModel, ownership_id)
        return model.to_dto() if model is not None else None

    def for_product(
        self,
        product_id: str,
        branch_id: str,
        include_inactive: bool = False,
    ) -> list[OwnershipRecord]:
        """Rows for a product at a branch, oldest first."""
        stmt = select(ProductOwnershipModel).where(
            ProductOwnershipModel.product_id == product_id,
            ProductOwnershipModel.branch_id == branch_id,
        )
        if not include_inactive:
            stmt = stmt.where(ProductOwnershipModel.is_active.is_(True))
        stmt = stmt.order_by(ProductOwnershipModel.sequence_order)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def movements(self, ownership_id: UUID) -> list[OwnershipMovementRecord]:
        """Movement history of one row, newest first."""
        stmt = (
            select(OwnershipMovementModel)
            .where(OwnershipMovementModel.ownership_id == ownership_id)
            .order_by(OwnershipMovementModel.created_at.desc())
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def active(self, branch_id: str | None = None) -> list[OwnershipRecord]:
        """All active rows carrying stock, newest first."""
        return [m.to_dto() for m in self.active_rows(branch_id)]

    def active_rows(self, branch_id: str | None = None) -> list[ProductOwnershipModel]:
        """ORM rows behind active(), for callers that convert each row themselves."""
        stmt = select(ProductOwnershipModel).where(
            ProductOwnershipModel.is_active.is_(True),
            ProductOwnershipModel.total_quantity > 0,
        )
        if branch_id is not None:
            stmt = stmt.where(ProductOwnershipModel.branch_id == branch_id)
        stmt = stmt.order_by(
            ProductOwnershipModel.created_at.desc(),
            ProductOwnershipModel.sequence_order.desc(),
        )
        return list(self.session.scalars(stmt))

    def low_ownership(
        self,
        threshold: Decimal,
        branch_id: str | None = None,
    ) -> list[OwnershipRecord]:
        return [r for r in self.active(branch_id) if r.ownership_percentage < threshold]

    def with_outstanding_payments(self, branch_id: str | None = None) -> list[OwnershipRecord]:
        return [r for r in self.active(branch_id) if r.outstanding_amount > ZERO]

    def list_by_branch(
        self,
        branch_id: str,
        supplier_id: str | None = None,
        active_only: bool = True,
        page: int = 1,
        page_size: int = 50,
    ) -> Page:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be >= 1")

        conditions = [ProductOwnershipModel.branch_id == branch_id]
        if supplier_id is not None:
            conditions.append(ProductOwnershipModel.supplier_id == supplier_id)
        if active_only:
            conditions.append(ProductOwnershipModel.is_active.is_(True))

        total = self.session.scalar(
            select(func.count()).select_from(ProductOwnershipModel).where(*conditions)
        )
        rows = self.session.scalars(
            select(ProductOwnershipModel)
            .where(*conditions)
            .order_by(ProductOwnershipModel.sequence_order.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return Page(
            items=tuple(m.to_dto() for m in rows),
            total_count=total or 0,
            page=page,
            page_size=page_size,
        )

    def sale_risk_report(self, branch_id: str | None = None) -> list[SaleRiskItem]:
        """
        Products that would be sold while a supplier is still unpaid.

        One item per (product, branch) that has at least one active row with
        an outstanding amount, listing every supplier row for that product.
        Ordered by total outstanding, largest first.
        """
        grouped: OrderedDict[tuple[str, str], list[OwnershipRecord]] = OrderedDict()
        for record in sorted(
            self.active(branch_id), key=lambda r: (r.product_id, r.branch_id, r.sequence_order)
        ):
            grouped.setdefault((record.product_id, record.branch_id), []).append(record)

        items: list[SaleRiskItem] = []
        for (product_id, branch), records in grouped.items():
            outstanding = sum((r.outstanding_amount for r in records), ZERO)
            if outstanding <= ZERO:
                continue
            items.append(
                SaleRiskItem(
                    product_id=product_id,
                    branch_id=branch,
                    total_outstanding=outstanding,
                    ownership_percentage=percentage_of(
                        sum((r.owned_weight for r in records), ZERO),
                        sum((r.total_weight for r in records), ZERO),
                    ),
                    suppliers=tuple(
                        SupplierRiskLine(
                            ownership_id=r.ownership_id,
                            supplier_id=r.supplier_id,
                            total_cost=r.total_cost,
                            amount_paid=r.amount_paid,
                            outstanding_amount=r.outstanding_amount,
                            payment_status=r.payment_status,
                        )
                        for r in records
                        if r.payment_status is not PaymentStatus.PAID
                    ),
                )
            )
        items.sort(key=lambda i: i.total_outstanding, reverse=True)
        return items
