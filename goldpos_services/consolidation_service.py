"""
goldpos_services.consolidation_service -- Fold redundant ownership rows.

Responsibility:
    Repeated receipts from one supplier leave several active ownership rows
    for the same product and branch.  This service finds such groups and
    merges each into a single row carrying the summed figures.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Blended cost comes from goldpos_engines.costing.CostingEngine.blend.

Invariants enforced:
    - Totals, owned figures, cost and amount paid are conserved exactly:
      the consolidated row holds the sums of its sources.
    - Source rows are deactivated, never deleted.
    - One Consolidation movement is written on the new row; its notes list
      every source row id.
    - Source rows are locked in ascending id order.

Failure modes:
    - NothingToConsolidateError when fewer than two active rows match.
    - OwnershipNotFoundError from weighted_average_for.
    - ConcurrencyConflictError when a source row changed underneath.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from goldpos_engines.costing import BlendResult, BlendSource, CostingEngine
from goldpos_engines.ownership_math import OwnershipPosition
from goldpos_kernel.db.types import ZERO
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import (
    ConsolidationOpportunity,
    ConsolidationResult,
    MovementType,
)
from goldpos_kernel.exceptions import NothingToConsolidateError, OwnershipNotFoundError
from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel
from goldpos_kernel.services.base import BaseService

logger = get_logger("services.consolidation")


def _total(rows: Iterable[ProductOwnershipModel], name: str) -> Decimal:
    return sum((getattr(row, name) for row in rows), ZERO)


def _shared(rows: list[ProductOwnershipModel], name: str) -> str | None:
    values = {getattr(row, name) for row in rows}
    return values.pop() if len(values) == 1 else None


class ConsolidationService(BaseService[ProductOwnershipModel]):
    """
    Merge active ownership rows sharing (product, supplier, branch).

    Contract:
        Receives Session and Clock via constructor injection.  Flushes,
        never commits.
    Non-goals:
        - Rows without a supplier are never grouped.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        engine: CostingEngine | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._engine = engine or CostingEngine()

    def find_opportunities(
        self,
        product_id: str | None = None,
        supplier_id: str | None = None,
        branch_id: str | None = None,
    ) -> list[ConsolidationOpportunity]:
        """Groups of two or more active rows, largest group first."""
        stmt = select(ProductOwnershipModel).where(
            ProductOwnershipModel.is_active.is_(True),
            ProductOwnershipModel.supplier_id.is_not(None),
        )
        if product_id is not None:
            stmt = stmt.where(ProductOwnershipModel.product_id == product_id)
        if supplier_id is not None:
            stmt = stmt.where(ProductOwnershipModel.supplier_id == supplier_id)
        if branch_id is not None:
            stmt = stmt.where(ProductOwnershipModel.branch_id == branch_id)
        stmt = stmt.order_by(ProductOwnershipModel.sequence_order)

        groups: dict[tuple[str, str, str], list[ProductOwnershipModel]] = {}
        for row in self.session.scalars(stmt):
            groups.setdefault((row.product_id, row.supplier_id, row.branch_id), []).append(row)

        opportunities = [
            ConsolidationOpportunity(
                product_id=product,
                supplier_id=supplier,
                branch_id=branch,
                record_count=len(rows),
                total_quantity=_total(rows, "total_quantity"),
                total_weight=_total(rows, "total_weight"),
                owned_quantity=_total(rows, "owned_quantity"),
                owned_weight=_total(rows, "owned_weight"),
                total_cost=_total(rows, "total_cost"),
                amount_paid=_total(rows, "amount_paid"),
                ownership_ids=tuple(row.id for row in rows),
            )
            for (product, supplier, branch), rows in groups.items()
            if len(rows) > 1
        ]
        opportunities.sort(
            key=lambda o: (-o.record_count, o.product_id, o.supplier_id, o.branch_id)
        )
        logger.info("consolidation_opportunities_found", extra={
            "count": len(opportunities),
            "product_id": product_id,
            "supplier_id": supplier_id,
            "branch_id": branch_id,
        })
        return opportunities

    def consolidate(
        self,
        product_id: str,
        supplier_id: str,
        branch_id: str,
        reference_number: str,
        actor: str,
    ) -> ConsolidationResult:
        """Fold every active row of the key into one new row."""
        rows = list(self.session.scalars(
            select(ProductOwnershipModel)
            .where(
                ProductOwnershipModel.product_id == product_id,
                ProductOwnershipModel.supplier_id == supplier_id,
                ProductOwnershipModel.branch_id == branch_id,
                ProductOwnershipModel.is_active.is_(True),
            )
            .order_by(ProductOwnershipModel.id)
            .with_for_update()
        ))
        if len(rows) < 2:
            raise NothingToConsolidateError(product_id, supplier_id, branch_id, len(rows))

        blend = self._engine.blend(
            [BlendSource(row.id, row.total_weight, row.total_cost) for row in rows]
        )
        position = OwnershipPosition(
            total_quantity=_total(rows, "total_quantity"),
            total_weight=_total(rows, "total_weight"),
            owned_quantity=_total(rows, "owned_quantity"),
            owned_weight=_total(rows, "owned_weight"),
            total_cost=_total(rows, "total_cost"),
            amount_paid=_total(rows, "amount_paid"),
        ).validate()

        now = self._clock.now()
        source_ids = tuple(row.id for row in rows)
        for row in rows:
            row.is_active = False
            row.updated_at = now
            row.updated_by = actor

        merged = ProductOwnershipModel(
            id=uuid4(),
            product_id=product_id,
            branch_id=branch_id,
            supplier_id=supplier_id,
            purchase_order_id=_shared(rows, "purchase_order_id"),
            customer_purchase_id=_shared(rows, "customer_purchase_id"),
            source_ref=reference_number,
            total_quantity=position.total_quantity,
            total_weight=position.total_weight,
            owned_quantity=position.owned_quantity,
            owned_weight=position.owned_weight,
            total_cost=position.total_cost,
            amount_paid=position.amount_paid,
            is_active=True,
            # Keeps the group's place in oldest-first sale consumption
            sequence_order=min(row.sequence_order for row in rows),
            notes=f"Consolidated {len(rows)} records",
            created_at=now,
            created_by=actor,
        )
        self.session.add(merged)
        self._flush("ProductOwnership", f"{product_id}:{supplier_id}@{branch_id}")

        movement = OwnershipMovementModel(
            ownership_id=merged.id,
            movement_type=MovementType.CONSOLIDATION.value,
            quantity_change=merged.owned_quantity,
            weight_change=merged.owned_weight,
            amount_change=merged.amount_paid,
            owned_quantity_after=merged.owned_quantity,
            owned_weight_after=merged.owned_weight,
            amount_paid_after=merged.amount_paid,
            ownership_percentage_after=merged.ownership_percentage,
            reference_number=reference_number,
            notes="Consolidated from: " + ", ".join(str(i) for i in source_ids),
            created_at=now,
            created_by=actor,
        )
        self.session.add(movement)
        self._flush("ProductOwnership", str(merged.id))

        logger.info("ownership_consolidated", extra={
            "ownership_id": str(merged.id),
            "product_id": product_id,
            "supplier_id": supplier_id,
            "branch_id": branch_id,
            "source_count": len(source_ids),
            "blended_cost_per_gram": str(blend.blended_cost_per_gram),
        })
        return ConsolidationResult(
            consolidated=merged.to_dto(),
            source_ids=source_ids,
            blended_cost_per_gram=blend.blended_cost_per_gram,
            movement=movement.to_dto(),
        )

    def consolidate_supplier(
        self,
        supplier_id: str,
        branch_id: str,
        reference_number: str,
        actor: str,
    ) -> list[ConsolidationResult]:
        """Consolidate every product of a supplier at a branch."""
        return [
            self.consolidate(
                opportunity.product_id, supplier_id, branch_id, reference_number, actor,
            )
            for opportunity in self.find_opportunities(
                supplier_id=supplier_id, branch_id=branch_id,
            )
        ]

    def weighted_average_for(self, ownership_ids: Iterable[UUID]) -> BlendResult:
        """Blended cost per gram over an arbitrary set of rows."""
        rows = []
        for ownership_id in ownership_ids:
            row = self.session.get(ProductOwnershipModel, ownership_id)
            if row is None:
                raise OwnershipNotFoundError(str(ownership_id))
            rows.append(row)
        return self._engine.blend(
            [BlendSource(row.id, row.total_weight, row.total_cost) for row in rows]
        )
