"""
Module: goldpos_kernel.selectors.cost_lot_selector
Responsibility: Read-only queries over cost lots and their issuance trail.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Available lots come back in deterministic receipt order:
      (purchase_date, sequence_order).  FIFO walks this order forwards and
      LIFO backwards, so ties on purchase date break by sequence.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from goldpos_kernel.domain.dtos import CostLotIssuanceRecord, CostLotRecord
from goldpos_kernel.models.cost_lot import CostLotIssuanceModel, CostLotModel
from goldpos_kernel.selectors.base import BaseSelector


class CostLotSelector(BaseSelector[CostLotModel]):
    """Query interface for cost lots."""

    def get(self, lot_id: UUID) -> CostLotRecord | None:
        model = self.session.get(CostLotModel, lot_id)
        return model.to_dto() if model is not None else None

    def available_lots(
        self,
        product_id: str,
        branch_id: str | None = None,
    ) -> list[CostLotRecord]:
        """Non-exhausted lots with weight left, in receipt order."""
        stmt = select(CostLotModel).where(
            CostLotModel.product_id == product_id,
            CostLotModel.is_exhausted.is_(False),
            CostLotModel.remaining_weight > 0,
        )
        if branch_id is not None:
            stmt = stmt.where(CostLotModel.branch_id == branch_id)
        stmt = stmt.order_by(CostLotModel.purchase_date, CostLotModel.sequence_order)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def issuances(self, lot_id: UUID) -> list[CostLotIssuanceRecord]:
        stmt = (
            select(CostLotIssuanceModel)
            .where(CostLotIssuanceModel.lot_id == lot_id)
            .order_by(CostLotIssuanceModel.created_at)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def issuances_for_reference(self, reference_number: str) -> list[CostLotIssuanceRecord]:
        stmt = (
            select(CostLotIssuanceModel)
            .where(CostLotIssuanceModel.reference_number == reference_number)
            .order_by(CostLotIssuanceModel.created_at)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]
