"""
goldpos_services.cost_source_ledger -- Purchase cost lots.

Responsibility:
    Create a cost lot for every purchase receipt and decrement lots when
    stock is issued, writing one CostLotIssuance per lot touched.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    The FIFO/LIFO plan is computed by goldpos_engines.costing.CostingEngine;
    this service applies it to the locked lot rows.

Invariants enforced:
    - Lots are never deleted.  Received quantity, weight and per-gram cost
      never change after creation (db/immutability.py).
    - 0 <= remaining <= received on every lot; a lot whose remaining
      quantity reaches zero is marked exhausted.
    - sequence_order comes from the transactional ``cost_lot`` sequence,
      so receipt order is total even for lots received in the same second.

Failure modes:
    - ValidationError on non-positive quantity, weight or cost.
    - PartialFulfillmentError when the lots cannot cover an issue.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from goldpos_engines.costing import CostingEngine, CostingResult, CostLayer
from goldpos_kernel.db.types import RATE_DECIMAL_PLACES, WEIGHT_DECIMAL_PLACES, ZERO, fits_scale
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import CostLotRecord, CostMethod
from goldpos_kernel.exceptions import ValidationError
from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.models.cost_lot import CostLotIssuanceModel, CostLotModel
from goldpos_kernel.selectors.cost_lot_selector import CostLotSelector
from goldpos_kernel.services.base import BaseService
from goldpos_kernel.services.sequence_service import SequenceService

logger = get_logger("services.cost_source")


class CostSourceLedger(BaseService[CostLotModel]):
    """
    Append-mostly store of purchase cost lots.

    Contract:
        Receives Session and Clock via constructor injection.  Flushes,
        never commits.
    Non-goals:
        - Valuation without consumption; see CostingService.
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
        self._selector = CostLotSelector(session)
        self._sequences = SequenceService(session)

    def record_lot(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
        weight: Decimal,
        unit_cost_per_gram: Decimal,
        source_ref: str,
        actor: str,
        supplier_id: str | None = None,
        karat_type_id: str | None = None,
        purchase_date: date | None = None,
    ) -> CostLotRecord:
        """Create the lot for one receipt."""
        if quantity <= ZERO or weight <= ZERO:
            raise ValidationError("Lot quantity and weight must be positive", field="quantity")
        if unit_cost_per_gram < ZERO:
            raise ValidationError("Unit cost per gram cannot be negative", field="unit_cost_per_gram")
        if not source_ref:
            raise ValidationError("Lot source reference is required", field="source_ref")
        for name, value, places in (
            ("quantity", quantity, WEIGHT_DECIMAL_PLACES),
            ("weight", weight, WEIGHT_DECIMAL_PLACES),
            ("unit_cost_per_gram", unit_cost_per_gram, RATE_DECIMAL_PLACES),
        ):
            if not fits_scale(value, places):
                raise ValidationError(
                    f"{name} {value} has more than {places} decimal places", field=name,
                )

        lot = CostLotModel(
            id=uuid4(),
            product_id=product_id,
            branch_id=branch_id,
            supplier_id=supplier_id,
            karat_type_id=karat_type_id,
            source_ref=source_ref,
            quantity=quantity,
            weight=weight,
            unit_cost_per_gram=unit_cost_per_gram,
            remaining_quantity=quantity,
            remaining_weight=weight,
            purchase_date=purchase_date or self._clock.today(),
            sequence_order=self._sequences.next_value(SequenceService.COST_LOT),
            is_exhausted=False,
            created_at=self._clock.now(),
            created_by=actor,
        )
        self.session.add(lot)
        self._flush("CostLot", str(lot.id))

        logger.info("cost_lot_recorded", extra={
            "lot_id": str(lot.id),
            "product_id": product_id,
            "branch_id": branch_id,
            "quantity": str(quantity),
            "weight": str(weight),
            "unit_cost_per_gram": str(unit_cost_per_gram),
            "sequence_order": lot.sequence_order,
        })
        return lot.to_dto()

    def available_lots(self, product_id: str, branch_id: str | None = None) -> list[CostLotRecord]:
        return self._selector.available_lots(product_id, branch_id)

    def issue(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
        method: CostMethod,
        reference_number: str,
        actor: str,
    ) -> CostingResult:
        """
        Consume ``quantity`` from the lots by FIFO or LIFO.

        Returns the plan that was applied; its contributions correspond
        one-to-one with the issuance rows written.
        """
        if not reference_number:
            raise ValidationError("Reference number is required", field="reference_number")
        if not fits_scale(quantity, WEIGHT_DECIMAL_PLACES):
            raise ValidationError(
                f"quantity {quantity} has more than {WEIGHT_DECIMAL_PLACES} decimal places",
                field="quantity",
            )

        lots = list(self.session.scalars(
            select(CostLotModel)
            .where(
                CostLotModel.product_id == product_id,
                CostLotModel.branch_id == branch_id,
                CostLotModel.is_exhausted.is_(False),
                CostLotModel.remaining_quantity > 0,
            )
            .order_by(CostLotModel.purchase_date, CostLotModel.sequence_order)
            .with_for_update()
        ))
        plan = self._engine.plan(
            method,
            product_id,
            [CostLayer.from_record(lot.to_dto()) for lot in lots],
            quantity,
        )

        by_id = {lot.id: lot for lot in lots}
        now = self._clock.now()
        for contribution in plan.contributions:
            lot = by_id[contribution.lot_id]
            lot.remaining_quantity -= contribution.quantity
            lot.remaining_weight -= contribution.weight
            if lot.remaining_quantity <= ZERO or lot.remaining_weight <= ZERO:
                lot.is_exhausted = True
            lot.updated_at = now
            lot.updated_by = actor
            self.session.add(CostLotIssuanceModel(
                lot_id=lot.id,
                quantity=contribution.quantity,
                weight=contribution.weight,
                cost=contribution.cost,
                cost_method=method.value,
                reference_number=reference_number,
                created_at=now,
                created_by=actor,
            ))
        self._flush("CostLot", f"{product_id}@{branch_id}")

        logger.info("cost_lots_issued", extra={
            "product_id": product_id,
            "branch_id": branch_id,
            "method": method.value,
            "quantity": str(quantity),
            "lots_touched": len(plan.contributions),
            "total_cost": str(plan.total_cost),
            "reference_number": reference_number,
        })
        return plan
