"""
goldpos_services.ownership_tracker -- Partial ownership of product stock.

Responsibility:
    Maintain ProductOwnership rows as stock is received, paid for and sold,
    and write one OwnershipMovement for every change:
        - validate_sale: read-only pre-check over all active rows.
        - record_sale_consumption: consume rows oldest-first.
        - record_payment: convert a supplier payment into owned stock.
        - create_or_update: receipt upsert.
        - record_adjustment: manual owned-stock correction.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Arithmetic lives in goldpos_engines.ownership_math; this module checks
    preconditions with typed errors, locks rows and persists.

Invariants enforced:
    - 0 <= owned <= total and 0 <= amount_paid <= total_cost on every row
      after every call (validated before flush, CHECK constraints behind).
    - Every mutation writes exactly one movement per touched row, carrying
      the post-mutation snapshot, in the caller's transaction.
    - Replaying a (row, movement type, reference) is rejected with
      DuplicateMovementError before anything is mutated.
    - Rows to be mutated are read with SELECT ... FOR UPDATE; the row
      version makes a stale write fail with ConcurrencyConflictError.

Failure modes:
    - ValidationError: non-positive amount/quantity, malformed request.
    - OverpaymentError, InsufficientOwnershipError.
    - OwnershipNotFoundError, OwnershipInactiveError.
    - DuplicateMovementError, ConcurrencyConflictError.

Audit relevance:
    The movement ledger is the complete history of owned quantity, owned
    weight and amount paid.  Movements are immutable (db/immutability.py).
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from goldpos_config.schema import OwnershipSettings
from goldpos_engines.ownership_math import (
    OwnershipPosition,
    allocate_sale,
    apply_adjustment,
    apply_payment,
    apply_sale,
)
from goldpos_kernel.db.types import (
    CURRENCY_DECIMAL_PLACES,
    WEIGHT_DECIMAL_PLACES,
    ZERO,
    fits_scale,
    percentage_of,
)
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import (
    MovementType,
    OwnershipMovementRecord,
    OwnershipRecord,
    OwnershipRequest,
    PaymentStatus,
    SaleValidation,
)
from goldpos_kernel.domain.inventory import InventoryService
from goldpos_kernel.exceptions import (
    DuplicateMovementError,
    InsufficientOwnershipError,
    OverpaymentError,
    OwnershipInactiveError,
    OwnershipNotFoundError,
    ValidationError,
)
from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector
from goldpos_kernel.services.base import BaseService
from goldpos_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ownership")

_ENTITY = "ProductOwnership"


class OwnershipTracker(BaseService[ProductOwnershipModel]):
    """
    Mutations and sale checks over ProductOwnership rows.

    Contract:
        Receives Session, Clock, OwnershipSettings and an optional
        InventoryService via constructor injection.  Flushes, never commits.
    Guarantees:
        - Rows are consumed in sequence_order (creation order).
        - A row whose total quantity reaches zero is deactivated.
    Non-goals:
        - Does not touch cost lots or gold balances; GoldOperations composes
          those calls when one business event needs several ledgers.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: OwnershipSettings | None = None,
        inventory: InventoryService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._settings = settings or OwnershipSettings()
        self._inventory = inventory
        self._selector = OwnershipSelector(session)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Sales
    # =========================================================================

    def validate_sale(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
    ) -> SaleValidation:
        """
        Check whether ``quantity`` units can be sold from owned stock.

        Read-only.  can_sell depends only on owned quantity; everything else
        (partial payment, low ownership, stock mismatch) is a warning.
        """
        if quantity <= ZERO:
            raise ValidationError(f"Quantity must be positive, got {quantity}", field="quantity")
        _require_scale(quantity, WEIGHT_DECIMAL_PLACES, "quantity")

        records = self._selector.for_product(product_id, branch_id)
        owned_quantity = sum((r.owned_quantity for r in records), ZERO)
        total_quantity = sum((r.total_quantity for r in records), ZERO)
        owned_weight = sum((r.owned_weight for r in records), ZERO)
        total_weight = sum((r.total_weight for r in records), ZERO)
        outstanding = sum((r.outstanding_amount for r in records), ZERO)

        warnings: list[str] = []
        if not records:
            warnings.append(
                f"No active ownership records for product {product_id} at branch {branch_id}"
            )
        else:
            if owned_quantity < quantity:
                warnings.append(
                    f"Insufficient owned quantity: {owned_quantity} owned, {quantity} requested"
                )
            percentage = percentage_of(owned_weight, total_weight)
            if percentage < self._settings.low_ownership_threshold:
                warnings.append(
                    f"Low ownership: {percentage}% owned "
                    f"(threshold {self._settings.low_ownership_threshold}%)"
                )
            if outstanding > ZERO:
                warnings.append(f"Outstanding supplier payments: {outstanding}")
            for record in records:
                status = record.payment_status
                if status is not PaymentStatus.PAID:
                    warnings.append(
                        f"Supplier {record.supplier_id or 'unknown'} is {status.value}: "
                        f"{record.outstanding_amount} outstanding"
                    )

        stock_on_hand = None
        if self._inventory is not None:
            stock_on_hand = self._inventory.stock_on_hand(product_id, branch_id)
            if stock_on_hand < quantity:
                warnings.append(
                    f"Stock on hand {stock_on_hand} is below requested quantity {quantity}"
                )

        result = SaleValidation(
            product_id=product_id,
            branch_id=branch_id,
            requested_quantity=quantity,
            can_sell=bool(records) and owned_quantity >= quantity,
            owned_quantity=owned_quantity,
            total_quantity=total_quantity,
            owned_weight=owned_weight,
            total_weight=total_weight,
            outstanding_amount=outstanding,
            warnings=tuple(warnings),
            stock_on_hand=stock_on_hand,
        )
        logger.info("sale_validated", extra={
            "product_id": product_id,
            "branch_id": branch_id,
            "requested_quantity": str(quantity),
            "owned_quantity": str(owned_quantity),
            "can_sell": result.can_sell,
            "warning_count": len(warnings),
        })
        return result

    def record_sale_consumption(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
        reference_number: str,
        actor: str,
    ) -> list[OwnershipMovementRecord]:
        """
        Remove ``quantity`` sold units from owned stock, oldest row first.

        Each touched row loses the sold quantity and weight from both its
        owned and total figures, the sold share of its cost, and the same
        amount (at most what was paid) from amount_paid.

        Returns:
            One Sale movement per touched row, in consumption order.
        """
        if quantity <= ZERO:
            raise ValidationError(f"Quantity must be positive, got {quantity}", field="quantity")
        _require_scale(quantity, WEIGHT_DECIMAL_PLACES, "quantity")
        self._require_reference(reference_number)

        replayed = self.session.scalars(
            select(OwnershipMovementModel.ownership_id)
            .join(
                ProductOwnershipModel,
                ProductOwnershipModel.id == OwnershipMovementModel.ownership_id,
            )
            .where(
                ProductOwnershipModel.product_id == product_id,
                ProductOwnershipModel.branch_id == branch_id,
                OwnershipMovementModel.movement_type == MovementType.SALE.value,
                OwnershipMovementModel.reference_number == reference_number,
            )
        ).first()
        if replayed is not None:
            raise DuplicateMovementError(str(replayed), MovementType.SALE.value, reference_number)

        rows = list(self.session.scalars(
            select(ProductOwnershipModel)
            .where(
                ProductOwnershipModel.product_id == product_id,
                ProductOwnershipModel.branch_id == branch_id,
                ProductOwnershipModel.is_active.is_(True),
                ProductOwnershipModel.owned_quantity > 0,
            )
            .order_by(ProductOwnershipModel.sequence_order)
            .with_for_update()
        ))
        owned = sum((row.owned_quantity for row in rows), ZERO)
        if owned < quantity:
            logger.warning("sale_insufficient_ownership", extra={
                "product_id": product_id,
                "branch_id": branch_id,
                "requested_quantity": str(quantity),
                "owned_quantity": str(owned),
            })
            raise InsufficientOwnershipError(product_id, branch_id, quantity, owned)

        takes = allocate_sale([row.owned_quantity for row in rows], quantity)
        movements: list[OwnershipMovementModel] = []
        for row, take in zip(rows, takes):
            if take <= ZERO:
                continue
            effect = apply_sale(OwnershipPosition.of(row), take)
            self._store_position(row, effect.position, actor)
            if row.total_quantity <= ZERO:
                row.is_active = False
            movements.append(self._add_movement(
                row,
                MovementType.SALE,
                quantity_change=-effect.quantity_taken,
                weight_change=-effect.weight_taken,
                amount_change=-effect.paid_taken,
                reference_number=reference_number,
                actor=actor,
                notes=f"Sold {take} units, cost share {effect.cost_taken}",
            ))

        self._flush(_ENTITY, f"{product_id}@{branch_id}")
        logger.info("ownership_sale_recorded", extra={
            "product_id": product_id,
            "branch_id": branch_id,
            "quantity": str(quantity),
            "rows_touched": len(movements),
            "reference_number": reference_number,
        })
        return [m.to_dto() for m in movements]

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        ownership_id: UUID,
        amount: Decimal,
        reference_number: str,
        actor: str,
    ) -> OwnershipMovementRecord:
        """
        Apply a supplier payment to one row.

        Owned quantity and weight each grow by amount / total_cost of the
        row totals; a payment that settles the row makes it fully owned.
        """
        if amount <= ZERO:
            raise ValidationError(f"Payment amount must be positive, got {amount}", field="amount")
        _require_scale(amount, CURRENCY_DECIMAL_PLACES, "amount")
        self._require_reference(reference_number)

        row = self._lock_active(ownership_id)
        self._check_duplicate(row.id, MovementType.PAYMENT, reference_number)

        outstanding = row.outstanding_amount
        if amount > outstanding:
            logger.warning("ownership_overpayment_rejected", extra={
                "ownership_id": str(row.id),
                "amount": str(amount),
                "outstanding_amount": str(outstanding),
            })
            raise OverpaymentError(str(row.id), amount, outstanding)

        effect = apply_payment(OwnershipPosition.of(row), amount)
        self._store_position(row, effect.position, actor)
        movement = self._add_movement(
            row,
            MovementType.PAYMENT,
            quantity_change=effect.quantity_gain,
            weight_change=effect.weight_gain,
            amount_change=amount,
            reference_number=reference_number,
            actor=actor,
        )
        self._flush(_ENTITY, str(row.id))

        logger.info("ownership_payment_recorded", extra={
            "ownership_id": str(row.id),
            "amount": str(amount),
            "amount_paid": str(row.amount_paid),
            "ownership_percentage": str(row.ownership_percentage),
            "reference_number": reference_number,
        })
        return movement.to_dto()

    # =========================================================================
    # Receipts and adjustments
    # =========================================================================

    def create_or_update(self, request: OwnershipRequest, actor: str) -> OwnershipRecord:
        """
        Record received stock.

        Merges into the active row with the same (product, branch, supplier,
        purchase order, customer purchase) key, or creates a new row.  Writes
        a Receipt movement either way.
        """
        self._validate_request(request)

        row = self.session.scalars(
            select(ProductOwnershipModel)
            .where(
                ProductOwnershipModel.product_id == request.product_id,
                ProductOwnershipModel.branch_id == request.branch_id,
                _matches(ProductOwnershipModel.supplier_id, request.supplier_id),
                _matches(ProductOwnershipModel.purchase_order_id, request.purchase_order_id),
                _matches(ProductOwnershipModel.customer_purchase_id, request.customer_purchase_id),
                ProductOwnershipModel.is_active.is_(True),
            )
            .order_by(ProductOwnershipModel.sequence_order)
            .with_for_update()
        ).first()

        now = self._clock.now()
        if row is not None:
            self._check_duplicate(row.id, MovementType.RECEIPT, request.reference_number)
            try:
                merged = OwnershipPosition(
                    total_quantity=row.total_quantity + request.total_quantity,
                    total_weight=row.total_weight + request.total_weight,
                    owned_quantity=row.owned_quantity + request.owned_quantity,
                    owned_weight=row.owned_weight + request.owned_weight,
                    total_cost=row.total_cost + request.total_cost,
                    amount_paid=row.amount_paid + request.amount_paid,
                ).validate()
            except ValueError as exc:
                raise ValidationError(str(exc), field="request") from exc
            self._store_position(row, merged, actor)
            if request.notes:
                row.notes = request.notes
            created = False
        else:
            row = ProductOwnershipModel(
                id=uuid4(),
                product_id=request.product_id,
                branch_id=request.branch_id,
                supplier_id=request.supplier_id,
                purchase_order_id=request.purchase_order_id,
                customer_purchase_id=request.customer_purchase_id,
                source_ref=request.source_ref,
                total_quantity=request.total_quantity,
                total_weight=request.total_weight,
                owned_quantity=request.owned_quantity,
                owned_weight=request.owned_weight,
                total_cost=request.total_cost,
                amount_paid=request.amount_paid,
                is_active=True,
                sequence_order=self._sequences.next_value(SequenceService.OWNERSHIP),
                notes=request.notes,
                created_at=now,
                created_by=actor,
            )
            self.session.add(row)
            self._flush(_ENTITY, str(row.id))
            created = True

        self._add_movement(
            row,
            MovementType.RECEIPT,
            quantity_change=request.owned_quantity,
            weight_change=request.owned_weight,
            amount_change=request.amount_paid,
            reference_number=request.reference_number,
            actor=actor,
            notes=(
                f"Received {request.total_quantity} units / {request.total_weight}g "
                f"at {request.total_cost}"
            ),
        )
        self._flush(_ENTITY, str(row.id))

        logger.info("ownership_receipt_recorded", extra={
            "ownership_id": str(row.id),
            "product_id": row.product_id,
            "branch_id": row.branch_id,
            "supplier_id": row.supplier_id,
            "row_created": created,
            "total_quantity": str(row.total_quantity),
            "ownership_percentage": str(row.ownership_percentage),
            "reference_number": request.reference_number,
        })
        return row.to_dto()

    def record_adjustment(
        self,
        ownership_id: UUID,
        quantity_change: Decimal,
        weight_change: Decimal,
        reason: str,
        reference_number: str,
        actor: str,
    ) -> OwnershipMovementRecord:
        """Correct owned quantity/weight of one row; totals and money are untouched."""
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required", field="reason")
        if quantity_change == ZERO and weight_change == ZERO:
            raise ValidationError("Adjustment changes nothing", field="quantity_change")
        _require_scale(quantity_change, WEIGHT_DECIMAL_PLACES, "quantity_change")
        _require_scale(weight_change, WEIGHT_DECIMAL_PLACES, "weight_change")
        self._require_reference(reference_number)

        row = self._lock_active(ownership_id)
        self._check_duplicate(row.id, MovementType.ADJUSTMENT, reference_number)
        try:
            position = apply_adjustment(OwnershipPosition.of(row), quantity_change, weight_change)
        except ValueError as exc:
            raise ValidationError(str(exc), field="quantity_change") from exc

        self._store_position(row, position, actor)
        movement = self._add_movement(
            row,
            MovementType.ADJUSTMENT,
            quantity_change=quantity_change,
            weight_change=weight_change,
            amount_change=ZERO,
            reference_number=reference_number,
            actor=actor,
            notes=reason,
        )
        self._flush(_ENTITY, str(row.id))

        logger.info("ownership_adjustment_recorded", extra={
            "ownership_id": str(row.id),
            "quantity_change": str(quantity_change),
            "weight_change": str(weight_change),
            "reason": reason,
        })
        return movement.to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_active(self, ownership_id: UUID) -> ProductOwnershipModel:
        row = self.session.scalars(
            select(ProductOwnershipModel)
            .where(ProductOwnershipModel.id == ownership_id)
            .with_for_update()
        ).one_or_none()
        if row is None:
            raise OwnershipNotFoundError(str(ownership_id))
        if not row.is_active:
            raise OwnershipInactiveError(str(ownership_id))
        return row

    def _check_duplicate(
        self,
        ownership_id: UUID,
        movement_type: MovementType,
        reference_number: str,
    ) -> None:
        existing = self.session.scalars(
            select(OwnershipMovementModel.id).where(
                OwnershipMovementModel.ownership_id == ownership_id,
                OwnershipMovementModel.movement_type == movement_type.value,
                OwnershipMovementModel.reference_number == reference_number,
            )
        ).first()
        if existing is not None:
            logger.warning("ownership_movement_replay_rejected", extra={
                "ownership_id": str(ownership_id),
                "movement_type": movement_type.value,
                "reference_number": reference_number,
            })
            raise DuplicateMovementError(str(ownership_id), movement_type.value, reference_number)

    def _store_position(
        self,
        row: ProductOwnershipModel,
        position: OwnershipPosition,
        actor: str,
    ) -> None:
        row.total_quantity = position.total_quantity
        row.total_weight = position.total_weight
        row.owned_quantity = position.owned_quantity
        row.owned_weight = position.owned_weight
        row.total_cost = position.total_cost
        row.amount_paid = position.amount_paid
        row.updated_at = self._clock.now()
        row.updated_by = actor

    def _add_movement(
        self,
        row: ProductOwnershipModel,
        movement_type: MovementType,
        *,
        quantity_change: Decimal,
        weight_change: Decimal,
        amount_change: Decimal,
        reference_number: str,
        actor: str,
        notes: str | None = None,
    ) -> OwnershipMovementModel:
        movement = OwnershipMovementModel(
            ownership_id=row.id,
            movement_type=movement_type.value,
            quantity_change=quantity_change,
            weight_change=weight_change,
            amount_change=amount_change,
            owned_quantity_after=row.owned_quantity,
            owned_weight_after=row.owned_weight,
            amount_paid_after=row.amount_paid,
            ownership_percentage_after=row.ownership_percentage,
            reference_number=reference_number,
            notes=notes,
            created_at=self._clock.now(),
            created_by=actor,
        )
        self.session.add(movement)
        return movement

    @staticmethod
    def _require_reference(reference_number: str) -> None:
        if not reference_number or not reference_number.strip():
            raise ValidationError("Reference number is required", field="reference_number")

    def _validate_request(self, request: OwnershipRequest) -> None:
        self._require_reference(request.reference_number)
        if not request.product_id or not request.branch_id:
            raise ValidationError("product_id and branch_id are required", field="product_id")
        if request.total_quantity <= ZERO or request.total_weight <= ZERO:
            raise ValidationError(
                "Received quantity and weight must be positive", field="total_quantity",
            )
        for name in ("owned_quantity", "owned_weight", "total_cost", "amount_paid"):
            if getattr(request, name) < ZERO:
                raise ValidationError(f"{name} cannot be negative", field=name)
        for name in ("total_quantity", "total_weight", "owned_quantity", "owned_weight"):
            _require_scale(getattr(request, name), WEIGHT_DECIMAL_PLACES, name)
        for name in ("total_cost", "amount_paid"):
            _require_scale(getattr(request, name), CURRENCY_DECIMAL_PLACES, name)
        if request.owned_quantity > request.total_quantity:
            raise ValidationError("owned_quantity exceeds total_quantity", field="owned_quantity")
        if request.owned_weight > request.total_weight:
            raise ValidationError("owned_weight exceeds total_weight", field="owned_weight")
        if request.amount_paid > request.total_cost:
            raise ValidationError("amount_paid exceeds total_cost", field="amount_paid")


def _require_scale(value: Decimal, decimal_places: int, name: str) -> None:
    if not fits_scale(value, decimal_places):
        raise ValidationError(
            f"{name} {value} has more than {decimal_places} decimal places", field=name,
        )


def _matches(column, value):
    """Equality that treats None as SQL NULL."""
    return column.is_(None) if value is None else column == value
