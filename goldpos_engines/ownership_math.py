"""
Module: goldpos_engines.ownership_math
Responsibility:
    The arithmetic of partial ownership: how a payment converts into owned
    quantity and weight, how a sale shrinks a row, and how a sale quantity
    is spread over several rows oldest-first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  OwnershipTracker checks
    preconditions with typed errors, then applies these functions to the
    locked rows.

Invariants enforced:
    - Every returned position satisfies 0 <= owned <= total (quantity and
      weight) and 0 <= amount_paid <= total_cost; ``validate`` raises
      otherwise.
    - A payment that settles the row makes owned equal total exactly.
    - A sale that takes the whole owned quantity takes the exact owned
      weight, and one that empties the row takes its exact total cost.

Failure modes:
    - ValueError on a non-positive amount or quantity, an overpayment, or
      a sale larger than what is owned.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from goldpos_kernel.db.types import ZERO, percentage_of, round_money, round_weight


@dataclass(frozen=True, slots=True)
class OwnershipPosition:
    total_quantity: Decimal
    total_weight: Decimal
    owned_quantity: Decimal
    owned_weight: Decimal
    total_cost: Decimal
    amount_paid: Decimal

    @classmethod
    def of(cls, row) -> OwnershipPosition:
        """Snapshot any object carrying the six ownership fields (model or DTO)."""
        return cls(
            total_quantity=row.total_quantity,
            total_weight=row.total_weight,
            owned_quantity=row.owned_quantity,
            owned_weight=row.owned_weight,
            total_cost=row.total_cost,
            amount_paid=row.amount_paid,
        )

    @property
    def ownership_percentage(self) -> Decimal:
        return percentage_of(self.owned_weight, self.total_weight)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_cost - self.amount_paid

    def validate(self) -> OwnershipPosition:
        if not ZERO <= self.owned_quantity <= self.total_quantity:
            raise ValueError(
                f"owned_quantity {self.owned_quantity} outside 0..{self.total_quantity}"
            )
        if not ZERO <= self.owned_weight <= self.total_weight:
            raise ValueError(
                f"owned_weight {self.owned_weight} outside 0..{self.total_weight}"
            )
        if not ZERO <= self.amount_paid <= self.total_cost:
            raise ValueError(
                f"amount_paid {self.amount_paid} outside 0..{self.total_cost}"
            )
        return self


@dataclass(frozen=True, slots=True)
class PaymentEffect:
    position: OwnershipPosition
    quantity_gain: Decimal
    weight_gain: Decimal


@dataclass(frozen=True, slots=True)
class SaleEffect:
    position: OwnershipPosition
    quantity_taken: Decimal
    weight_taken: Decimal
    cost_taken: Decimal
    paid_taken: Decimal


def apply_payment(position: OwnershipPosition, amount: Decimal) -> PaymentEffect:
    """
    Owned quantity and weight grow by amount / total_cost of the totals.

    Gains are clamped to what is still unowned.
    """
    if amount <= ZERO:
        raise ValueError(f"Payment amount must be positive, got {amount}")
    if amount > position.outstanding_amount:
        raise ValueError(
            f"Payment {amount} exceeds outstanding {position.outstanding_amount}"
        )

    amount_paid = position.amount_paid + amount
    if amount_paid == position.total_cost:
        owned_quantity = position.total_quantity
        owned_weight = position.total_weight
    else:
        share = amount / position.total_cost
        owned_quantity = min(
            position.total_quantity,
            position.owned_quantity + round_weight(share * position.total_quantity),
        )
        owned_weight = min(
            position.total_weight,
            position.owned_weight + round_weight(share * position.total_weight),
        )

    new_position = replace(
        position,
        owned_quantity=owned_quantity,
        owned_weight=owned_weight,
        amount_paid=amount_paid,
    ).validate()
    return PaymentEffect(
        position=new_position,
        quantity_gain=owned_quantity - position.owned_quantity,
        weight_gain=owned_weight - position.owned_weight,
    )


def apply_sale(position: OwnershipPosition, quantity: Decimal) -> SaleEffect:
    """
    Remove ``quantity`` sold units from the row.

    Owned and total shrink by the same quantity and weight.  Cost shrinks
    by the sold share of the row, and amount paid by that cost (never more
    than what was paid).
    """
    if quantity <= ZERO:
        raise ValueError(f"Sale quantity must be positive, got {quantity}")
    if quantity > position.owned_quantity:
        raise ValueError(
            f"Sale quantity {quantity} exceeds owned {position.owned_quantity}"
        )

    if quantity == position.owned_quantity:
        weight_taken = position.owned_weight
    else:
        weight_taken = round_weight(
            quantity * position.owned_weight / position.owned_quantity
        )

    if quantity == position.total_quantity:
        cost_taken = position.total_cost
    else:
        cost_taken = round_money(
            position.total_cost * quantity / position.total_quantity
        )
    paid_taken = min(cost_taken, position.amount_paid)

    new_position = OwnershipPosition(
        total_quantity=position.total_quantity - quantity,
        total_weight=position.total_weight - weight_taken,
        owned_quantity=position.owned_quantity - quantity,
        owned_weight=position.owned_weight - weight_taken,
        total_cost=position.total_cost - cost_taken,
        amount_paid=position.amount_paid - paid_taken,
    ).validate()
    return SaleEffect(
        position=new_position,
        quantity_taken=quantity,
        weight_taken=weight_taken,
        cost_taken=cost_taken,
        paid_taken=paid_taken,
    )


def apply_adjustment(
    position: OwnershipPosition,
    quantity_change: Decimal,
    weight_change: Decimal,
) -> OwnershipPosition:
    """Correct owned quantity and weight within the row's totals."""
    return replace(
        position,
        owned_quantity=position.owned_quantity + quantity_change,
        owned_weight=position.owned_weight + weight_change,
    ).validate()


def allocate_sale(owned_quantities: Sequence[Decimal], quantity: Decimal) -> list[Decimal]:
    """
    Split ``quantity`` across rows given in consumption order.

    Returns the amount taken from each row (zeros after the last touched
    row).
    """
    if quantity <= ZERO:
        raise ValueError(f"Sale quantity must be positive, got {quantity}")
    available = sum(owned_quantities, ZERO)
    if available < quantity:
        raise ValueError(f"Sale quantity {quantity} exceeds owned {available}")

    remaining = quantity
    takes: list[Decimal] = []
    for owned in owned_quantities:
        take = min(max(owned, ZERO), remaining)
        takes.append(take)
        remaining -= take
    return takes
