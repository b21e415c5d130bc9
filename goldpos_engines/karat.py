"""
Module: goldpos_engines.karat
Responsibility:
    Value-preserving conversion of a gold weight from one karat to another
    at given per-gram rates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Rates are looked up by the
    caller (GoldBalanceLedger) before any lock is taken and passed in.

Invariants enforced:
    - to_weight = from_weight × from_rate / to_rate, rounded to 3 places,
      so from_weight × from_rate ≈ to_weight × to_rate within the weight
      rounding of to_rate × 0.0005.
    - conversion_factor = to_weight / from_weight.

Failure modes:
    - DifferentKaratRequiredError when from and to karat are the same.
    - ValidationError on non-positive weight or rates.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from goldpos_engines.tracer import traced_engine
from goldpos_kernel.db.types import (
    WEIGHT_DECIMAL_PLACES,
    ZERO,
    fits_scale,
    round_money,
    round_rate,
    round_weight,
)
from goldpos_kernel.exceptions import DifferentKaratRequiredError, ValidationError


@dataclass(frozen=True, slots=True)
class KaratConversion:
    from_karat_type_id: str
    to_karat_type_id: str
    from_weight: Decimal
    to_weight: Decimal
    from_rate: Decimal
    to_rate: Decimal
    conversion_factor: Decimal

    @property
    def from_value(self) -> Decimal:
        return round_money(self.from_weight * self.from_rate)

    @property
    def to_value(self) -> Decimal:
        return round_money(self.to_weight * self.to_rate)


@traced_engine(
    "karat.convert",
    "1.0",
    fingerprint_fields=("from_karat_type_id", "to_karat_type_id", "from_weight", "from_rate", "to_rate"),
)
def convert_weight(
    *,
    from_karat_type_id: str,
    to_karat_type_id: str,
    from_weight: Decimal,
    from_rate: Decimal,
    to_rate: Decimal,
) -> KaratConversion:
    """Convert ``from_weight`` grams of one karat into the equal-value weight of another."""
    if from_karat_type_id == to_karat_type_id:
        raise DifferentKaratRequiredError(from_karat_type_id)
    if from_weight <= ZERO:
        raise ValidationError(f"Weight must be positive, got {from_weight}", field="from_weight")
    if not fits_scale(from_weight, WEIGHT_DECIMAL_PLACES):
        raise ValidationError(
            f"Weight {from_weight} has more than {WEIGHT_DECIMAL_PLACES} decimal places",
            field="from_weight",
        )
    if from_rate <= ZERO or to_rate <= ZERO:
        raise ValidationError(
            f"Karat rates must be positive, got {from_rate} -> {to_rate}", field="rate",
        )

    to_weight = round_weight(from_weight * from_rate / to_rate)
    if to_weight <= ZERO:
        raise ValidationError(
            f"{from_weight}g of {from_karat_type_id} converts to zero {to_karat_type_id}",
            field="from_weight",
        )
    return KaratConversion(
        from_karat_type_id=from_karat_type_id,
        to_karat_type_id=to_karat_type_id,
        from_weight=from_weight,
        to_weight=to_weight,
        from_rate=from_rate,
        to_rate=to_rate,
        conversion_factor=round_rate(to_weight / from_weight),
    )
