"""
Tests for ownership arithmetic.

Covers:
- Payment → owned quantity/weight conversion, including settlement
- Sale effects on owned, total, cost and amount paid
- Oldest-first sale allocation across rows
- Manual adjustments within totals
- Position validation
"""

import pytest
from decimal import Decimal

from goldpos_engines.ownership_math import (
    OwnershipPosition,
    allocate_sale,
    apply_adjustment,
    apply_payment,
    apply_sale,
)


def position(total_q="20", total_w="100", owned_q="0", owned_w="0", cost="1000", paid="0"):
    return OwnershipPosition(
        total_quantity=Decimal(total_q),
        total_weight=Decimal(total_w),
        owned_quantity=Decimal(owned_q),
        owned_weight=Decimal(owned_w),
        total_cost=Decimal(cost),
        amount_paid=Decimal(paid),
    )


class TestApplyPayment:
    def test_half_payment_owns_half(self):
        """500 paid on a 1000 cost, 20 unit row gains 10 owned units."""
        effect = apply_payment(position(), Decimal("500"))

        assert effect.quantity_gain == Decimal("10.000")
        assert effect.weight_gain == Decimal("50.000")
        assert effect.position.owned_quantity == Decimal("10")
        assert effect.position.amount_paid == Decimal("500")
        assert effect.position.ownership_percentage == Decimal("50.00")

    def test_settling_payment_owns_everything_exactly(self):
        first = apply_payment(position(total_q="3", total_w="7"), Decimal("333.33"))
        second = apply_payment(first.position, Decimal("666.67"))

        assert second.position.owned_quantity == Decimal("3")
        assert second.position.owned_weight == Decimal("7")
        assert second.position.outstanding_amount == Decimal("0")

    def test_gains_are_rounded_to_three_places(self):
        effect = apply_payment(position(total_q="3", total_w="7"), Decimal("100"))

        assert effect.quantity_gain == Decimal("0.300")
        assert effect.weight_gain == Decimal("0.700")

    def test_overpayment_rejected(self):
        with pytest.raises(ValueError):
            apply_payment(position(paid="900"), Decimal("100.01"))

    def test_non_positive_payment_rejected(self):
        with pytest.raises(ValueError):
            apply_payment(position(), Decimal("0"))


class TestApplySale:
    def test_selling_all_owned_units_takes_exact_owned_weight(self):
        effect = apply_sale(
            position(total_q="10", total_w="50", owned_q="6", owned_w="30", paid="600"),
            Decimal("6"),
        )

        assert effect.weight_taken == Decimal("30")
        assert effect.cost_taken == Decimal("600.00")
        assert effect.paid_taken == Decimal("600.00")
        assert effect.position.owned_quantity == Decimal("0")
        assert effect.position.total_quantity == Decimal("4")
        assert effect.position.total_cost == Decimal("400.00")
        assert effect.position.amount_paid == Decimal("0.00")

    def test_partial_sale_takes_pro_rata_weight(self):
        effect = apply_sale(
            position(total_q="3", total_w="10", owned_q="3", owned_w="10", cost="100", paid="100"),
            Decimal("1"),
        )

        assert effect.weight_taken == Decimal("3.333")
        assert effect.cost_taken == Decimal("33.33")
        assert effect.position.owned_weight == Decimal("6.667")

    def test_paid_taken_never_exceeds_paid(self):
        effect = apply_sale(
            position(total_q="10", total_w="50", owned_q="10", owned_w="50", paid="100"),
            Decimal("5"),
        )

        assert effect.cost_taken == Decimal("500.00")
        assert effect.paid_taken == Decimal("100")
        assert effect.position.amount_paid == Decimal("0")

    def test_emptying_the_row_takes_exact_cost(self):
        effect = apply_sale(
            position(total_q="3", total_w="10", owned_q="3", owned_w="10", cost="100", paid="100"),
            Decimal("3"),
        )

        assert effect.position.total_cost == Decimal("0")
        assert effect.position.total_quantity == Decimal("0")

    def test_sale_beyond_owned_rejected(self):
        with pytest.raises(ValueError):
            apply_sale(position(owned_q="2", owned_w="10", paid="100"), Decimal("3"))


class TestAllocateSale:
    def test_oldest_rows_first(self):
        takes = allocate_sale([Decimal("3"), Decimal("5"), Decimal("2")], Decimal("6"))

        assert takes == [Decimal("3"), Decimal("3"), Decimal("0")]

    def test_exact_total(self):
        takes = allocate_sale([Decimal("1"), Decimal("1")], Decimal("2"))

        assert takes == [Decimal("1"), Decimal("1")]

    def test_shortfall_rejected(self):
        with pytest.raises(ValueError):
            allocate_sale([Decimal("1"), Decimal("1")], Decimal("3"))


class TestApplyAdjustment:
    def test_adjusts_owned_only(self):
        adjusted = apply_adjustment(
            position(owned_q="5", owned_w="25", paid="250"), Decimal("1"), Decimal("5"),
        )

        assert adjusted.owned_quantity == Decimal("6")
        assert adjusted.owned_weight == Decimal("30")
        assert adjusted.total_quantity == Decimal("20")
        assert adjusted.amount_paid == Decimal("250")

    def test_cannot_exceed_total(self):
        with pytest.raises(ValueError):
            apply_adjustment(position(owned_q="19", owned_w="95"), Decimal("2"), Decimal("0"))

    def test_cannot_go_negative(self):
        with pytest.raises(ValueError):
            apply_adjustment(position(owned_q="1", owned_w="5"), Decimal("0"), Decimal("-6"))


class TestValidate:
    def test_amount_paid_above_cost_invalid(self):
        with pytest.raises(ValueError):
            position(paid="1000.01").validate()

    def test_valid_position_returns_itself(self):
        p = position(owned_q="20", owned_w="100", paid="1000")
        assert p.validate() is p
