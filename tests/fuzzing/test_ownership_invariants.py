"""
Property-based tests for ownership, conversion and costing arithmetic.

Properties:
- Payments that settle the cost leave the row fully owned, and owned
  figures never exceed totals along the way
- A sale never breaks 0 <= owned <= total or amount_paid <= total_cost
- Oldest-first allocation takes exactly the sold quantity
- Karat conversion preserves value within half a milligram at the target rate
- Contribution percentages always sum to exactly 100.00
"""

from decimal import Decimal

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from goldpos_engines.costing import contribution_percentages
from goldpos_engines.karat import convert_weight
from goldpos_engines.ownership_math import (
    OwnershipPosition,
    allocate_sale,
    apply_payment,
    apply_sale,
)
from goldpos_kernel.db.types import HUNDRED, ZERO, round_money

weights = st.decimals(
    min_value=Decimal("0.001"), max_value=Decimal("10000"), places=3,
    allow_nan=False, allow_infinity=False,
)
money = st.decimals(
    min_value=Decimal("1.00"), max_value=Decimal("1000000"), places=2,
    allow_nan=False, allow_infinity=False,
)
rates = st.decimals(
    min_value=Decimal("1"), max_value=Decimal("500"), places=2,
    allow_nan=False, allow_infinity=False,
)
units = st.integers(min_value=1, max_value=500).map(Decimal)


@st.composite
def positions(draw):
    total_quantity = draw(units)
    total_weight = draw(weights)
    total_cost = draw(money)
    owned_fraction = draw(st.integers(min_value=0, max_value=100))
    paid_fraction = draw(st.integers(min_value=0, max_value=100))
    return OwnershipPosition(
        total_quantity=total_quantity,
        total_weight=total_weight,
        owned_quantity=Decimal(int(total_quantity) * owned_fraction // 100),
        owned_weight=(total_weight * owned_fraction / HUNDRED).quantize(Decimal("0.001")),
        total_cost=total_cost,
        amount_paid=round_money(total_cost * paid_fraction / HUNDRED),
    )


class TestPaymentProperties:
    @given(
        total_quantity=units,
        total_weight=weights,
        total_cost=money,
        splits=st.lists(st.integers(min_value=1, max_value=100), min_size=1, max_size=6),
    )
    @settings(max_examples=200, deadline=None)
    def test_settling_payments_own_everything(self, total_quantity, total_weight, total_cost, splits):
        parts = sum(splits)
        amounts = [round_money(total_cost * s / parts) for s in splits[:-1]]
        amounts.append(total_cost - sum(amounts, ZERO))
        assume(all(a > ZERO for a in amounts))

        position = OwnershipPosition(
            total_quantity=total_quantity,
            total_weight=total_weight,
            owned_quantity=ZERO,
            owned_weight=ZERO,
            total_cost=total_cost,
            amount_paid=ZERO,
        )
        previous = ZERO
        for amount in amounts:
            position = apply_payment(position, amount).position
            assert position.owned_quantity <= position.total_quantity
            assert position.owned_weight <= position.total_weight
            assert position.ownership_percentage >= previous
            previous = position.ownership_percentage

        assert position.amount_paid == total_cost
        assert position.owned_quantity == total_quantity
        assert position.owned_weight == total_weight


class TestSaleProperties:
    @given(position=positions(), data=st.data())
    @settings(max_examples=200, deadline=None)
    def test_sale_keeps_row_consistent(self, position, data):
        assume(position.owned_quantity > ZERO)
        quantity = Decimal(
            data.draw(st.integers(min_value=1, max_value=int(position.owned_quantity)))
        )

        effect = apply_sale(position, quantity)
        after = effect.position

        assert after.total_quantity == position.total_quantity - quantity
        assert ZERO <= after.owned_weight <= after.total_weight
        assert ZERO <= after.amount_paid <= after.total_cost
        assert effect.paid_taken <= effect.cost_taken
        assert after.total_cost + effect.cost_taken == position.total_cost

    @given(
        owned=st.lists(units, min_size=1, max_size=8),
        data=st.data(),
    )
    def test_allocation_takes_exactly_the_quantity(self, owned, data):
        quantity = Decimal(
            data.draw(st.integers(min_value=1, max_value=int(sum(owned, ZERO))))
        )

        takes = allocate_sale(owned, quantity)

        assert sum(takes, ZERO) == quantity
        assert all(ZERO <= t <= o for t, o in zip(takes, owned))
        # Rows are emptied in order: only the last touched row may be partial
        touched = [i for i, t in enumerate(takes) if t > ZERO]
        assert all(takes[i] == owned[i] for i in touched[:-1])


class TestConversionProperties:
    @given(from_weight=weights, from_rate=rates, to_rate=rates)
    @settings(max_examples=300, deadline=None)
    def test_value_preserved(self, from_weight, from_rate, to_rate):
        assume(from_weight * from_rate / to_rate > Decimal("0.0005"))

        conversion = convert_weight(
            from_karat_type_id="21K",
            to_karat_type_id="24K",
            from_weight=from_weight,
            from_rate=from_rate,
            to_rate=to_rate,
        )

        drift = abs(from_weight * from_rate - conversion.to_weight * to_rate)
        assert drift <= to_rate * Decimal("0.0005")


class TestContributionProperties:
    @given(values=st.lists(weights, min_size=1, max_size=20))
    def test_percentages_sum_to_hundred(self, values):
        shares = contribution_percentages(values)

        assert sum(shares, ZERO) == HUNDRED
        assert all(s >= ZERO for s in shares)
