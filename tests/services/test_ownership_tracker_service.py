"""
Tests for OwnershipTracker.

Covers:
- Receipt upsert (create, merge on the same key, separate rows otherwise)
- Sale validation and its warnings
- Payments converting into owned stock, overpayment rejection
- Oldest-first sale consumption and row deactivation
- Manual adjustments
- Replay protection and movement snapshots
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from goldpos_kernel.domain.dtos import MovementType
from goldpos_kernel.exceptions import (
    DuplicateMovementError,
    InsufficientOwnershipError,
    OverpaymentError,
    OwnershipInactiveError,
    OwnershipNotFoundError,
    ValidationError,
)
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector
from goldpos_services import OwnershipTracker

ACTOR = "cashier-1"
BRANCH = "BR-01"


class FixedStock:
    def __init__(self, quantity):
        self.quantity = Decimal(quantity)

    def stock_on_hand(self, product_id, branch_id):
        return self.quantity


class TestCreateOrUpdate:
    """Receipts create or merge ownership rows."""

    def test_creates_row_and_receipt_movement(self, session, create_ownership):
        record = create_ownership(owned_quantity="2", owned_weight="10", amount_paid="200")

        assert record.total_quantity == Decimal("10")
        assert record.owned_quantity == Decimal("2")
        assert record.is_active
        assert record.version == 1

        movements = OwnershipSelector(session).movements(record.ownership_id)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.RECEIPT
        assert movements[0].quantity_change == Decimal("2")
        assert movements[0].amount_paid_after == Decimal("200")

    def test_same_key_merges(self, tracker, make_request):
        first = tracker.create_or_update(
            make_request("RCV-1", purchase_order_id="PO-9", owned_quantity="1", owned_weight="5"),
            ACTOR,
        )
        second = tracker.create_or_update(
            make_request("RCV-2", purchase_order_id="PO-9", total_cost="500"),
            ACTOR,
        )

        assert second.ownership_id == first.ownership_id
        assert second.total_quantity == Decimal("20")
        assert second.total_weight == Decimal("100")
        assert second.total_cost == Decimal("1500")
        assert second.owned_quantity == Decimal("1")

    def test_missing_optional_keys_match_each_other(self, tracker, make_request):
        first = tracker.create_or_update(make_request("RCV-1", supplier_id=None), ACTOR)
        second = tracker.create_or_update(make_request("RCV-2", supplier_id=None), ACTOR)

        assert first.ownership_id == second.ownership_id

    def test_different_purchase_orders_create_separate_rows(self, create_ownership):
        first = create_ownership()
        second = create_ownership()

        assert first.ownership_id != second.ownership_id
        assert second.sequence_order > first.sequence_order

    def test_replayed_receipt_rejected(self, tracker, make_request):
        tracker.create_or_update(make_request("RCV-1", purchase_order_id="PO-1"), ACTOR)

        with pytest.raises(DuplicateMovementError):
            tracker.create_or_update(make_request("RCV-1", purchase_order_id="PO-1"), ACTOR)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"owned_quantity": "11"},
            {"owned_weight": "51"},
            {"amount_paid": "1000.01"},
            {"total_quantity": "0"},
            {"total_cost": "-1"},
            {"total_weight": "50.0001"},
            {"total_cost": "1000.005"},
            {"owned_quantity": "1.0001"},
        ],
    )
    def test_invalid_requests_rejected(self, tracker, make_request, overrides):
        with pytest.raises(ValidationError):
            tracker.create_or_update(make_request("RCV-1", **overrides), ACTOR)

    def test_reference_required(self, tracker, make_request):
        with pytest.raises(ValidationError):
            tracker.create_or_update(make_request(""), ACTOR)

    def test_receipt_is_logged_with_row_created_flag(self, tracker, make_request, captured_logs):
        first = tracker.create_or_update(make_request("RCV-1", purchase_order_id="PO-1"), ACTOR)
        tracker.create_or_update(make_request("RCV-2", purchase_order_id="PO-1"), ACTOR)

        logged = [r for r in captured_logs() if r["message"] == "ownership_receipt_recorded"]
        assert [r["row_created"] for r in logged] == [True, False]
        assert {r["ownership_id"] for r in logged} == {str(first.ownership_id)}


class TestValidateSale:
    """Read-only sale pre-check."""

    def test_partially_owned_stock_cannot_cover_request(self, tracker, create_ownership):
        """3 of 10 units owned, 5 requested."""
        create_ownership(owned_quantity="3", owned_weight="15", amount_paid="300")

        result = tracker.validate_sale("RING-001", BRANCH, Decimal("5"))

        assert result.can_sell is False
        assert result.owned_quantity == Decimal("3")
        assert result.total_quantity == Decimal("10")
        assert result.ownership_percentage == Decimal("30.00")
        assert result.outstanding_amount == Decimal("700")
        assert any(w.startswith("Insufficient owned quantity") for w in result.warnings)
        assert any(w.startswith("Low ownership") for w in result.warnings)
        assert any(w.startswith("Outstanding supplier payments") for w in result.warnings)
        assert any("SUP-A is Partial" in w for w in result.warnings)

    def test_fully_owned_and_paid_has_no_warnings(self, tracker, create_ownership):
        create_ownership(owned_quantity="10", owned_weight="50", amount_paid="1000")

        result = tracker.validate_sale("RING-001", BRANCH, Decimal("5"))

        assert result.can_sell is True
        assert result.warnings == ()

    def test_owned_but_unpaid_can_sell_with_warning(self, tracker, create_ownership):
        create_ownership(owned_quantity="10", owned_weight="50", amount_paid="0")

        result = tracker.validate_sale("RING-001", BRANCH, Decimal("10"))

        assert result.can_sell is True
        assert any("is Unpaid" in w for w in result.warnings)

    def test_no_records(self, tracker):
        result = tracker.validate_sale("UNKNOWN", BRANCH, Decimal("1"))

        assert result.can_sell is False
        assert result.warnings == (
            f"No active ownership records for product UNKNOWN at branch {BRANCH}",
        )

    def test_sums_across_rows(self, tracker, create_ownership):
        create_ownership(owned_quantity="3", owned_weight="15", amount_paid="300")
        create_ownership(owned_quantity="4", owned_weight="20", amount_paid="400")

        result = tracker.validate_sale("RING-001", BRANCH, Decimal("7"))

        assert result.can_sell is True
        assert result.owned_quantity == Decimal("7")
        assert result.total_quantity == Decimal("20")

    def test_stock_on_hand_cross_check(self, session, deterministic_clock, settings, create_ownership):
        create_ownership(owned_quantity="10", owned_weight="50", amount_paid="1000")
        tracker = OwnershipTracker(
            session, deterministic_clock, settings.ownership, inventory=FixedStock("2"),
        )

        result = tracker.validate_sale("RING-001", BRANCH, Decimal("5"))

        assert result.can_sell is True
        assert result.stock_on_hand == Decimal("2")
        assert result.warnings == ("Stock on hand 2 is below requested quantity 5",)

    def test_non_positive_quantity_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.validate_sale("RING-001", BRANCH, Decimal("0"))

    def test_quantity_beyond_storage_precision_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.validate_sale("RING-001", BRANCH, Decimal("1.0005"))


class TestRecordPayment:
    """Supplier payments convert into owned stock."""

    def test_half_payment_owns_half(self, tracker, create_ownership):
        """500 on a 1000 cost, 20 unit row adds 10 owned units."""
        record = create_ownership(total_quantity="20", total_weight="100")

        movement = tracker.record_payment(record.ownership_id, Decimal("500"), "PAY-1", ACTOR)

        assert movement.movement_type == MovementType.PAYMENT
        assert movement.quantity_change == Decimal("10")
        assert movement.weight_change == Decimal("50")
        assert movement.amount_change == Decimal("500")
        assert movement.owned_quantity_after == Decimal("10")
        assert movement.ownership_percentage_after == Decimal("50.00")

    def test_settling_payment_owns_everything(self, tracker, session, create_ownership):
        record = create_ownership(total_quantity="3", total_weight="7", total_cost="100")

        tracker.record_payment(record.ownership_id, Decimal("33.33"), "PAY-1", ACTOR)
        tracker.record_payment(record.ownership_id, Decimal("66.67"), "PAY-2", ACTOR)

        row = OwnershipSelector(session).get(record.ownership_id)
        assert row.owned_quantity == Decimal("3")
        assert row.owned_weight == Decimal("7")
        assert row.outstanding_amount == Decimal("0")

    def test_version_increments(self, tracker, session, create_ownership):
        record = create_ownership()

        tracker.record_payment(record.ownership_id, Decimal("100"), "PAY-1", ACTOR)

        assert OwnershipSelector(session).get(record.ownership_id).version == 2

    def test_overpayment_rejected(self, tracker, session, create_ownership):
        record = create_ownership(amount_paid="900", owned_quantity="9", owned_weight="45")

        with pytest.raises(OverpaymentError) as exc_info:
            tracker.record_payment(record.ownership_id, Decimal("150"), "PAY-1", ACTOR)

        assert exc_info.value.outstanding_amount == Decimal("100")
        assert OwnershipSelector(session).get(record.ownership_id).amount_paid == Decimal("900")

    def test_replayed_payment_rejected(self, tracker, create_ownership):
        record = create_ownership()
        tracker.record_payment(record.ownership_id, Decimal("100"), "PAY-1", ACTOR)

        with pytest.raises(DuplicateMovementError):
            tracker.record_payment(record.ownership_id, Decimal("100"), "PAY-1", ACTOR)

    def test_unknown_row(self, tracker):
        with pytest.raises(OwnershipNotFoundError):
            tracker.record_payment(uuid4(), Decimal("1"), "PAY-1", ACTOR)

    def test_inactive_row(self, tracker, create_ownership):
        record = create_ownership(
            total_quantity="2", total_weight="10", owned_quantity="2", owned_weight="10",
            total_cost="100", amount_paid="50",
        )
        tracker.record_sale_consumption("RING-001", BRANCH, Decimal("2"), "SALE-1", ACTOR)

        with pytest.raises(OwnershipInactiveError):
            tracker.record_payment(record.ownership_id, Decimal("1"), "PAY-1", ACTOR)

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_non_positive_amount_rejected(self, tracker, create_ownership, amount):
        record = create_ownership()

        with pytest.raises(ValidationError):
            tracker.record_payment(record.ownership_id, Decimal(amount), "PAY-1", ACTOR)

    def test_amount_beyond_cents_rejected(self, tracker, session, create_ownership):
        record = create_ownership()

        with pytest.raises(ValidationError) as exc_info:
            tracker.record_payment(record.ownership_id, Decimal("333.3333"), "PAY-1", ACTOR)

        assert exc_info.value.field == "amount"
        row = OwnershipSelector(session).get(record.ownership_id)
        assert row.amount_paid == Decimal("0")
        assert row.version == 1

    def test_payment_is_logged(self, tracker, create_ownership, captured_logs):
        record = create_ownership()

        tracker.record_payment(record.ownership_id, Decimal("100"), "PAY-1", ACTOR)

        logged = [r for r in captured_logs() if r["message"] == "ownership_payment_recorded"]
        assert len(logged) == 1
        assert logged[0]["ownership_id"] == str(record.ownership_id)
        assert logged[0]["amount"] == "100"


class TestRecordSaleConsumption:
    """Sales consume owned stock oldest row first."""

    def test_consumes_oldest_row_first(self, tracker, session, create_ownership):
        first = create_ownership(
            total_quantity="5", total_weight="25", owned_quantity="3", owned_weight="15",
            total_cost="500", amount_paid="300",
        )
        second = create_ownership(
            total_quantity="4", total_weight="20", owned_quantity="4", owned_weight="20",
            total_cost="400", amount_paid="400",
        )

        movements = tracker.record_sale_consumption(
            "RING-001", BRANCH, Decimal("5"), "SALE-1", ACTOR,
        )

        assert [m.ownership_id for m in movements] == [first.ownership_id, second.ownership_id]
        assert [m.quantity_change for m in movements] == [Decimal("-3"), Decimal("-2")]
        assert all(m.movement_type == MovementType.SALE for m in movements)

        selector = OwnershipSelector(session)
        row1 = selector.get(first.ownership_id)
        assert row1.owned_quantity == Decimal("0")
        assert row1.total_quantity == Decimal("2")
        assert row1.total_weight == Decimal("10")
        assert row1.total_cost == Decimal("200")
        assert row1.amount_paid == Decimal("0")
        assert row1.is_active

        row2 = selector.get(second.ownership_id)
        assert row2.owned_quantity == Decimal("2")
        assert row2.owned_weight == Decimal("10")
        assert row2.total_cost == Decimal("200")
        assert row2.amount_paid == Decimal("200")

    def test_row_emptied_by_sale_is_deactivated(self, tracker, session, create_ownership):
        record = create_ownership(
            total_quantity="2", total_weight="10", owned_quantity="2", owned_weight="10",
            total_cost="100", amount_paid="100",
        )

        tracker.record_sale_consumption("RING-001", BRANCH, Decimal("2"), "SALE-1", ACTOR)

        row = OwnershipSelector(session).get(record.ownership_id)
        assert row.is_active is False
        assert row.total_quantity == Decimal("0")
        assert row.total_cost == Decimal("0")

    def test_insufficient_ownership_changes_nothing(self, tracker, session, create_ownership):
        record = create_ownership(owned_quantity="3", owned_weight="15", amount_paid="300")

        with pytest.raises(InsufficientOwnershipError) as exc_info:
            tracker.record_sale_consumption("RING-001", BRANCH, Decimal("5"), "SALE-1", ACTOR)

        assert exc_info.value.owned_quantity == Decimal("3")
        row = OwnershipSelector(session).get(record.ownership_id)
        assert row.owned_quantity == Decimal("3")
        assert len(OwnershipSelector(session).movements(record.ownership_id)) == 1

    def test_replayed_sale_rejected(self, tracker, create_ownership):
        create_ownership(owned_quantity="10", owned_weight="50", amount_paid="1000")
        tracker.record_sale_consumption("RING-001", BRANCH, Decimal("1"), "SALE-1", ACTOR)

        with pytest.raises(DuplicateMovementError):
            tracker.record_sale_consumption("RING-001", BRANCH, Decimal("1"), "SALE-1", ACTOR)

    def test_other_branch_is_untouched(self, tracker, create_ownership):
        create_ownership(
            branch_id="BR-02", owned_quantity="10", owned_weight="50", amount_paid="1000",
        )

        with pytest.raises(InsufficientOwnershipError):
            tracker.record_sale_consumption("RING-001", BRANCH, Decimal("1"), "SALE-1", ACTOR)

    def test_fractional_quantity_beyond_storage_precision_rejected(self, tracker, session, create_ownership):
        record = create_ownership(owned_quantity="10", owned_weight="50", amount_paid="1000")

        with pytest.raises(ValidationError):
            tracker.record_sale_consumption("RING-001", BRANCH, Decimal("1.0005"), "SALE-1", ACTOR)

        assert OwnershipSelector(session).get(record.ownership_id).owned_quantity == Decimal("10")


class TestRecordAdjustment:
    def test_adjusts_owned_stock(self, tracker, create_ownership):
        record = create_ownership(owned_quantity="2", owned_weight="10", amount_paid="200")

        movement = tracker.record_adjustment(
            record.ownership_id, Decimal("1"), Decimal("5"), "Recount", "ADJ-1", ACTOR,
        )

        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.owned_quantity_after == Decimal("3")
        assert movement.owned_weight_after == Decimal("15")
        assert movement.amount_change == Decimal("0")
        assert movement.notes == "Recount"

    def test_reason_required(self, tracker, create_ownership):
        record = create_ownership()

        with pytest.raises(ValidationError):
            tracker.record_adjustment(
                record.ownership_id, Decimal("1"), Decimal("5"), " ", "ADJ-1", ACTOR,
            )

    def test_cannot_exceed_totals(self, tracker, create_ownership):
        record = create_ownership(owned_quantity="9", owned_weight="45", amount_paid="900")

        with pytest.raises(ValidationError):
            tracker.record_adjustment(
                record.ownership_id, Decimal("2"), Decimal("0"), "Recount", "ADJ-1", ACTOR,
            )

    def test_no_op_rejected(self, tracker, create_ownership):
        record = create_ownership()

        with pytest.raises(ValidationError):
            tracker.record_adjustment(
                record.ownership_id, Decimal("0"), Decimal("0"), "Recount", "ADJ-1", ACTOR,
            )
