"""
Immutability of the ownership, raw gold and cost ledgers.

Movements, transfers and issuances are append-only.  Lots and ownership
rows may change but are never deleted, and a lot's received figures are
frozen once written.
"""

import pytest
from decimal import Decimal

from sqlalchemy import select

from goldpos_kernel.domain.dtos import CostMethod
from goldpos_kernel.exceptions import ImmutabilityViolationError
from goldpos_kernel.models.cost_lot import CostLotIssuanceModel, CostLotModel
from goldpos_kernel.models.gold_balance import RawGoldTransferModel
from goldpos_kernel.models.ownership import OwnershipMovementModel, ProductOwnershipModel
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector

ACTOR = "cashier-1"
BRANCH = "BR-01"


@pytest.fixture
def paid_row(create_ownership, tracker):
    row = create_ownership()
    tracker.record_payment(row.ownership_id, Decimal("300"), "PAY-1", ACTOR)
    return row


@pytest.fixture
def issued_lot(cost_ledger):
    lot = cost_ledger.record_lot("RING-001", BRANCH, Decimal("2"), Decimal("10"), Decimal("50"), "GRN-1", ACTOR)
    cost_ledger.issue("RING-001", BRANCH, Decimal("1"), CostMethod.FIFO, "SALE-1", ACTOR)
    return lot


class TestOwnershipMovements:
    def test_update_blocked(self, session, paid_row):
        movement = session.scalars(select(OwnershipMovementModel)).first()
        movement.amount_change = Decimal("999")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "OwnershipMovement"

    def test_delete_blocked(self, session, paid_row):
        movement = session.scalars(select(OwnershipMovementModel)).first()
        session.delete(movement)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_trail_reconciles_to_row(self, session, paid_row, tracker):
        tracker.record_payment(paid_row.ownership_id, Decimal("200"), "PAY-2", ACTOR)

        selector = OwnershipSelector(session)
        movements = selector.movements(paid_row.ownership_id)
        row = selector.get(paid_row.ownership_id)

        assert sum(m.amount_change for m in movements) == row.amount_paid == Decimal("500")
        assert sum(m.quantity_change for m in movements) == row.owned_quantity


class TestOwnershipRows:
    def test_delete_blocked(self, session, paid_row):
        row = session.get(ProductOwnershipModel, paid_row.ownership_id)
        session.delete(row)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type in ("ProductOwnership", "OwnershipMovement")


class TestRawGoldTransfers:
    @pytest.fixture
    def transfer(self, gold_ledger, session):
        gold_ledger.credit_merchant_gold(BRANCH, "21K", Decimal("10"), Decimal("100"), ACTOR)
        return session.scalars(select(RawGoldTransferModel)).one()

    def test_update_blocked(self, session, transfer):
        transfer.to_weight = Decimal("20")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "RawGoldTransfer"

    def test_delete_blocked(self, session, transfer):
        session.delete(transfer)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestCostLots:
    def test_issuance_update_blocked(self, session, issued_lot):
        issuance = session.scalars(select(CostLotIssuanceModel)).one()
        issuance.cost = Decimal("0")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "CostLotIssuance"

    def test_issuance_delete_blocked(self, session, issued_lot):
        session.delete(session.scalars(select(CostLotIssuanceModel)).one())

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    @pytest.mark.parametrize(
        "field,value",
        [
            ("quantity", Decimal("5")),
            ("weight", Decimal("50")),
            ("unit_cost_per_gram", Decimal("1")),
            ("source_ref", "GRN-X"),
        ],
    )
    def test_received_figures_frozen(self, session, issued_lot, field, value):
        lot = session.get(CostLotModel, issued_lot.lot_id)
        setattr(lot, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert field in exc_info.value.reason

    def test_consumption_fields_may_change(self, session, issued_lot):
        lot = session.get(CostLotModel, issued_lot.lot_id)
        lot.remaining_quantity = Decimal("0")
        lot.remaining_weight = Decimal("0")
        lot.is_exhausted = True

        session.flush()

        assert session.get(CostLotModel, issued_lot.lot_id).is_exhausted is True

    def test_lot_delete_blocked(self, session, issued_lot):
        session.delete(session.get(CostLotModel, issued_lot.lot_id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
