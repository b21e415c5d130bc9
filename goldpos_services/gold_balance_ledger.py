"""
goldpos_services.gold_balance_ledger -- Karat-denominated gold balances.

Responsibility:
    Track two kinds of gold position per branch and karat, and move weight
    between them:
        - SupplierGoldBalance: gold received from a supplier and not yet
          paid for (the merchant's weight debt).
        - MerchantRawGoldBalance: raw gold the merchant owns outright.
    Operations: record_receipt, record_payment_for_raw_gold, convert,
    waive_to_supplier, credit_merchant_gold, preview_conversion.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Conversion maths is goldpos_engines.karat.convert_weight; rates come
    from the injected KaratRateProvider.

Invariants enforced:
    - total_weight_paid_for <= total_weight_received on every supplier
      balance (clamp-and-reject: a payment, conversion or waive that would
      overshoot the debt is refused, never truncated).
    - available_weight >= 0 on every merchant balance.
    - Every mutation appends exactly one RawGoldTransfer row in the same
      transaction.  No balance changes without a ledger entry.
    - Conversions preserve value: from_weight × from_rate ≈ to_weight × to_rate.
    - Merchant conversions move the cost basis with the gold, so the
      merchant's total book value is unchanged.
    - Rates are read before any row lock is taken.

Failure modes:
    - DifferentKaratRequiredError, ValidationError: bad input.
    - ExceedsReceivedWeightError, ExceedsOutstandingDebtError.
    - InsufficientRawGoldError.
    - KaratRateNotFoundError from the rate provider.
    - DuplicateTransferError when a reference number is replayed.
    - ConcurrencyConflictError on a stale balance version.

Audit relevance:
    Transfer rows carry both rates, both weights, the factor and the value,
    and a daily transfer number RGT{yyyymmdd}{NNN}.  They are immutable.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from goldpos_config.schema import TransferSettings
from goldpos_engines.karat import KaratConversion, convert_weight
from goldpos_kernel.db.types import (
    RATE_DECIMAL_PLACES,
    WEIGHT_DECIMAL_PLACES,
    ZERO,
    fits_scale,
    round_money,
    round_rate,
)
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import (
    ConversionPreview,
    RawGoldTransferRecord,
    SupplierGoldBalanceRecord,
    TransferType,
)
from goldpos_kernel.domain.rates import KaratRateProvider
from goldpos_kernel.exceptions import (
    DuplicateTransferError,
    ExceedsOutstandingDebtError,
    ExceedsReceivedWeightError,
    InsufficientRawGoldError,
    ValidationError,
)
from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.models.gold_balance import (
    MerchantRawGoldBalanceModel,
    RawGoldTransferModel,
    SupplierGoldBalanceModel,
)
from goldpos_kernel.services.base import BaseService
from goldpos_kernel.services.concurrency import merchant_balance_key, supplier_balance_key
from goldpos_kernel.services.sequence_service import SequenceService

logger = get_logger("services.gold_balance")

ONE = Decimal("1")


class GoldBalanceLedger(BaseService[SupplierGoldBalanceModel]):
    """
    Supplier weight debt and merchant raw gold, with a transfer ledger.

    Contract:
        Receives Session, KaratRateProvider, Clock and TransferSettings via
        constructor injection.  Flushes, never commits.
    Guarantees:
        - Balance rows are created on first use and never deleted.
        - Every public mutation returns after exactly one transfer row has
          been added.
    Non-goals:
        - Does not post to any general ledger or touch supplier money
          balances.
    """

    def __init__(
        self,
        session: Session,
        rates: KaratRateProvider,
        clock: Clock | None = None,
        settings: TransferSettings | None = None,
    ):
        super().__init__(session)
        self._rates = rates
        self._clock = clock or SystemClock()
        self._settings = settings or TransferSettings()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Supplier receipts and payments
    # =========================================================================

    def record_receipt(
        self,
        supplier_id: str,
        branch_id: str,
        karat_type_id: str,
        weight: Decimal,
        cost_per_gram: Decimal,
        actor: str,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> SupplierGoldBalanceRecord:
        """Gold received from a supplier on credit: the weight debt grows."""
        _require_positive(weight, "weight")
        _require_positive(cost_per_gram, "cost_per_gram", RATE_DECIMAL_PLACES)
        self._check_reference(TransferType.RECEIPT, reference_number)

        balance = self._lock_supplier(supplier_id, branch_id, karat_type_id, create=True)
        received = balance.total_weight_received + weight
        balance.average_cost_per_gram = round_rate(
            (balance.total_weight_received * balance.average_cost_per_gram + weight * cost_per_gram)
            / received
        )
        balance.total_weight_received = received
        balance.last_transaction_at = self._clock.now()

        self._write_transfer(
            TransferType.RECEIPT,
            branch_id=branch_id,
            from_karat_type_id=karat_type_id,
            to_karat_type_id=karat_type_id,
            from_weight=weight,
            to_weight=weight,
            from_rate=cost_per_gram,
            to_rate=cost_per_gram,
            conversion_factor=ONE,
            transfer_value=round_money(weight * cost_per_gram),
            from_supplier_id=supplier_id,
            actor=actor,
            reference_number=reference_number,
            notes=notes,
        )
        self._flush("SupplierGoldBalance", supplier_balance_key(supplier_id, branch_id, karat_type_id))

        logger.info("gold_receipt_recorded", extra={
            "supplier_id": supplier_id,
            "branch_id": branch_id,
            "karat_type_id": karat_type_id,
            "weight": str(weight),
            "average_cost_per_gram": str(balance.average_cost_per_gram),
            "outstanding_weight_debt": str(balance.outstanding_weight_debt),
        })
        return balance.to_dto()

    def record_payment_for_raw_gold(
        self,
        supplier_id: str,
        branch_id: str,
        karat_type_id: str,
        weight_paid_for: Decimal,
        actor: str,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> SupplierGoldBalanceRecord:
        """Settle part of a supplier's weight debt."""
        _require_positive(weight_paid_for, "weight_paid_for")
        self._check_reference(TransferType.PAYMENT, reference_number)

        balance = self._lock_supplier(supplier_id, branch_id, karat_type_id, create=False)
        outstanding = balance.outstanding_weight_debt if balance is not None else ZERO
        if balance is None or weight_paid_for > outstanding:
            logger.warning("gold_payment_exceeds_received", extra={
                "supplier_id": supplier_id,
                "branch_id": branch_id,
                "karat_type_id": karat_type_id,
                "weight_paid_for": str(weight_paid_for),
                "outstanding_weight": str(outstanding),
            })
            raise ExceedsReceivedWeightError(
                supplier_id, karat_type_id, weight_paid_for, outstanding,
            )

        balance.total_weight_paid_for += weight_paid_for
        balance.last_transaction_at = self._clock.now()

        self._write_transfer(
            TransferType.PAYMENT,
            branch_id=branch_id,
            from_karat_type_id=karat_type_id,
            to_karat_type_id=karat_type_id,
            from_weight=weight_paid_for,
            to_weight=weight_paid_for,
            from_rate=balance.average_cost_per_gram,
            to_rate=balance.average_cost_per_gram,
            conversion_factor=ONE,
            transfer_value=round_money(weight_paid_for * balance.average_cost_per_gram),
            to_supplier_id=supplier_id,
            actor=actor,
            reference_number=reference_number,
            notes=notes,
        )
        self._flush("SupplierGoldBalance", supplier_balance_key(supplier_id, branch_id, karat_type_id))

        logger.info("gold_payment_recorded", extra={
            "supplier_id": supplier_id,
            "branch_id": branch_id,
            "karat_type_id": karat_type_id,
            "weight_paid_for": str(weight_paid_for),
            "outstanding_weight_debt": str(balance.outstanding_weight_debt),
        })
        return balance.to_dto()

    # =========================================================================
    # Conversions and waives
    # =========================================================================

    def convert(
        self,
        branch_id: str,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
        actor: str,
        supplier_id: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> RawGoldTransferRecord:
        """
        Re-denominate gold from one karat to another at equal value.

        Without ``supplier_id`` the merchant's raw gold is converted and its
        cost basis moves with it.  With ``supplier_id`` the supplier debt is
        re-denominated: the from-karat debt is settled by from_weight and
        the to-karat debt grows by to_weight at the to-karat rate.
        """
        conversion = self._conversion(from_karat_type_id, to_karat_type_id, from_weight)
        self._check_reference(TransferType.CONVERT, reference_number)

        if supplier_id is None:
            self._convert_merchant(branch_id, conversion)
            entity = merchant_balance_key(branch_id, from_karat_type_id)
        else:
            self._convert_supplier(branch_id, supplier_id, conversion)
            entity = supplier_balance_key(supplier_id, branch_id, from_karat_type_id)

        transfer = self._write_transfer(
            TransferType.CONVERT,
            branch_id=branch_id,
            conversion=conversion,
            from_supplier_id=supplier_id,
            to_supplier_id=supplier_id,
            actor=actor,
            reference_number=reference_number,
            notes=notes,
        )
        self._flush("GoldBalance", entity)

        logger.info("gold_conversion_completed", extra={
            "transfer_number": transfer.transfer_number,
            "branch_id": branch_id,
            "supplier_id": supplier_id,
            "from_karat_type_id": from_karat_type_id,
            "to_karat_type_id": to_karat_type_id,
            "from_weight": str(conversion.from_weight),
            "to_weight": str(conversion.to_weight),
        })
        return transfer.to_dto()

    def waive_to_supplier(
        self,
        branch_id: str,
        to_supplier_id: str,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
        actor: str,
        customer_purchase_id: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> RawGoldTransferRecord:
        """
        Hand merchant raw gold to a supplier against the weight owed.

        The merchant's from-karat gold is converted at equal value and the
        resulting to-karat weight settles that much of the supplier's
        to-karat debt.  Waiving more than is owed is rejected.
        """
        if from_karat_type_id == to_karat_type_id:
            _require_positive(from_weight, "from_weight")
            rate = self._rates.get_current_rate(from_karat_type_id, self._clock.now())
            conversion = KaratConversion(
                from_karat_type_id=from_karat_type_id,
                to_karat_type_id=to_karat_type_id,
                from_weight=from_weight,
                to_weight=from_weight,
                from_rate=rate,
                to_rate=rate,
                conversion_factor=ONE,
            )
        else:
            conversion = self._conversion(from_karat_type_id, to_karat_type_id, from_weight)
        self._check_reference(TransferType.WAIVE, reference_number)

        merchant_key = merchant_balance_key(branch_id, from_karat_type_id)
        supplier_key = supplier_balance_key(to_supplier_id, branch_id, to_karat_type_id)
        if merchant_key < supplier_key:
            merchant = self._lock_merchant(branch_id, from_karat_type_id, create=False)
            debt = self._lock_supplier(to_supplier_id, branch_id, to_karat_type_id, create=False)
        else:
            debt = self._lock_supplier(to_supplier_id, branch_id, to_karat_type_id, create=False)
            merchant = self._lock_merchant(branch_id, from_karat_type_id, create=False)

        available = merchant.available_weight if merchant is not None else ZERO
        if merchant is None or conversion.from_weight > available:
            raise InsufficientRawGoldError(
                branch_id, from_karat_type_id, conversion.from_weight, available,
            )
        outstanding = debt.outstanding_weight_debt if debt is not None else ZERO
        if debt is None or conversion.to_weight > outstanding:
            logger.warning("gold_waive_exceeds_debt", extra={
                "supplier_id": to_supplier_id,
                "karat_type_id": to_karat_type_id,
                "to_weight": str(conversion.to_weight),
                "outstanding_weight": str(outstanding),
            })
            raise ExceedsOutstandingDebtError(
                to_supplier_id, to_karat_type_id, conversion.to_weight, outstanding,
            )

        now = self._clock.now()
        self._take_from_merchant(merchant, conversion.from_weight, now)
        debt.total_weight_paid_for += conversion.to_weight
        debt.last_transaction_at = now

        transfer = self._write_transfer(
            TransferType.WAIVE,
            branch_id=branch_id,
            conversion=conversion,
            to_supplier_id=to_supplier_id,
            customer_purchase_id=customer_purchase_id,
            actor=actor,
            reference_number=reference_number,
            notes=notes,
        )
        self._flush("GoldBalance", supplier_key)

        logger.info("gold_waive_completed", extra={
            "transfer_number": transfer.transfer_number,
            "branch_id": branch_id,
            "supplier_id": to_supplier_id,
            "from_karat_type_id": from_karat_type_id,
            "to_karat_type_id": to_karat_type_id,
            "from_weight": str(conversion.from_weight),
            "to_weight": str(conversion.to_weight),
            "outstanding_weight_debt": str(debt.outstanding_weight_debt),
        })
        return transfer.to_dto()

    def credit_merchant_gold(
        self,
        branch_id: str,
        karat_type_id: str,
        weight: Decimal,
        cost_per_gram: Decimal,
        actor: str,
        customer_purchase_id: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> RawGoldTransferRecord:
        """Add raw gold the merchant now owns, e.g. scrap bought from a customer."""
        _require_positive(weight, "weight")
        _require_positive(cost_per_gram, "cost_per_gram", RATE_DECIMAL_PLACES)
        self._check_reference(TransferType.CREDIT, reference_number)

        merchant = self._lock_merchant(branch_id, karat_type_id, create=True)
        value = round_money(weight * cost_per_gram)
        self._add_to_merchant(merchant, weight, value, self._clock.now())

        transfer = self._write_transfer(
            TransferType.CREDIT,
            branch_id=branch_id,
            from_karat_type_id=karat_type_id,
            to_karat_type_id=karat_type_id,
            from_weight=weight,
            to_weight=weight,
            from_rate=cost_per_gram,
            to_rate=cost_per_gram,
            conversion_factor=ONE,
            transfer_value=value,
            customer_purchase_id=customer_purchase_id,
            actor=actor,
            reference_number=reference_number,
            notes=notes,
        )
        self._flush("MerchantRawGoldBalance", merchant_balance_key(branch_id, karat_type_id))

        logger.info("gold_credit_recorded", extra={
            "transfer_number": transfer.transfer_number,
            "branch_id": branch_id,
            "karat_type_id": karat_type_id,
            "weight": str(weight),
            "available_weight": str(merchant.available_weight),
        })
        return transfer.to_dto()

    def preview_conversion(
        self,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
        as_of: datetime | None = None,
    ) -> ConversionPreview:
        """Compute a conversion at current rates without applying it."""
        as_of = as_of or self._clock.now()
        conversion = self._conversion(from_karat_type_id, to_karat_type_id, from_weight, as_of)
        return ConversionPreview(
            from_karat_type_id=from_karat_type_id,
            to_karat_type_id=to_karat_type_id,
            from_weight=conversion.from_weight,
            to_weight=conversion.to_weight,
            from_rate=conversion.from_rate,
            to_rate=conversion.to_rate,
            conversion_factor=conversion.conversion_factor,
            from_value=conversion.from_value,
            to_value=conversion.to_value,
            as_of=as_of,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _conversion(
        self,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
        as_of: datetime | None = None,
    ) -> KaratConversion:
        if from_karat_type_id == to_karat_type_id:
            # Fails before any rate lookup
            return convert_weight(
                from_karat_type_id=from_karat_type_id,
                to_karat_type_id=to_karat_type_id,
                from_weight=from_weight,
                from_rate=ONE,
                to_rate=ONE,
            )
        as_of = as_of or self._clock.now()
        return convert_weight(
            from_karat_type_id=from_karat_type_id,
            to_karat_type_id=to_karat_type_id,
            from_weight=from_weight,
            from_rate=self._rates.get_current_rate(from_karat_type_id, as_of),
            to_rate=self._rates.get_current_rate(to_karat_type_id, as_of),
        )

    def _convert_merchant(self, branch_id: str, conversion: KaratConversion) -> None:
        first, second = sorted((conversion.from_karat_type_id, conversion.to_karat_type_id))
        locked = {
            first: self._lock_merchant(branch_id, first, create=False),
            second: self._lock_merchant(branch_id, second, create=False),
        }
        source = locked[conversion.from_karat_type_id]
        available = source.available_weight if source is not None else ZERO
        if source is None or conversion.from_weight > available:
            raise InsufficientRawGoldError(
                branch_id, conversion.from_karat_type_id, conversion.from_weight, available,
            )

        target = locked[conversion.to_karat_type_id]
        if target is None:
            target = self._lock_merchant(branch_id, conversion.to_karat_type_id, create=True)

        now = self._clock.now()
        moved_value = self._take_from_merchant(source, conversion.from_weight, now)
        self._add_to_merchant(target, conversion.to_weight, moved_value, now)

    def _convert_supplier(
        self,
        branch_id: str,
        supplier_id: str,
        conversion: KaratConversion,
    ) -> None:
        first, second = sorted((conversion.from_karat_type_id, conversion.to_karat_type_id))
        locked = {
            first: self._lock_supplier(supplier_id, branch_id, first, create=False),
            second: self._lock_supplier(supplier_id, branch_id, second, create=False),
        }
        source = locked[conversion.from_karat_type_id]
        outstanding = source.outstanding_weight_debt if source is not None else ZERO
        if source is None or conversion.from_weight > outstanding:
            raise ExceedsOutstandingDebtError(
                supplier_id, conversion.from_karat_type_id, conversion.from_weight, outstanding,
            )

        target = locked[conversion.to_karat_type_id]
        if target is None:
            target = self._lock_supplier(
                supplier_id, branch_id, conversion.to_karat_type_id, create=True,
            )

        now = self._clock.now()
        source.total_weight_paid_for += conversion.from_weight
        source.last_transaction_at = now

        received = target.total_weight_received + conversion.to_weight
        target.average_cost_per_gram = round_rate(
            (
                target.total_weight_received * target.average_cost_per_gram
                + conversion.to_weight * conversion.to_rate
            )
            / received
        )
        target.total_weight_received = received
        target.last_transaction_at = now

    def _take_from_merchant(
        self,
        merchant: MerchantRawGoldBalanceModel,
        weight: Decimal,
        now: datetime,
    ) -> Decimal:
        """Remove weight at average cost; returns the book value removed."""
        remaining = merchant.available_weight - weight
        if remaining == ZERO:
            value = merchant.total_value
        else:
            value = round_money(weight * merchant.average_cost_per_gram)
        merchant.available_weight = remaining
        merchant.total_value -= value
        merchant.last_movement_at = now
        return value

    def _add_to_merchant(
        self,
        merchant: MerchantRawGoldBalanceModel,
        weight: Decimal,
        value: Decimal,
        now: datetime,
    ) -> None:
        merchant.available_weight += weight
        merchant.total_value += value
        merchant.average_cost_per_gram = round_rate(
            merchant.total_value / merchant.available_weight
        )
        merchant.last_movement_at = now

    def _lock_supplier(
        self,
        supplier_id: str,
        branch_id: str,
        karat_type_id: str,
        create: bool,
    ) -> SupplierGoldBalanceModel | None:
        balance = self.session.scalars(
            select(SupplierGoldBalanceModel)
            .where(
                SupplierGoldBalanceModel.supplier_id == supplier_id,
                SupplierGoldBalanceModel.branch_id == branch_id,
                SupplierGoldBalanceModel.karat_type_id == karat_type_id,
            )
            .with_for_update()
        ).one_or_none()
        if balance is None and create:
            balance = SupplierGoldBalanceModel(
                id=uuid4(),
                supplier_id=supplier_id,
                branch_id=branch_id,
                karat_type_id=karat_type_id,
                total_weight_received=ZERO,
                total_weight_paid_for=ZERO,
                average_cost_per_gram=ZERO,
            )
            self.session.add(balance)
            logger.debug("supplier_gold_balance_created", extra={
                "supplier_id": supplier_id,
                "branch_id": branch_id,
                "karat_type_id": karat_type_id,
            })
        return balance

    def _lock_merchant(
        self,
        branch_id: str,
        karat_type_id: str,
        create: bool,
    ) -> MerchantRawGoldBalanceModel | None:
        balance = self.session.scalars(
            select(MerchantRawGoldBalanceModel)
            .where(
                MerchantRawGoldBalanceModel.branch_id == branch_id,
                MerchantRawGoldBalanceModel.karat_type_id == karat_type_id,
            )
            .with_for_update()
        ).one_or_none()
        if balance is None and create:
            balance = MerchantRawGoldBalanceModel(
                id=uuid4(),
                branch_id=branch_id,
                karat_type_id=karat_type_id,
                available_weight=ZERO,
                average_cost_per_gram=ZERO,
                total_value=ZERO,
            )
            self.session.add(balance)
        return balance

    def _check_reference(self, transfer_type: TransferType, reference_number: str | None) -> None:
        if reference_number is None:
            return
        existing = self.session.scalars(
            select(RawGoldTransferModel.id).where(
                RawGoldTransferModel.transfer_type == transfer_type.value,
                RawGoldTransferModel.reference_number == reference_number,
            )
        ).first()
        if existing is not None:
            raise DuplicateTransferError(transfer_type.value, reference_number)

    def _next_transfer_number(self) -> str:
        day = self._clock.now().strftime("%Y%m%d")
        seq = self._sequences.next_value(f"{SequenceService.RAW_GOLD_TRANSFER_PREFIX}:{day}")
        return f"{self._settings.number_prefix}{day}{seq:03d}"

    def _write_transfer(
        self,
        transfer_type: TransferType,
        *,
        branch_id: str,
        actor: str,
        conversion: KaratConversion | None = None,
        from_karat_type_id: str | None = None,
        to_karat_type_id: str | None = None,
        from_weight: Decimal = ZERO,
        to_weight: Decimal = ZERO,
        from_rate: Decimal = ZERO,
        to_rate: Decimal = ZERO,
        conversion_factor: Decimal = ONE,
        transfer_value: Decimal = ZERO,
        from_supplier_id: str | None = None,
        to_supplier_id: str | None = None,
        customer_purchase_id: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> RawGoldTransferModel:
        if conversion is not None:
            from_karat_type_id = conversion.from_karat_type_id
            to_karat_type_id = conversion.to_karat_type_id
            from_weight = conversion.from_weight
            to_weight = conversion.to_weight
            from_rate = conversion.from_rate
            to_rate = conversion.to_rate
            conversion_factor = conversion.conversion_factor
            transfer_value = conversion.from_value

        transfer = RawGoldTransferModel(
            transfer_number=self._next_transfer_number(),
            transfer_type=transfer_type.value,
            branch_id=branch_id,
            from_supplier_id=from_supplier_id,
            to_supplier_id=to_supplier_id,
            from_karat_type_id=from_karat_type_id,
            to_karat_type_id=to_karat_type_id,
            from_weight=from_weight,
            to_weight=to_weight,
            from_rate=from_rate,
            to_rate=to_rate,
            conversion_factor=conversion_factor,
            transfer_value=transfer_value,
            customer_purchase_id=customer_purchase_id,
            reference_number=reference_number,
            notes=notes,
            created_at=self._clock.now(),
            created_by=actor,
        )
        self.session.add(transfer)
        return transfer


def _require_positive(value: Decimal, name: str, decimal_places: int = WEIGHT_DECIMAL_PLACES) -> None:
    if value <= ZERO:
        raise ValidationError(f"{name} must be positive, got {value}", field=name)
    if not fits_scale(value, decimal_places):
        raise ValidationError(
            f"{name} {value} has more than {decimal_places} decimal places", field=name,
        )
