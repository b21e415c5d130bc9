"""
goldpos_services.gold_operations -- Transactional entry point for the engine.

Responsibility:
    One call, one unit of work.  Each mutating method:
        1. reads any karat rates it needs (no lock held),
        2. takes the in-process keyed locks for the balance keys it touches,
        3. opens a session, runs the service call, commits,
        4. on ConcurrencyConflictError starts over from 1, up to
           ``concurrency.max_attempts`` times with linear backoff.
    Read-only calls get their own session and no locks.

Architecture position:
    Services -- the outermost layer in this repository.  Callers (HTTP
    handlers, batch jobs) hold a GoldOperations and never see a Session.

Invariants enforced:
    - A balance update and its movement/transfer row commit together or
      not at all.
    - Mutations of one product at one branch, one supplier balance key or
      one merchant balance key are serialized in-process; the row version
      check covers other processes.
    - Only ConcurrencyConflictError is retried.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from goldpos_config import get_active_settings
from goldpos_config.schema import EngineSettings
from goldpos_engines.costing import BlendResult, CostAnalysis, CostingResult
from goldpos_kernel.db.engine import session_scope
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import (
    ConsolidationOpportunity,
    ConsolidationResult,
    ConversionPreview,
    CostLotRecord,
    CostMethod,
    GoldBalanceSummary,
    OwnershipAlert,
    OwnershipMovementRecord,
    OwnershipRecord,
    OwnershipRequest,
    Page,
    RawGoldTransferRecord,
    SaleRiskItem,
    SaleValidation,
    SupplierGoldBalanceRecord,
    TransferQuery,
)
from goldpos_kernel.domain.inventory import InventoryService
from goldpos_kernel.domain.rates import KaratRateProvider
from goldpos_kernel.exceptions import KaratRateNotFoundError, OwnershipNotFoundError
from goldpos_kernel.logging_config import LogContext, get_logger
from goldpos_kernel.models.ownership import ProductOwnershipModel
from goldpos_kernel.selectors.gold_balance_selector import GoldBalanceSelector
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector
from goldpos_kernel.services.concurrency import (
    KeyedLockRegistry,
    merchant_balance_key,
    product_key,
    retry_on_conflict,
    supplier_balance_key,
)
from goldpos_services.alert_generator import AlertGenerator
from goldpos_services.consolidation_service import ConsolidationService
from goldpos_services.cost_source_ledger import CostSourceLedger
from goldpos_services.costing_service import CostingService
from goldpos_services.gold_balance_ledger import GoldBalanceLedger
from goldpos_services.ownership_tracker import OwnershipTracker

logger = get_logger("services.operations")

T = TypeVar("T")


class _PinnedRates:
    """Rates read once, before any lock, and replayed to the ledger."""

    def __init__(self, rates: dict[str, Decimal]):
        self._rates = rates

    def get_current_rate(self, karat_type_id: str, as_of: datetime) -> Decimal:
        try:
            return self._rates[karat_type_id]
        except KeyError:
            raise KaratRateNotFoundError(karat_type_id, as_of.isoformat()) from None


class GoldOperations:
    """
    Facade over the ownership, costing and gold balance services.

    Contract:
        Constructed once per process with a session factory, a rate
        provider and optionally a clock, settings, an inventory service and
        a lock registry.  Thread-safe: each call uses its own session.
    """

    def __init__(
        self,
        rates: KaratRateProvider,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        inventory: InventoryService | None = None,
        locks: KeyedLockRegistry | None = None,
    ):
        self._rates = rates
        self._factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or get_active_settings()
        self._inventory = inventory
        self._locks = locks or KeyedLockRegistry(
            timeout=self._settings.concurrency.lock_timeout_seconds,
        )

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # =========================================================================
    # Ownership
    # =========================================================================

    def validate_sale(self, product_id: str, branch_id: str, quantity: Decimal) -> SaleValidation:
        return self._read(lambda s: self._tracker(s).validate_sale(product_id, branch_id, quantity))

    def record_sale_consumption(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
        reference_number: str,
        actor: str,
    ) -> list[OwnershipMovementRecord]:
        with LogContext.bind(
            actor_id=actor, reference_number=reference_number, branch_id=branch_id,
        ):
            return self._write(
                "record_sale_consumption",
                [product_key(product_id, branch_id)],
                lambda s: self._tracker(s).record_sale_consumption(
                    product_id, branch_id, quantity, reference_number, actor,
                ),
            )

    def record_payment(
        self,
        ownership_id: UUID,
        amount: Decimal,
        reference_number: str,
        actor: str,
    ) -> OwnershipMovementRecord:
        with LogContext.bind(actor_id=actor, reference_number=reference_number):
            return self._write(
                "record_payment",
                lambda: [self._ownership_product_key(ownership_id)],
                lambda s: self._tracker(s).record_payment(
                    ownership_id, amount, reference_number, actor,
                ),
            )

    def create_or_update(self, request: OwnershipRequest, actor: str) -> OwnershipRecord:
        with LogContext.bind(
            actor_id=actor,
            reference_number=request.reference_number,
            branch_id=request.branch_id,
        ):
            return self._write(
                "create_or_update",
                [product_key(request.product_id, request.branch_id)],
                lambda s: self._tracker(s).create_or_update(request, actor),
            )

    def record_adjustment(
        self,
        ownership_id: UUID,
        quantity_change: Decimal,
        weight_change: Decimal,
        reason: str,
        reference_number: str,
        actor: str,
    ) -> OwnershipMovementRecord:
        with LogContext.bind(actor_id=actor, reference_number=reference_number):
            return self._write(
                "record_adjustment",
                lambda: [self._ownership_product_key(ownership_id)],
                lambda s: self._tracker(s).record_adjustment(
                    ownership_id, quantity_change, weight_change, reason, reference_number, actor,
                ),
            )

    def sale_risk_report(self, branch_id: str | None = None) -> list[SaleRiskItem]:
        return self._read(lambda s: OwnershipSelector(s).sale_risk_report(branch_id))

    # =========================================================================
    # Costing
    # =========================================================================

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
        return self._write(
            "record_lot",
            [],
            lambda s: self._cost_ledger(s).record_lot(
                product_id,
                branch_id,
                quantity,
                weight,
                unit_cost_per_gram,
                source_ref,
                actor,
                supplier_id=supplier_id,
                karat_type_id=karat_type_id,
                purchase_date=purchase_date,
            ),
        )

    def issue_cost_lots(
        self,
        product_id: str,
        branch_id: str,
        quantity: Decimal,
        method: CostMethod,
        reference_number: str,
        actor: str,
    ) -> CostingResult:
        return self._write(
            "issue_cost_lots",
            [f"cost_lots:{branch_id}:{product_id}"],
            lambda s: self._cost_ledger(s).issue(
                product_id, branch_id, quantity, method, reference_number, actor,
            ),
        )

    def weighted_average(self, product_id: str, branch_id: str | None = None) -> CostingResult:
        return self._read(lambda s: self._costing(s).weighted_average(product_id, branch_id))

    def fifo(
        self,
        product_id: str,
        quantity_needed: Decimal,
        branch_id: str | None = None,
    ) -> CostingResult:
        return self._read(lambda s: self._costing(s).fifo(product_id, quantity_needed, branch_id))

    def lifo(
        self,
        product_id: str,
        quantity_needed: Decimal,
        branch_id: str | None = None,
    ) -> CostingResult:
        return self._read(lambda s: self._costing(s).lifo(product_id, quantity_needed, branch_id))

    def cost_analysis(self, product_id: str, branch_id: str | None = None) -> CostAnalysis:
        return self._read(lambda s: self._costing(s).cost_analysis(product_id, branch_id))

    # =========================================================================
    # Gold balances
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
    ) -> SupplierGoldBalanceRecord:
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "record_receipt",
                [supplier_balance_key(supplier_id, branch_id, karat_type_id)],
                lambda s: self._gold_ledger(s, self._rates).record_receipt(
                    supplier_id, branch_id, karat_type_id, weight, cost_per_gram, actor,
                    reference_number=reference_number,
                ),
            )

    def record_payment_for_raw_gold(
        self,
        supplier_id: str,
        branch_id: str,
        karat_type_id: str,
        weight_paid_for: Decimal,
        actor: str,
        reference_number: str | None = None,
    ) -> SupplierGoldBalanceRecord:
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "record_payment_for_raw_gold",
                [supplier_balance_key(supplier_id, branch_id, karat_type_id)],
                lambda s: self._gold_ledger(s, self._rates).record_payment_for_raw_gold(
                    supplier_id, branch_id, karat_type_id, weight_paid_for, actor,
                    reference_number=reference_number,
                ),
            )

    def convert(
        self,
        branch_id: str,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
        actor: str,
        supplier_id: str | None = None,
        reference_number: str | None = None,
    ) -> RawGoldTransferRecord:
        rates = self._pin_rates(from_karat_type_id, to_karat_type_id)
        if supplier_id is None:
            keys = [
                merchant_balance_key(branch_id, from_karat_type_id),
                merchant_balance_key(branch_id, to_karat_type_id),
            ]
        else:
            keys = [
                supplier_balance_key(supplier_id, branch_id, from_karat_type_id),
                supplier_balance_key(supplier_id, branch_id, to_karat_type_id),
            ]
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "convert",
                keys,
                lambda s: self._gold_ledger(s, rates).convert(
                    branch_id, from_karat_type_id, to_karat_type_id, from_weight, actor,
                    supplier_id=supplier_id, reference_number=reference_number,
                ),
            )

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
    ) -> RawGoldTransferRecord:
        rates = self._pin_rates(from_karat_type_id, to_karat_type_id)
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "waive_to_supplier",
                [
                    merchant_balance_key(branch_id, from_karat_type_id),
                    supplier_balance_key(to_supplier_id, branch_id, to_karat_type_id),
                ],
                lambda s: self._gold_ledger(s, rates).waive_to_supplier(
                    branch_id, to_supplier_id, from_karat_type_id, to_karat_type_id,
                    from_weight, actor,
                    customer_purchase_id=customer_purchase_id,
                    reference_number=reference_number,
                ),
            )

    def credit_merchant_gold(
        self,
        branch_id: str,
        karat_type_id: str,
        weight: Decimal,
        cost_per_gram: Decimal,
        actor: str,
        customer_purchase_id: str | None = None,
        reference_number: str | None = None,
    ) -> RawGoldTransferRecord:
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "credit_merchant_gold",
                [merchant_balance_key(branch_id, karat_type_id)],
                lambda s: self._gold_ledger(s, self._rates).credit_merchant_gold(
                    branch_id, karat_type_id, weight, cost_per_gram, actor,
                    customer_purchase_id=customer_purchase_id,
                    reference_number=reference_number,
                ),
            )

    def preview_conversion(
        self,
        from_karat_type_id: str,
        to_karat_type_id: str,
        from_weight: Decimal,
    ) -> ConversionPreview:
        return self._read(
            lambda s: self._gold_ledger(s, self._rates).preview_conversion(
                from_karat_type_id, to_karat_type_id, from_weight,
            )
        )

    def gold_balance_summary(self, branch_id: str) -> GoldBalanceSummary:
        return self._read(lambda s: GoldBalanceSelector(s).summary(branch_id))

    def transfers(self, query: TransferQuery) -> Page:
        return self._read(lambda s: GoldBalanceSelector(s).transfers(query))

    # =========================================================================
    # Consolidation and alerts
    # =========================================================================

    def find_opportunities(
        self,
        product_id: str | None = None,
        supplier_id: str | None = None,
        branch_id: str | None = None,
    ) -> list[ConsolidationOpportunity]:
        return self._read(
            lambda s: self._consolidation(s).find_opportunities(product_id, supplier_id, branch_id)
        )

    def consolidate(
        self,
        product_id: str,
        supplier_id: str,
        branch_id: str,
        reference_number: str,
        actor: str,
    ) -> ConsolidationResult:
        with LogContext.bind(actor_id=actor, reference_number=reference_number, branch_id=branch_id):
            return self._write(
                "consolidate",
                [product_key(product_id, branch_id)],
                lambda s: self._consolidation(s).consolidate(
                    product_id, supplier_id, branch_id, reference_number, actor,
                ),
            )

    def weighted_average_for(self, ownership_ids: Iterable[UUID]) -> BlendResult:
        ids = list(ownership_ids)
        return self._read(lambda s: self._consolidation(s).weighted_average_for(ids))

    def alerts(self, branch_id: str | None = None) -> list[OwnershipAlert]:
        return self._read(
            lambda s: AlertGenerator(s, self._clock, self._settings.ownership).scan(branch_id)
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _tracker(self, session: Session) -> OwnershipTracker:
        return OwnershipTracker(session, self._clock, self._settings.ownership, self._inventory)

    def _cost_ledger(self, session: Session) -> CostSourceLedger:
        return CostSourceLedger(session, self._clock)

    def _costing(self, session: Session) -> CostingService:
        return CostingService(session, self._settings.costing)

    def _gold_ledger(self, session: Session, rates: KaratRateProvider) -> GoldBalanceLedger:
        return GoldBalanceLedger(session, rates, self._clock, self._settings.transfers)

    def _consolidation(self, session: Session) -> ConsolidationService:
        return ConsolidationService(session, self._clock)

    def _pin_rates(self, *karat_type_ids: str) -> _PinnedRates:
        as_of = self._clock.now()
        return _PinnedRates({
            karat: self._rates.get_current_rate(karat, as_of)
            for karat in dict.fromkeys(karat_type_ids)
        })

    def _ownership_product_key(self, ownership_id: UUID) -> str:
        with session_scope(self._factory) as session:
            row = session.get(ProductOwnershipModel, ownership_id)
            if row is None:
                raise OwnershipNotFoundError(str(ownership_id))
            return product_key(row.product_id, row.branch_id)

    def _read(self, work: Callable[[Session], T]) -> T:
        with session_scope(self._factory) as session:
            return work(session)

    def _write(
        self,
        operation_name: str,
        keys: list[str] | Callable[[], list[str]],
        work: Callable[[Session], T],
    ) -> T:
        def attempt() -> T:
            lock_keys = keys() if callable(keys) else keys
            with self._locks.hold(lock_keys):
                with session_scope(self._factory) as session:
                    return work(session)

        result = retry_on_conflict(
            attempt,
            max_attempts=self._settings.concurrency.max_attempts,
            backoff_seconds=self._settings.concurrency.backoff_seconds,
            operation_name=operation_name,
        )
        logger.debug("operation_committed", extra={"operation": operation_name})
        return result
