"""
Module: goldpos_kernel.selectors.gold_balance_selector
Responsibility: Read-only queries over supplier gold debt, merchant raw gold
    holdings and the raw gold transfer ledger.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from sqlalchemy import func, or_, select

from goldpos_kernel.db.types import ZERO, round_money, round_weight
from goldpos_kernel.domain.dtos import (
    GoldBalanceSummary,
    MerchantRawGoldBalanceRecord,
    Page,
    SupplierGoldBalanceRecord,
    TransferQuery,
)
from goldpos_kernel.models.gold_balance import (
    MerchantRawGoldBalanceModel,
    RawGoldTransferModel,
    SupplierGoldBalanceModel,
)
from goldpos_kernel.selectors.base import BaseSelector


class GoldBalanceSelector(BaseSelector[SupplierGoldBalanceModel]):
    """Query interface for gold balances and transfers."""

    def supplier_balance(
        self,
        supplier_id: str,
        branch_id: str,
        karat_type_id: str,
    ) -> SupplierGoldBalanceRecord | None:
        model = self.session.scalars(
            select(SupplierGoldBalanceModel).where(
                SupplierGoldBalanceModel.supplier_id == supplier_id,
                SupplierGoldBalanceModel.branch_id == branch_id,
                SupplierGoldBalanceModel.karat_type_id == karat_type_id,
            )
        ).one_or_none()
        return model.to_dto() if model is not None else None

    def supplier_balances(
        self,
        branch_id: str,
        supplier_id: str | None = None,
        outstanding_only: bool = False,
    ) -> list[SupplierGoldBalanceRecord]:
        stmt = select(SupplierGoldBalanceModel).where(
            SupplierGoldBalanceModel.branch_id == branch_id
        )
        if supplier_id is not None:
            stmt = stmt.where(SupplierGoldBalanceModel.supplier_id == supplier_id)
        stmt = stmt.order_by(
            SupplierGoldBalanceModel.supplier_id,
            SupplierGoldBalanceModel.karat_type_id,
        )
        records = [m.to_dto() for m in self.session.scalars(stmt)]
        if outstanding_only:
            records = [r for r in records if r.outstanding_weight_debt > ZERO]
        return records

    def merchant_balance(
        self,
        branch_id: str,
        karat_type_id: str,
    ) -> MerchantRawGoldBalanceRecord | None:
        model = self.session.scalars(
            select(MerchantRawGoldBalanceModel).where(
                MerchantRawGoldBalanceModel.branch_id == branch_id,
                MerchantRawGoldBalanceModel.karat_type_id == karat_type_id,
            )
        ).one_or_none()
        return model.to_dto() if model is not None else None

    def merchant_balances(self, branch_id: str) -> list[MerchantRawGoldBalanceRecord]:
        stmt = (
            select(MerchantRawGoldBalanceModel)
            .where(MerchantRawGoldBalanceModel.branch_id == branch_id)
            .order_by(MerchantRawGoldBalanceModel.karat_type_id)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def available_for_waiving(
        self,
        branch_id: str,
        karat_type_id: str | None = None,
    ) -> list[MerchantRawGoldBalanceRecord]:
        """Merchant raw gold with weight left to waive to a supplier."""
        return [
            b
            for b in self.merchant_balances(branch_id)
            if b.available_weight > ZERO
            and (karat_type_id is None or b.karat_type_id == karat_type_id)
        ]

    def transfers(self, query: TransferQuery) -> Page:
        """Transfer history, newest first, filtered and paginated."""
        if query.page < 1 or query.page_size < 1:
            raise ValueError("page and page_size must be >= 1")

        conditions = []
        if query.branch_id is not None:
            conditions.append(RawGoldTransferModel.branch_id == query.branch_id)
        if query.supplier_id is not None:
            conditions.append(
                or_(
                    RawGoldTransferModel.from_supplier_id == query.supplier_id,
                    RawGoldTransferModel.to_supplier_id == query.supplier_id,
                )
            )
        if query.karat_type_id is not None:
            conditions.append(
                or_(
                    RawGoldTransferModel.from_karat_type_id == query.karat_type_id,
                    RawGoldTransferModel.to_karat_type_id == query.karat_type_id,
                )
            )
        if query.transfer_type is not None:
            conditions.append(RawGoldTransferModel.transfer_type == query.transfer_type.value)
        if query.from_date is not None:
            conditions.append(RawGoldTransferModel.created_at >= query.from_date)
        if query.to_date is not None:
            conditions.append(RawGoldTransferModel.created_at <= query.to_date)

        total = self.session.scalar(
            select(func.count()).select_from(RawGoldTransferModel).where(*conditions)
        )
        rows = self.session.scalars(
            select(RawGoldTransferModel)
            .where(*conditions)
            .order_by(
                RawGoldTransferModel.created_at.desc(),
                RawGoldTransferModel.transfer_number.desc(),
            )
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        )
        return Page(
            items=tuple(m.to_dto() for m in rows),
            total_count=total or 0,
            page=query.page,
            page_size=query.page_size,
        )

    def summary(self, branch_id: str) -> GoldBalanceSummary:
        suppliers = tuple(self.supplier_balances(branch_id))
        merchant = tuple(self.merchant_balances(branch_id))
        return GoldBalanceSummary(
            branch_id=branch_id,
            supplier_balances=suppliers,
            merchant_balances=merchant,
            total_outstanding_weight=round_weight(
                sum((s.outstanding_weight_debt for s in suppliers), ZERO)
            ),
            total_outstanding_value=round_money(
                sum((s.outstanding_monetary_value for s in suppliers), ZERO)
            ),
            total_merchant_weight=round_weight(
                sum((m.available_weight for m in merchant), ZERO)
            ),
            total_merchant_value=round_money(
                sum((m.total_value for m in merchant), ZERO)
            ),
        )
