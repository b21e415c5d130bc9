"""
Module: goldpos_engines.costing
Responsibility:
    Value gold inventory from its cost lots: weighted average over all
    remaining weight, FIFO and LIFO plans for a quantity, and a blended
    cost over arbitrary (weight, cost) sources.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import goldpos_kernel (domain DTOs, rounding helpers, exceptions).
    The session-bound CostingService in goldpos_services feeds it lots.

Invariants enforced:
    - Contribution percentages are rounded to 2 places and the rounding
      residual is assigned to the largest contributor, so every result's
      contributions sum to exactly 100.00.
    - FIFO/LIFO ordering is deterministic: (purchase_date, sequence_order,
      lot id), reversed for LIFO.
    - A partially consumed lot contributes weight pro rata to quantity; a
      fully consumed lot contributes its exact remaining weight, so no
      rounding drift is left behind on exhaustion.
    - Purity: no clock access, no I/O.

Failure modes:
    - NoCostDataError when no layer has remaining weight.
    - PartialFulfillmentError when layers cannot cover the quantity.
    - ValidationError on a non-positive quantity or an empty blend.

Usage:
    engine = CostingEngine()
    result = engine.fifo(
        product_id="RING-21K",
        layers=[CostLayer.from_record(lot) for lot in lots],
        quantity_needed=Decimal("3"),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from goldpos_engines.tracer import traced_engine
from goldpos_kernel.db.types import (
    HUNDRED,
    ZERO,
    percentage_of,
    round_money,
    round_percentage,
    round_rate,
    round_weight,
)
from goldpos_kernel.domain.dtos import CostLotRecord, CostMethod
from goldpos_kernel.exceptions import (
    NoCostDataError,
    PartialFulfillmentError,
    ValidationError,
)
from goldpos_kernel.logging_config import get_logger

logger = get_logger("engines.costing")


@dataclass(frozen=True, slots=True)
class CostLayer:
    """
    Remaining portion of one cost lot, as seen by the engine.

    ``quantity`` and ``weight`` are what is still available, not what was
    originally received.
    """

    lot_id: UUID | str
    quantity: Decimal
    weight: Decimal
    unit_cost_per_gram: Decimal
    purchase_date: date
    sequence_order: int

    @classmethod
    def from_record(cls, record: CostLotRecord) -> CostLayer:
        return cls(
            lot_id=record.lot_id,
            quantity=record.remaining_quantity,
            weight=record.remaining_weight,
            unit_cost_per_gram=record.unit_cost_per_gram,
            purchase_date=record.purchase_date,
            sequence_order=record.sequence_order,
        )

    @property
    def cost(self) -> Decimal:
        return self.weight * self.unit_cost_per_gram


@dataclass(frozen=True, slots=True)
class CostContribution:
    """What one lot contributes to a valuation."""

    lot_id: UUID | str
    quantity: Decimal
    weight: Decimal
    unit_cost_per_gram: Decimal
    cost: Decimal
    contribution_percentage: Decimal


@dataclass(frozen=True, slots=True)
class CostingResult:
    """
    Outcome of a weighted-average, FIFO or LIFO valuation.

    Guarantees:
        - ``sum(c.contribution_percentage for c in contributions) == 100``
          whenever there is at least one contribution.
        - ``total_cost == sum(c.cost for c in contributions)``.
    """

    method: CostMethod
    product_id: str
    quantity: Decimal
    total_weight: Decimal
    total_cost: Decimal
    average_cost_per_gram: Decimal
    contributions: tuple[CostContribution, ...]

    @property
    def cost_per_unit(self) -> Decimal:
        if self.quantity <= ZERO:
            return round_money(ZERO)
        return round_money(self.total_cost / self.quantity)

    @property
    def contribution_total(self) -> Decimal:
        return sum((c.contribution_percentage for c in self.contributions), ZERO)


@dataclass(frozen=True, slots=True)
class BlendSource:
    """An arbitrary (weight, cost) input to a blend."""

    source_id: UUID | str
    weight: Decimal
    cost: Decimal


@dataclass(frozen=True, slots=True)
class BlendResult:
    total_weight: Decimal
    total_cost: Decimal
    blended_cost_per_gram: Decimal
    contributions: tuple[tuple[UUID | str, Decimal], ...]


@dataclass(frozen=True, slots=True)
class CostAnalysis:
    """Side-by-side valuation of one unit under every method."""

    product_id: str
    weighted_average: CostingResult
    fifo: CostingResult | None
    lifo: CostingResult | None
    recommended_method: CostMethod

    @property
    def recommended(self) -> CostingResult:
        if self.recommended_method == CostMethod.FIFO and self.fifo is not None:
            return self.fifo
        if self.recommended_method == CostMethod.LIFO and self.lifo is not None:
            return self.lifo
        return self.weighted_average


def contribution_percentages(values: Sequence[Decimal]) -> list[Decimal]:
    """
    Percent share of each value, rounded to 2 places, summing to exactly 100.

    The rounding residual goes to the largest value (first one on ties).
    All zeros (or an empty input) yields all zeros.
    """
    total = sum(values, ZERO)
    if not values or total <= ZERO:
        return [round_percentage(ZERO) for _ in values]

    shares = [percentage_of(v, total) for v in values]
    residual = HUNDRED - sum(shares, ZERO)
    if residual:
        largest = max(range(len(values)), key=lambda i: (values[i], -i))
        shares[largest] = round_percentage(shares[largest] + residual)
    return shares


def _layer_order(layer: CostLayer) -> tuple:
    return (layer.purchase_date, layer.sequence_order, str(layer.lot_id))


class CostingEngine:
    """
    Cost valuation over cost layers.

    Contract:
        Pure functions; callers supply the layers.  Nothing is decremented;
        applying a plan is the CostSourceLedger's job.
    Guarantees:
        - Weight to 3 places, money to 2, per-gram cost to 6, banker's rounding.
        - Contribution percentages are weight-based and sum to 100.00.
    Non-goals:
        - Does not pick the method; callers do (cost_analysis only recommends).
    """

    @traced_engine("costing.weighted_average", "1.0", fingerprint_fields=("product_id",))
    def weighted_average(
        self,
        product_id: str,
        layers: Sequence[CostLayer],
    ) -> CostingResult:
        """Σ(weight × unit cost) / Σ(weight) over layers with remaining weight."""
        live = sorted((layer for layer in layers if layer.weight > ZERO), key=_layer_order)
        if not live:
            logger.warning("costing_no_cost_data", extra={"product_id": product_id})
            raise NoCostDataError(product_id)

        costs = [round_money(layer.cost) for layer in live]
        percentages = contribution_percentages([layer.weight for layer in live])
        contributions = tuple(
            CostContribution(
                lot_id=layer.lot_id,
                quantity=layer.quantity,
                weight=layer.weight,
                unit_cost_per_gram=layer.unit_cost_per_gram,
                cost=cost,
                contribution_percentage=pct,
            )
            for layer, cost, pct in zip(live, costs, percentages)
        )

        total_weight = round_weight(sum((layer.weight for layer in live), ZERO))
        raw_cost = sum((layer.cost for layer in live), ZERO)
        result = CostingResult(
            method=CostMethod.WEIGHTED_AVERAGE,
            product_id=product_id,
            quantity=round_weight(sum((layer.quantity for layer in live), ZERO)),
            total_weight=total_weight,
            total_cost=sum(costs, ZERO),
            average_cost_per_gram=round_rate(raw_cost / total_weight),
            contributions=contributions,
        )
        logger.info("costing_weighted_average_computed", extra={
            "product_id": product_id,
            "lot_count": len(live),
            "average_cost_per_gram": str(result.average_cost_per_gram),
        })
        return result

    @traced_engine("costing.fifo", "1.0", fingerprint_fields=("product_id", "quantity_needed"))
    def fifo(
        self,
        product_id: str,
        layers: Sequence[CostLayer],
        quantity_needed: Decimal,
    ) -> CostingResult:
        """Consume oldest layers first."""
        ordered = sorted(layers, key=_layer_order)
        return self._consume(product_id, ordered, quantity_needed, CostMethod.FIFO)

    @traced_engine("costing.lifo", "1.0", fingerprint_fields=("product_id", "quantity_needed"))
    def lifo(
        self,
        product_id: str,
        layers: Sequence[CostLayer],
        quantity_needed: Decimal,
    ) -> CostingResult:
        """Consume newest layers first."""
        ordered = sorted(layers, key=_layer_order, reverse=True)
        return self._consume(product_id, ordered, quantity_needed, CostMethod.LIFO)

    def plan(
        self,
        method: CostMethod,
        product_id: str,
        layers: Sequence[CostLayer],
        quantity_needed: Decimal,
    ) -> CostingResult:
        """Dispatch to fifo or lifo."""
        match method:
            case CostMethod.FIFO:
                return self.fifo(product_id=product_id, layers=layers, quantity_needed=quantity_needed)
            case CostMethod.LIFO:
                return self.lifo(product_id=product_id, layers=layers, quantity_needed=quantity_needed)
            case _:
                raise ValidationError(
                    f"Cost method {method} does not consume layers", field="method",
                )

    def _consume(
        self,
        product_id: str,
        ordered: Sequence[CostLayer],
        quantity_needed: Decimal,
        method: CostMethod,
    ) -> CostingResult:
        if quantity_needed <= ZERO:
            raise ValidationError(
                f"Quantity needed must be positive, got {quantity_needed}",
                field="quantity_needed",
            )

        live = [layer for layer in ordered if layer.quantity > ZERO]
        available = sum((layer.quantity for layer in live), ZERO)
        if available < quantity_needed:
            logger.warning("costing_partial_fulfillment", extra={
                "product_id": product_id,
                "method": method.value,
                "requested_quantity": str(quantity_needed),
                "available_quantity": str(available),
            })
            raise PartialFulfillmentError(product_id, quantity_needed, available)

        remaining = quantity_needed
        taken: list[tuple[CostLayer, Decimal, Decimal, Decimal]] = []
        for layer in live:
            if remaining <= ZERO:
                break
            qty = min(layer.quantity, remaining)
            if qty == layer.quantity:
                weight = layer.weight
            else:
                weight = round_weight(layer.weight * qty / layer.quantity)
            cost = round_money(weight * layer.unit_cost_per_gram)
            taken.append((layer, qty, weight, cost))
            remaining -= qty

        weights = [weight for _, _, weight, _ in taken]
        basis = weights if sum(weights, ZERO) > ZERO else [qty for _, qty, _, _ in taken]
        percentages = contribution_percentages(basis)

        contributions = tuple(
            CostContribution(
                lot_id=layer.lot_id,
                quantity=qty,
                weight=weight,
                unit_cost_per_gram=layer.unit_cost_per_gram,
                cost=cost,
                contribution_percentage=pct,
            )
            for (layer, qty, weight, cost), pct in zip(taken, percentages)
        )
        total_weight = sum(weights, ZERO)
        total_cost = sum((c.cost for c in contributions), ZERO)
        average = round_rate(total_cost / total_weight) if total_weight > ZERO else round_rate(ZERO)

        logger.info("costing_plan_computed", extra={
            "product_id": product_id,
            "method": method.value,
            "quantity": str(quantity_needed),
            "lot_count": len(contributions),
            "total_cost": str(total_cost),
        })
        return CostingResult(
            method=method,
            product_id=product_id,
            quantity=quantity_needed,
            total_weight=total_weight,
            total_cost=total_cost,
            average_cost_per_gram=average,
            contributions=contributions,
        )

    @traced_engine("costing.blend", "1.0")
    def blend(self, sources: Sequence[BlendSource]) -> BlendResult:
        """
        Blended cost per gram over arbitrary sources.

        Used when ownership rows are consolidated and when raw materials of
        several purchases go into one manufactured piece.
        """
        if not sources:
            raise ValidationError("Cannot blend an empty set of sources", field="sources")
        for source in sources:
            if source.weight < ZERO or source.cost < ZERO:
                raise ValidationError(
                    f"Blend source {source.source_id} has negative weight or cost",
                    field="sources",
                )

        total_weight = round_weight(sum((s.weight for s in sources), ZERO))
        total_cost = round_money(sum((s.cost for s in sources), ZERO))
        per_gram = round_rate(total_cost / total_weight) if total_weight > ZERO else round_rate(ZERO)
        percentages = contribution_percentages([s.weight for s in sources])
        return BlendResult(
            total_weight=total_weight,
            total_cost=total_cost,
            blended_cost_per_gram=per_gram,
            contributions=tuple(
                (s.source_id, pct) for s, pct in zip(sources, percentages)
            ),
        )

    def cost_analysis(
        self,
        product_id: str,
        layers: Sequence[CostLayer],
        recommended_method: CostMethod = CostMethod.WEIGHTED_AVERAGE,
    ) -> CostAnalysis:
        """Value one unit under every method.  FIFO/LIFO are None when no unit is available."""
        average = self.weighted_average(product_id=product_id, layers=layers)
        one = Decimal("1")
        if sum((layer.quantity for layer in layers if layer.quantity > ZERO), ZERO) >= one:
            fifo = self.fifo(product_id=product_id, layers=layers, quantity_needed=one)
            lifo = self.lifo(product_id=product_id, layers=layers, quantity_needed=one)
        else:
            fifo = lifo = None
        return CostAnalysis(
            product_id=product_id,
            weighted_average=average,
            fifo=fifo,
            lifo=lifo,
            recommended_method=recommended_method,
        )
