"""
goldpos_services.costing_service -- Read-only cost valuation from stored lots.

Loads the available cost lots for a product (optionally one branch) and
hands them to the pure CostingEngine.  Nothing is decremented here; the
CostSourceLedger applies plans.  FIFO and LIFO over too few (or no) lots
raise PartialFulfillmentError; averaging with no lots raises NoCostDataError.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from goldpos_config.schema import CostingSettings
from goldpos_engines.costing import CostAnalysis, CostingEngine, CostingResult, CostLayer
from goldpos_kernel.exceptions import NoCostDataError
from goldpos_kernel.selectors.cost_lot_selector import CostLotSelector


class CostingService:
    """Weighted-average, FIFO and LIFO valuation over a product's lots."""

    def __init__(
        self,
        session: Session,
        settings: CostingSettings | None = None,
        engine: CostingEngine | None = None,
    ):
        self._selector = CostLotSelector(session)
        self._settings = settings or CostingSettings()
        self._engine = engine or CostingEngine()

    def weighted_average(self, product_id: str, branch_id: str | None = None) -> CostingResult:
        return self._engine.weighted_average(
            product_id=product_id, layers=self._priced_layers(product_id, branch_id),
        )

    def fifo(
        self,
        product_id: str,
        quantity_needed: Decimal,
        branch_id: str | None = None,
    ) -> CostingResult:
        return self._engine.fifo(
            product_id=product_id,
            layers=self._layers(product_id, branch_id),
            quantity_needed=quantity_needed,
        )

    def lifo(
        self,
        product_id: str,
        quantity_needed: Decimal,
        branch_id: str | None = None,
    ) -> CostingResult:
        return self._engine.lifo(
            product_id=product_id,
            layers=self._layers(product_id, branch_id),
            quantity_needed=quantity_needed,
        )

    def cost_analysis(self, product_id: str, branch_id: str | None = None) -> CostAnalysis:
        return self._engine.cost_analysis(
            product_id,
            self._priced_layers(product_id, branch_id),
            self._settings.recommended_method,
        )

    def _layers(self, product_id: str, branch_id: str | None) -> list[CostLayer]:
        return [
            CostLayer.from_record(lot)
            for lot in self._selector.available_lots(product_id, branch_id)
        ]

    def _priced_layers(self, product_id: str, branch_id: str | None) -> list[CostLayer]:
        """Layers for averaging; an empty set has no cost to report."""
        layers = self._layers(product_id, branch_id)
        if not layers:
            raise NoCostDataError(product_id, branch_id)
        return layers
