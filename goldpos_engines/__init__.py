"""
Module: goldpos_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: cost
    valuation, karat conversion, ownership arithmetic and alert
    classification.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import goldpos_kernel.  MUST NOT import goldpos_services.

Invariants enforced:
    - Purity: engines never read the clock; timestamps are passed in.
    - Decimal-only arithmetic, rounded through goldpos_kernel.db.types.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are wrapped in ``@traced_engine`` and emit
    GOLDPOS_ENGINE_TRACE records with an input fingerprint.
"""

from goldpos_engines.alerts import AlertThresholds, classify
from goldpos_engines.costing import (
    BlendResult,
    BlendSource,
    CostAnalysis,
    CostContribution,
    CostingEngine,
    CostingResult,
    CostLayer,
    contribution_percentages,
)
from goldpos_engines.karat import KaratConversion, convert_weight
from goldpos_engines.ownership_math import (
    OwnershipPosition,
    PaymentEffect,
    SaleEffect,
    allocate_sale,
    apply_adjustment,
    apply_payment,
    apply_sale,
)

__all__ = [
    "AlertThresholds",
    "classify",
    "BlendResult",
    "BlendSource",
    "CostAnalysis",
    "CostContribution",
    "CostingEngine",
    "CostingResult",
    "CostLayer",
    "contribution_percentages",
    "KaratConversion",
    "convert_weight",
    "OwnershipPosition",
    "PaymentEffect",
    "SaleEffect",
    "allocate_sale",
    "apply_adjustment",
    "apply_payment",
    "apply_sale",
]
