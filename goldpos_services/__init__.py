"""
Module: goldpos_services
Responsibility:
    Session-bound services implementing the gold ownership engine, and the
    GoldOperations facade that gives each call its own transaction.

Architecture position:
    Services -- stateful orchestration over goldpos_engines and
    goldpos_kernel.  Services flush; only GoldOperations (or the caller's
    session_scope) commits.
"""

from goldpos_services.alert_generator import AlertGenerator
from goldpos_services.consolidation_service import ConsolidationService
from goldpos_services.cost_source_ledger import CostSourceLedger
from goldpos_services.costing_service import CostingService
from goldpos_services.gold_balance_ledger import GoldBalanceLedger
from goldpos_services.gold_operations import GoldOperations
from goldpos_services.ownership_tracker import OwnershipTracker

__all__ = [
    "AlertGenerator",
    "ConsolidationService",
    "CostSourceLedger",
    "CostingService",
    "GoldBalanceLedger",
    "GoldOperations",
    "OwnershipTracker",
]
