"""
goldpos_services.alert_generator -- Low-ownership and outstanding-payment alerts.

Read-only scan over active ownership rows that still carry stock.  Each
row is classified by goldpos_engines.alerts.classify with the thresholds
from OwnershipSettings.  A failure on one row is logged as
``alert_scan_row_failed`` and the scan carries on.
"""

from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy.orm import Session

from goldpos_config.schema import OwnershipSettings
from goldpos_engines.alerts import AlertThresholds, classify
from goldpos_kernel.domain.clock import Clock, SystemClock
from goldpos_kernel.domain.dtos import OwnershipAlert
from goldpos_kernel.exceptions import GoldPosError
from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.selectors.ownership_selector import OwnershipSelector

logger = get_logger("services.alerts")


class AlertGenerator:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: OwnershipSettings | None = None,
    ):
        self._selector = OwnershipSelector(session)
        self._clock = clock or SystemClock()
        settings = settings or OwnershipSettings()
        self._thresholds = AlertThresholds(
            low_ownership_threshold=settings.low_ownership_threshold,
            high_severity_ownership_below=settings.high_severity_ownership_below,
            high_severity_outstanding_above=settings.high_severity_outstanding_above,
        )

    def iter_alerts(self, branch_id: str | None = None) -> Iterator[OwnershipAlert]:
        """Alert feed: yields alerts row by row, newest rows first."""
        created_at = self._clock.now()
        for row in self._selector.active_rows(branch_id):
            try:
                alerts = classify(row.to_dto(), self._thresholds, created_at)
            except (GoldPosError, ArithmeticError, ValueError) as exc:
                logger.error("alert_scan_row_failed", extra={
                    "ownership_id": str(row.id),
                    "product_id": row.product_id,
                    "error": str(exc),
                }, exc_info=True)
                continue
            yield from alerts

    def scan(self, branch_id: str | None = None) -> list[OwnershipAlert]:
        alerts = list(self.iter_alerts(branch_id))
        logger.info("alert_scan_completed", extra={
            "branch_id": branch_id,
            "alert_count": len(alerts),
        })
        return alerts
