"""
Module: goldpos_engines.alerts
Responsibility:
    Classify one ownership row into zero, one or two alerts:
    LowOwnership when the owned share is below the threshold, and
    OutstandingPayment when money is still owed on it.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  AlertGenerator supplies the
    rows, the thresholds (from EngineSettings) and the timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from goldpos_kernel.db.types import ZERO, round_money
from goldpos_kernel.domain.dtos import (
    AlertSeverity,
    AlertType,
    OwnershipAlert,
    OwnershipRecord,
)


@dataclass(frozen=True, slots=True)
class AlertThresholds:
    low_ownership_threshold: Decimal = Decimal("50")
    high_severity_ownership_below: Decimal = Decimal("25")
    high_severity_outstanding_above: Decimal = Decimal("10000")


def classify(
    record: OwnershipRecord,
    thresholds: AlertThresholds,
    created_at: datetime | None = None,
) -> list[OwnershipAlert]:
    alerts: list[OwnershipAlert] = []
    percentage = record.ownership_percentage
    outstanding = record.outstanding_amount

    if percentage < thresholds.low_ownership_threshold:
        severity = (
            AlertSeverity.HIGH
            if percentage < thresholds.high_severity_ownership_below
            else AlertSeverity.MEDIUM
        )
        alerts.append(OwnershipAlert(
            alert_type=AlertType.LOW_OWNERSHIP,
            severity=severity,
            ownership_id=record.ownership_id,
            product_id=record.product_id,
            branch_id=record.branch_id,
            supplier_id=record.supplier_id,
            ownership_percentage=percentage,
            outstanding_amount=outstanding,
            message=(
                f"Product {record.product_id} is only {percentage}% owned "
                f"(threshold {thresholds.low_ownership_threshold}%)"
            ),
            created_at=created_at,
        ))

    if outstanding > ZERO:
        severity = (
            AlertSeverity.HIGH
            if outstanding > thresholds.high_severity_outstanding_above
            else AlertSeverity.MEDIUM
        )
        alerts.append(OwnershipAlert(
            alert_type=AlertType.OUTSTANDING_PAYMENT,
            severity=severity,
            ownership_id=record.ownership_id,
            product_id=record.product_id,
            branch_id=record.branch_id,
            supplier_id=record.supplier_id,
            ownership_percentage=percentage,
            outstanding_amount=outstanding,
            message=(
                f"{round_money(outstanding)} outstanding to supplier "
                f"{record.supplier_id or 'unknown'} for product {record.product_id}"
            ),
            created_at=created_at,
        ))

    return alerts
