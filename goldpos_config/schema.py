"""
EngineSettings schema.

Frozen dataclasses that the YAML settings document is parsed into.  Every
runtime tunable of the engine lives here; services receive an
``EngineSettings`` instance by constructor injection and never read files
or environment variables themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from goldpos_kernel.domain.dtos import CostMethod


@dataclass(frozen=True)
class OwnershipSettings:
    """Ownership warning and alert thresholds."""

    # Percentages are 0-100
    low_ownership_threshold: Decimal = Decimal("50")
    high_severity_ownership_below: Decimal = Decimal("25")
    high_severity_outstanding_above: Decimal = Decimal("10000")

    def __post_init__(self) -> None:
        for name in ("low_ownership_threshold", "high_severity_ownership_below"):
            value = getattr(self, name)
            if not Decimal("0") <= value <= Decimal("100"):
                raise ValueError(f"ownership.{name} must be within 0..100, got {value}")
        if self.high_severity_ownership_below > self.low_ownership_threshold:
            raise ValueError(
                "ownership.high_severity_ownership_below cannot exceed "
                "ownership.low_ownership_threshold"
            )
        if self.high_severity_outstanding_above < 0:
            raise ValueError("ownership.high_severity_outstanding_above must be >= 0")


@dataclass(frozen=True)
class CostingSettings:
    contribution_tolerance: Decimal = Decimal("0.01")
    recommended_method: CostMethod = CostMethod.WEIGHTED_AVERAGE

    def __post_init__(self) -> None:
        if self.contribution_tolerance < 0:
            raise ValueError("costing.contribution_tolerance must be >= 0")


@dataclass(frozen=True)
class ConcurrencySettings:
    """Keyed lock and conflict retry tuning."""

    lock_timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError("concurrency.lock_timeout_seconds must be > 0")
        if self.max_attempts < 1:
            raise ValueError("concurrency.max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("concurrency.backoff_seconds must be >= 0")


@dataclass(frozen=True)
class TransferSettings:
    number_prefix: str = "RGT"

    def __post_init__(self) -> None:
        if not self.number_prefix or not self.number_prefix.isalnum():
            raise ValueError("transfers.number_prefix must be non-empty alphanumeric")


@dataclass(frozen=True)
class EngineSettings:
    """Complete engine configuration, the sole runtime config artifact."""

    ownership: OwnershipSettings = field(default_factory=OwnershipSettings)
    costing: CostingSettings = field(default_factory=CostingSettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    transfers: TransferSettings = field(default_factory=TransferSettings)
    version: int = 1
    checksum: str = ""
