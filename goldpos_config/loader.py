"""
Settings Loader (``goldpos_config.loader``).

Responsibility
--------------
Loads YAML settings documents and parses them into the frozen
``goldpos_config.schema`` dataclasses.  The single runtime entry point is
``goldpos_config.get_active_settings()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo in an override
  file never silently falls back to a default.
* Decimal settings are parsed from strings (or ints) with ``Decimal``;
  float literals are rejected.
* ``compute_checksum`` gives a deterministic identity for a settings
  document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from goldpos_config.schema import (
    ConcurrencySettings,
    CostingSettings,
    EngineSettings,
    OwnershipSettings,
    TransferSettings,
)
from goldpos_kernel.domain.dtos import CostMethod

_SECTIONS = {
    "ownership": {
        "low_ownership_threshold",
        "high_severity_ownership_below",
        "high_severity_outstanding_above",
    },
    "costing": {"contribution_tolerance", "recommended_method"},
    "concurrency": {"lock_timeout_seconds", "max_attempts", "backoff_seconds"},
    "transfers": {"number_prefix"},
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings document {path} must be a mapping")
    return data


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a Decimal setting from a string or int (never a float)."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{name} must be quoted or integral, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a decimal: {value!r}") from exc


def merge_documents(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Section-wise merge: keys in ``override`` replace keys in ``base``."""
    merged: dict[str, Any] = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _check_keys(data: dict[str, Any]) -> None:
    unknown_sections = set(data) - set(_SECTIONS) - {"version"}
    if unknown_sections:
        raise ValueError(f"Unknown settings sections: {sorted(unknown_sections)}")
    for section, allowed in _SECTIONS.items():
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Settings section '{section}' must be a mapping")
        unknown = set(values) - allowed
        if unknown:
            raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse an ``EngineSettings`` from a settings document.

    Missing sections or keys take the schema defaults.
    """
    _check_keys(data)

    ownership = data.get("ownership") or {}
    costing = data.get("costing") or {}
    concurrency = data.get("concurrency") or {}
    transfers = data.get("transfers") or {}

    defaults = EngineSettings()

    try:
        method = CostMethod(costing.get("recommended_method", defaults.costing.recommended_method.value))
    except ValueError as exc:
        raise ValueError(f"costing.recommended_method: {exc}") from exc

    return EngineSettings(
        ownership=OwnershipSettings(
            low_ownership_threshold=parse_decimal(
                ownership.get("low_ownership_threshold", defaults.ownership.low_ownership_threshold),
                "ownership.low_ownership_threshold",
            ),
            high_severity_ownership_below=parse_decimal(
                ownership.get(
                    "high_severity_ownership_below",
                    defaults.ownership.high_severity_ownership_below,
                ),
                "ownership.high_severity_ownership_below",
            ),
            high_severity_outstanding_above=parse_decimal(
                ownership.get(
                    "high_severity_outstanding_above",
                    defaults.ownership.high_severity_outstanding_above,
                ),
                "ownership.high_severity_outstanding_above",
            ),
        ),
        costing=CostingSettings(
            contribution_tolerance=parse_decimal(
                costing.get("contribution_tolerance", defaults.costing.contribution_tolerance),
                "costing.contribution_tolerance",
            ),
            recommended_method=method,
        ),
        concurrency=ConcurrencySettings(
            lock_timeout_seconds=float(
                concurrency.get("lock_timeout_seconds", defaults.concurrency.lock_timeout_seconds)
            ),
            max_attempts=int(concurrency.get("max_attempts", defaults.concurrency.max_attempts)),
            backoff_seconds=float(
                concurrency.get("backoff_seconds", defaults.concurrency.backoff_seconds)
            ),
        ),
        transfers=TransferSettings(
            number_prefix=str(transfers.get("number_prefix", defaults.transfers.number_prefix)),
        ),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
