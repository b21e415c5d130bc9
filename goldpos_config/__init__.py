"""
goldpos_config -- single public entrypoint for engine settings.

Responsibility:
    ``get_active_settings()`` is the only way to obtain configuration at
    runtime.  It loads the packaged ``defaults.yaml``, overlays an optional
    override document, and returns a frozen ``EngineSettings``.

Architecture position:
    Configuration.  Sits above ``goldpos_kernel`` and below
    ``goldpos_services``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- override path does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every call emits a ``GOLDPOS_CONFIG_TRACE`` log record carrying the
    settings version, checksum and source path.
"""

from __future__ import annotations

import os
from pathlib import Path

from goldpos_config.loader import load_yaml_file, merge_documents, parse_settings
from goldpos_config.schema import (
    ConcurrencySettings,
    CostingSettings,
    EngineSettings,
    OwnershipSettings,
    TransferSettings,
)
from goldpos_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "GOLDPOS_CONFIG"


def get_active_settings(config_path: Path | str | None = None) -> EngineSettings:
    """
    Load the active engine settings.

    Args:
        config_path: Override document.  Defaults to the path in the
            ``GOLDPOS_CONFIG`` environment variable, if set.

    Returns:
        EngineSettings built from defaults.yaml overlaid with the override.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override = config_path or os.environ.get(CONFIG_ENV_VAR)
    if override:
        data = merge_documents(data, load_yaml_file(Path(override)))

    settings = parse_settings(data)
    _logger.info(
        "GOLDPOS_CONFIG_TRACE",
        extra={
            "settings_version": settings.version,
            "checksum": settings.checksum,
            "source": str(override) if override else str(DEFAULTS_PATH),
        },
    )
    return settings


__all__ = [
    "get_active_settings",
    "EngineSettings",
    "OwnershipSettings",
    "CostingSettings",
    "ConcurrencySettings",
    "TransferSettings",
]
