"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  It reads a YAML configuration set, parses it into a frozen
    ``InventoryConfig`` and logs an ``INVENTORY_CONFIG_TRACE`` record.

Architecture position:
    Configuration -- sits beside ``inventory_kernel`` and below
    ``inventory_services``.  The kernel never imports from here; services
    receive the parsed dataclasses through their constructors.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- a value failed validation.
"""

from __future__ import annotations

from pathlib import Path

from inventory_config.loader import load_yaml_file, parse_config
from inventory_config.schema import (
    CacheSettings,
    CostingSettings,
    DatabaseSettings,
    InventoryConfig,
    LotSettings,
    NotificationSettings,
    NumberingSettings,
    ReportSettings,
)
from inventory_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> InventoryConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to inventory_config/sets/default.yaml.

    Returns:
        InventoryConfig -- frozen, validated.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


def default_config() -> InventoryConfig:
    """Built-in defaults without reading any file (same values as default.yaml)."""
    return InventoryConfig(
        config_id="builtin",
        version=1,
        database=DatabaseSettings(),
        costing=CostingSettings(),
        numbering=NumberingSettings(),
        cache=CacheSettings(),
        reports=ReportSettings(),
        notifications=NotificationSettings(),
        lots=LotSettings(),
    )


__all__ = [
    "get_active_config",
    "default_config",
    "InventoryConfig",
    "DatabaseSettings",
    "CostingSettings",
    "NumberingSettings",
    "CacheSettings",
    "ReportSettings",
    "NotificationSettings",
    "LotSettings",
]
