"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses each section into the frozen
``inventory_config.schema`` dataclasses.  Build/test tooling only -- the
single runtime entry point is ``inventory_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown costing methods, unknown document types, negative thresholds and
  malformed number formats raise ``ValueError``; nothing is silently
  defaulted once a key is present.
* ``compute_checksum`` is a deterministic SHA-256 over the raw mapping.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

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
from inventory_kernel.domain.values import CostingMethod, DocumentType

_NO_TOKEN = re.compile(r"\{No(?::(0+))?\}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name}: cannot parse decimal from {value!r}") from exc


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_costing(data: dict[str, Any]) -> CostingSettings:
    raw = data.get("default_method", CostingMethod.WEIGHTED_AVERAGE.value)
    try:
        method = CostingMethod(raw)
    except ValueError as exc:
        raise ValueError(f"costing.default_method: unknown method {raw!r}") from exc
    return CostingSettings(
        default_method=method,
        fallback_to_purchase_price=bool(data.get("fallback_to_purchase_price", True)),
    )


def parse_numbering(data: dict[str, Any]) -> NumberingSettings:
    defaults = NumberingSettings()
    fmt = str(data.get("format", defaults.format))
    if not _NO_TOKEN.search(fmt):
        raise ValueError(f"numbering.format: {fmt!r} has no {{No}} token")

    prefixes = dict(defaults.prefixes)
    for key, prefix in (data.get("prefixes") or {}).items():
        try:
            prefixes[DocumentType(key)] = str(prefix)
        except ValueError as exc:
            raise ValueError(f"numbering.prefixes: unknown document type {key!r}") from exc

    max_retries = int(data.get("max_retries", defaults.max_retries))
    if max_retries < 1:
        raise ValueError(f"numbering.max_retries must be >= 1, got {max_retries}")

    return NumberingSettings(
        format=fmt,
        prefixes=prefixes,
        default_prefix=str(data.get("default_prefix", defaults.default_prefix)),
        max_retries=max_retries,
    )


def parse_cache(data: dict[str, Any]) -> CacheSettings:
    ttl = float(data.get("lookup_ttl_seconds", CacheSettings().lookup_ttl_seconds))
    if ttl <= 0:
        raise ValueError(f"cache.lookup_ttl_seconds must be positive, got {ttl}")
    return CacheSettings(lookup_ttl_seconds=ttl)


def parse_reports(data: dict[str, Any]) -> ReportSettings:
    defaults = ReportSettings()
    fast = parse_decimal(
        data.get("turnover_fast_threshold", defaults.turnover_fast_threshold),
        "reports.turnover_fast_threshold",
    )
    medium = parse_decimal(
        data.get("turnover_medium_threshold", defaults.turnover_medium_threshold),
        "reports.turnover_medium_threshold",
    )
    if medium < 0 or fast < medium:
        raise ValueError(
            f"reports: need 0 <= medium ({medium}) <= fast ({fast}) turnover thresholds"
        )
    return ReportSettings(turnover_fast_threshold=fast, turnover_medium_threshold=medium)


def parse_notifications(data: dict[str, Any]) -> NotificationSettings:
    return NotificationSettings(
        enabled=bool(data.get("enabled", True)),
        in_app=bool(data.get("in_app", True)),
    )


def parse_lots(data: dict[str, Any]) -> LotSettings:
    days = int(data.get("expiry_warning_days", LotSettings().expiry_warning_days))
    if days < 0:
        raise ValueError(f"lots.expiry_warning_days must be >= 0, got {days}")
    return LotSettings(expiry_warning_days=days)


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """Parse a whole configuration mapping."""
    return InventoryConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        database=parse_database(data.get("database") or {}),
        costing=parse_costing(data.get("costing") or {}),
        numbering=parse_numbering(data.get("numbering") or {}),
        cache=parse_cache(data.get("cache") or {}),
        reports=parse_reports(data.get("reports") or {}),
        notifications=parse_notifications(data.get("notifications") or {}),
        lots=parse_lots(data.get("lots") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
