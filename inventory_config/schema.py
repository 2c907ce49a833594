"""
InventoryConfig schema.

Frozen dataclasses that the YAML configuration is parsed into.  Runtime
code only ever sees these types, obtained through
``inventory_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from inventory_kernel.domain.values import CostingMethod, DocumentType


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class CostingSettings:
    """How unit costs are derived when a material does not say."""

    default_method: CostingMethod = CostingMethod.WEIGHTED_AVERAGE
    fallback_to_purchase_price: bool = True


@dataclass(frozen=True)
class NumberingSettings:
    """Document number prefixes and format.

    ``format`` tokens: {Prefix} {yyyy} {yy} {MM} {dd} {yyMM} {yyMMdd}
    {WH} {WHID} {No} / {No:0000}.
    """

    format: str = "{Prefix}{yyMMdd}-{No:0000}"
    prefixes: dict[DocumentType, str] = field(default_factory=lambda: {
        DocumentType.STOCK_RECEIPT: "PN",
        DocumentType.STOCK_ISSUE: "PX",
        DocumentType.STOCK_TRANSFER: "CK",
        DocumentType.STOCK_ADJUSTMENT: "DC",
    })
    default_prefix: str = "CT"
    max_retries: int = 3

    def prefix_for(self, document_type: DocumentType) -> str:
        return self.prefixes.get(document_type, self.default_prefix)


@dataclass(frozen=True)
class CacheSettings:
    lookup_ttl_seconds: float = 300.0


@dataclass(frozen=True)
class ReportSettings:
    """Turnover classification: rate > fast is FAST, rate >= medium is MEDIUM."""

    turnover_fast_threshold: Decimal = Decimal("12")
    turnover_medium_threshold: Decimal = Decimal("4")


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool = True
    in_app: bool = True


@dataclass(frozen=True)
class LotSettings:
    """Lots expiring within ``expiry_warning_days`` of today are flagged."""

    expiry_warning_days: int = 30


@dataclass(frozen=True)
class InventoryConfig:
    """The sole runtime configuration artifact."""

    config_id: str
    version: int
    database: DatabaseSettings
    costing: CostingSettings
    numbering: NumberingSettings
    cache: CacheSettings
    reports: ReportSettings
    notifications: NotificationSettings
    lots: LotSettings = field(default_factory=LotSettings)
    checksum: str = ""
