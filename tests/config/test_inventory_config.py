"""
Tests for inventory_config: YAML loading, validation and the config trace.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from inventory_config import default_config, get_active_config
from inventory_config.loader import compute_checksum, parse_config
from inventory_kernel.domain.values import CostingMethod, DocumentType


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "inventory.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultSet:

    def test_loads_shipped_defaults(self):
        config = get_active_config()

        assert config.config_id == "inventory-default"
        assert config.costing.default_method == CostingMethod.WEIGHTED_AVERAGE
        assert config.numbering.prefix_for(DocumentType.STOCK_RECEIPT) == "PN"
        assert config.numbering.prefix_for(DocumentType.STOCK_ADJUSTMENT) == "DC"
        assert config.cache.lookup_ttl_seconds == 300.0
        assert config.reports.turnover_fast_threshold == Decimal("12")
        assert len(config.checksum) == 64

    def test_builtin_matches_shipped_values(self):
        shipped = get_active_config()
        builtin = default_config()

        assert builtin.numbering == shipped.numbering
        assert builtin.costing == shipped.costing
        assert builtin.reports == shipped.reports

    def test_config_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "INVENTORY_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["source"].endswith("default.yaml")


class TestOverrides:

    def test_custom_file(self, tmp_path):
        path = _write(tmp_path, {
            "config_id": "branch-7",
            "costing": {"default_method": "fifo", "fallback_to_purchase_price": False},
            "numbering": {"format": "{Prefix}-{WH}-{No:00000}", "prefixes": {"stock_issue": "OUT"}},
        })

        config = get_active_config(path)

        assert config.config_id == "branch-7"
        assert config.costing.default_method == CostingMethod.FIFO
        assert config.costing.fallback_to_purchase_price is False
        assert config.numbering.prefix_for(DocumentType.STOCK_ISSUE) == "OUT"
        # Unlisted types keep the shipped prefix
        assert config.numbering.prefix_for(DocumentType.STOCK_RECEIPT) == "PN"

    def test_missing_sections_fall_back_to_defaults(self):
        config = parse_config({})
        assert config.numbering == default_config().numbering
        assert config.notifications.enabled is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestValidation:

    @pytest.mark.parametrize("data,fragment", [
        ({"costing": {"default_method": "lifo"}}, "costing.default_method"),
        ({"numbering": {"format": "{Prefix}-{yyyy}"}}, "{No}"),
        ({"numbering": {"prefixes": {"purchase_order": "PO"}}}, "unknown document type"),
        ({"numbering": {"max_retries": 0}}, "max_retries"),
        ({"cache": {"lookup_ttl_seconds": 0}}, "lookup_ttl_seconds"),
        ({"reports": {"turnover_fast_threshold": 2, "turnover_medium_threshold": 4}}, "thresholds"),
        ({"reports": {"turnover_fast_threshold": "fast"}}, "cannot parse decimal"),
    ])
    def test_rejected(self, data, fragment):
        with pytest.raises(ValueError) as exc_info:
            parse_config(data)
        assert fragment in str(exc_info.value)
