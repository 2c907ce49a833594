"""
Inventory Kernel

Lot-level stock core for a multi-warehouse back office:
- Lot ledger as the single write path for on-hand quantities
- Additive daily balance ledger
- Row-locked posting with all-or-nothing validation
- Typed errors and structured JSON logging
"""

__version__ = "0.1.0"
