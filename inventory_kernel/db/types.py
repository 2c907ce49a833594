"""
Module: inventory_kernel.db.types
Responsibility: Annotated column aliases and the sanctioned rounding helper
    for money.
Architecture position: Kernel > DB.  Importable from every kernel layer and
    from inventory_engines.

Invariants enforced:
    - No floats.  Quantities and amounts are Decimal end to end.
    - round_money() is the ONLY rounding applied to monetary outputs:
      2 decimal places, ROUND_HALF_EVEN (banker's rounding).
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Annotated

from sqlalchemy import Numeric

# Stored at full precision; rounding happens at the output boundary.
Money = Annotated[Decimal, Numeric(38, 9)]

# Lot and stock quantities
Quantity = Annotated[Decimal, Numeric(38, 9)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_EVEN


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount for storage or display (half to even)."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(amount).quantize(quantum, rounding=DEFAULT_ROUNDING)
