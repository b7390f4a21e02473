"""Human-unit <-> minimal-unit conversion and deposit tolerance math.

Amounts travel through the system as `Decimal` human units ("1.5").
Conversion to the ledger's integer minimal units always floors, so a
transfer can never move more than the order is worth.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from phasion_escrow.domain.enums import AssetClass


def to_minimal_units(amount: Decimal, asset: AssetClass) -> int:
    """Convert a human amount to integer minimal units, truncating.

    >>> to_minimal_units(Decimal("1.5"), AssetClass.NATIVE)
    1500000000
    >>> to_minimal_units(Decimal("2.999999995"), AssetClass.TOKEN)
    2999999
    """
    scaled = Decimal(amount).scaleb(asset.decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_minimal_units(units: int, asset: AssetClass) -> Decimal:
    """Convert integer minimal units back to an exact human amount."""
    return Decimal(units).scaleb(-asset.decimals)


def quantize(amount: Decimal, asset: AssetClass) -> Decimal:
    """Truncate a human amount to the asset's precision."""
    return from_minimal_units(to_minimal_units(amount, asset), asset)


def relative_deviation(received: Decimal, quoted: Decimal) -> Decimal:
    """Return |received - quoted| / quoted."""
    if quoted <= 0:
        raise ValueError("quoted amount must be positive")
    return abs(received - quoted) / quoted
