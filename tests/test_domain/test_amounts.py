"""Tests for minimal-unit conversion and deposit tolerance math."""

from __future__ import annotations

from decimal import Decimal

import pytest

from phasion_escrow.domain.amounts import (
    from_minimal_units,
    quantize,
    relative_deviation,
    to_minimal_units,
)
from phasion_escrow.domain.enums import AssetClass


class TestToMinimalUnits:
    def test_native_scale(self) -> None:
        assert to_minimal_units(Decimal("1.5"), AssetClass.NATIVE) == 1_500_000_000

    def test_token_scale(self) -> None:
        assert to_minimal_units(Decimal("10.00"), AssetClass.TOKEN) == 10_000_000

    def test_truncates_never_rounds_up(self) -> None:
        assert to_minimal_units(Decimal("2.9999999"), AssetClass.TOKEN) == 2_999_999

    def test_below_one_unit_is_zero(self) -> None:
        assert to_minimal_units(Decimal("0.0000001"), AssetClass.TOKEN) == 0


class TestFromMinimalUnits:
    def test_exact(self) -> None:
        assert from_minimal_units(1, AssetClass.NATIVE) == Decimal("0.000000001")
        assert from_minimal_units(99_400_000, AssetClass.TOKEN) == Decimal("99.4")


class TestQuantize:
    def test_drops_excess_precision(self) -> None:
        assert quantize(Decimal("1.23456789"), AssetClass.TOKEN) == Decimal("1.234567")


class TestRelativeDeviation:
    def test_within_one_percent(self) -> None:
        assert relative_deviation(Decimal("99.4"), Decimal("100")) == Decimal("0.006")

    def test_half_short(self) -> None:
        assert relative_deviation(Decimal("50"), Decimal("100")) == Decimal("0.5")

    def test_over_delivery_counts_too(self) -> None:
        assert relative_deviation(Decimal("102"), Decimal("100")) == Decimal("0.02")

    def test_rejects_non_positive_quote(self) -> None:
        with pytest.raises(ValueError):
            relative_deviation(Decimal("1"), Decimal("0"))
