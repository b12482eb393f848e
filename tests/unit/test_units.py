"""Tests for unit-of-measure conversion (inventory_kernel/domain/units.py)."""

from decimal import Decimal

import pytest

from inventory_kernel.domain.entities import AlternateUnit, Product
from inventory_kernel.domain.units import (
    convert_from_base,
    convert_to_base,
    resolve_conversion_factor,
)


@pytest.fixture
def soda() -> Product:
    return Product(
        id="p-soda",
        name="Soda",
        base_unit="can",
        alternate_units=(
            AlternateUnit("box", Decimal("12")),
            AlternateUnit("half-box", Decimal("6")),
        ),
    )


class TestConversion:
    def test_base_unit_is_identity(self, soda):
        assert resolve_conversion_factor(soda, "can") == Decimal("1")
        assert convert_to_base(soda, Decimal("7"), "can") == Decimal("7")

    def test_alternate_unit_multiplies(self, soda):
        assert convert_to_base(soda, Decimal("2"), "box") == Decimal("24")
        assert convert_to_base(soda, Decimal("1.5"), "half-box") == Decimal("9")

    def test_unknown_unit_returns_none(self, soda):
        assert resolve_conversion_factor(soda, "pallet") is None
        assert convert_to_base(soda, Decimal("1"), "pallet") is None
        assert convert_from_base(soda, Decimal("1"), "pallet") is None

    def test_unit_names_are_case_sensitive(self, soda):
        assert convert_to_base(soda, Decimal("1"), "Box") is None

    def test_from_base_divides(self, soda):
        assert convert_from_base(soda, Decimal("36"), "box") == Decimal("3")
