"""
Unit-of-measure conversion against a product's unit table.

Stock is always tracked in the product's base unit. An alternate unit
converts as ``quantity * conversion_factor``; the base unit converts 1:1.
"""

from __future__ import annotations

from decimal import Decimal

from inventory_kernel.domain.entities import Product


def resolve_conversion_factor(product: Product, unit: str) -> Decimal | None:
    """Base units per one ``unit``, or None when the product does not know it."""
    if unit == product.base_unit:
        return Decimal("1")
    alternate = product.find_unit(unit)
    if alternate is None:
        return None
    return alternate.conversion_factor


def convert_to_base(product: Product, quantity: Decimal, unit: str) -> Decimal | None:
    """Convert ``quantity`` of ``unit`` into base units; None for an unknown unit."""
    factor = resolve_conversion_factor(product, unit)
    if factor is None:
        return None
    return quantity * factor


def convert_from_base(product: Product, base_quantity: Decimal, unit: str) -> Decimal | None:
    """Express a base-unit quantity in ``unit``; None for an unknown unit."""
    factor = resolve_conversion_factor(product, unit)
    if factor is None:
        return None
    return base_quantity / factor
