"""
inventory_engines.fifo -- FIFO allocation planning over inventory batches.

Responsibility:
    Decide, without touching any store, how much of each batch a line item
    consumes: convert the requested quantity into base units, order the
    product's active batches oldest-received first, and walk them taking
    ``min(remaining_needed, batch.quantity)`` until the demand is met.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel (domain entities, exceptions, logging).
    The stateful FIFODeductionEngine that reads and writes batches lives in
    inventory_services/deduction_service.py.

Invariants enforced:
    - FIFO order: batches are consumed in ascending ``received_at`` order.
      The sort is stable and has no tie-breaker; batch id or insertion
      order never decides precedence.
    - Conservation: the allocations of a successful plan sum exactly to the
      requested base quantity, and each ``remaining_after`` equals
      ``quantity_before - quantity_deducted``.
    - No partial plans: an unsatisfiable line raises before any allocation
      is returned.

Failure modes:
    - InvalidQuantityError if the converted base quantity is <= 0.
    - UnknownUnitOfMeasureError if the unit is unknown and the policy is
      ``reject``.
    - InsufficientStockError naming the product, the amount needed and the
      total available across active batches.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from inventory_kernel.domain.entities import InventoryBatch, Product, SaleLineItem
from inventory_kernel.domain.units import convert_to_base
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    UnknownUnitOfMeasureError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")

UNKNOWN_UNIT_FALLBACK = "fallback"
UNKNOWN_UNIT_REJECT = "reject"


@dataclass(frozen=True, slots=True)
class BatchAllocation:
    """
    Planned consumption of one batch by one line item.

    ``quantity_before`` is the batch quantity the plan was computed
    against; the commit phase sends it as the expected quantity so a
    concurrent writer is detected instead of overwritten.
    """

    batch: InventoryBatch
    quantity_deducted: Decimal
    quantity_before: Decimal

    @property
    def remaining_after(self) -> Decimal:
        return self.quantity_before - self.quantity_deducted

    @property
    def batch_id(self) -> str:
        return self.batch.id

    @property
    def product_id(self) -> str:
        return self.batch.product_id


def convert_to_base_quantity(
    product: Product,
    line_item: SaleLineItem,
    unknown_unit_policy: str = UNKNOWN_UNIT_FALLBACK,
) -> Decimal:
    """
    Convert a line item's quantity into the product's base unit.

    Args:
        product: Product carrying the base unit and alternate unit table.
        line_item: The requested quantity and unit.
        unknown_unit_policy: ``fallback`` deducts the raw quantity when the
            unit is unknown (logged as a warning); ``reject`` raises.

    Returns:
        Quantity in base units, always > 0.

    Raises:
        UnknownUnitOfMeasureError: Unknown unit under the ``reject`` policy.
        InvalidQuantityError: Converted quantity is zero or negative.
    """
    base_quantity = convert_to_base(product, line_item.quantity, line_item.unit)

    if base_quantity is None:
        if unknown_unit_policy == UNKNOWN_UNIT_REJECT:
            logger.warning("fifo_unknown_unit_rejected", extra={
                "product_id": product.id,
                "unit": line_item.unit,
                "base_unit": product.base_unit,
            })
            raise UnknownUnitOfMeasureError(product.id, line_item.unit)
        logger.warning("fifo_unknown_unit_fallback", extra={
            "product_id": product.id,
            "unit": line_item.unit,
            "base_unit": product.base_unit,
            "quantity": str(line_item.quantity),
        })
        base_quantity = line_item.quantity

    if base_quantity <= 0:
        raise InvalidQuantityError(product.id, base_quantity)

    return base_quantity


def sort_fifo(batches: Iterable[InventoryBatch]) -> list[InventoryBatch]:
    """Oldest received first. Stable: equal timestamps keep input order."""
    return sorted(batches, key=lambda b: b.received_at)


def active_batches(batches: Iterable[InventoryBatch]) -> list[InventoryBatch]:
    return [b for b in batches if b.is_active]


def available_quantity(batches: Iterable[InventoryBatch]) -> Decimal:
    return sum((b.quantity for b in batches if b.is_active), Decimal("0"))


def plan_line_deduction(
    product: Product,
    batches: Sequence[InventoryBatch],
    needed: Decimal,
) -> list[BatchAllocation]:
    """
    Plan the FIFO consumption of ``needed`` base units from ``batches``.

    Inactive batches are ignored. Batches whose allocation would be zero
    produce no allocation.

    Returns:
        Allocations in FIFO order summing exactly to ``needed``.

    Raises:
        InvalidQuantityError: ``needed`` <= 0.
        InsufficientStockError: Active batches hold less than ``needed``.
    """
    if needed <= 0:
        raise InvalidQuantityError(product.id, needed)

    candidates = sort_fifo(active_batches(batches))
    total_available = sum((b.quantity for b in candidates), Decimal("0"))

    if total_available < needed:
        logger.warning("fifo_insufficient_stock", extra={
            "product_id": product.id,
            "needed": str(needed),
            "available": str(total_available),
            "batch_count": len(candidates),
        })
        raise InsufficientStockError(
            product_id=product.id,
            needed=needed,
            available=total_available,
            product_name=product.name,
        )

    allocations: list[BatchAllocation] = []
    remaining = needed

    for batch in candidates:
        if remaining <= 0:
            break

        take = min(remaining, batch.quantity)
        if take <= 0:
            continue

        allocations.append(
            BatchAllocation(batch=batch, quantity_deducted=take, quantity_before=batch.quantity)
        )
        remaining -= take

        logger.debug("fifo_batch_allocated", extra={
            "batch_id": batch.id,
            "product_id": product.id,
            "quantity_deducted": str(take),
            "remaining_needed": str(remaining),
        })

    return allocations


def apply_allocations(
    batches: Sequence[InventoryBatch],
    allocations: Sequence[BatchAllocation],
) -> list[InventoryBatch]:
    """
    Return ``batches`` with the planned quantities subtracted.

    Used to plan a later line item for the same product against what the
    earlier lines of the same sale left behind.
    """
    deducted: dict[str, Decimal] = {}
    for allocation in allocations:
        deducted[allocation.batch_id] = (
            deducted.get(allocation.batch_id, Decimal("0")) + allocation.quantity_deducted
        )
    return [
        b.with_quantity(b.quantity - deducted[b.id]) if b.id in deducted else b
        for b in batches
    ]
