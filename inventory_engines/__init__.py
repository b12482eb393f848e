"""
inventory_engines -- pure calculation layer, zero I/O.

FIFO allocation planning and batch expiry aggregation. Engines import
only from inventory_kernel; the services that fetch and persist batches
live in inventory_services.
"""

from inventory_engines.expiry import (
    BatchAgeInfo,
    BatchSummary,
    batch_age_info,
    summarize_batches,
)
from inventory_engines.fifo import (
    UNKNOWN_UNIT_FALLBACK,
    UNKNOWN_UNIT_REJECT,
    BatchAllocation,
    apply_allocations,
    convert_to_base_quantity,
    plan_line_deduction,
    sort_fifo,
)

__all__ = [
    "BatchAgeInfo",
    "BatchAllocation",
    "BatchSummary",
    "UNKNOWN_UNIT_FALLBACK",
    "UNKNOWN_UNIT_REJECT",
    "apply_allocations",
    "batch_age_info",
    "convert_to_base_quantity",
    "plan_line_deduction",
    "sort_fifo",
    "summarize_batches",
]
