"""
inventory_engines.expiry -- Batch age and expiry aggregation.

Responsibility:
    Classify a product's batches relative to an ``as_of`` instant and roll
    them up into a summary: remaining stock, active/expired/expiring-soon
    counts, received date range and average batch age.

Architecture position:
    Engines -- pure calculation layer, zero I/O. The caller supplies
    ``as_of``; nothing here reads a clock.

Day arithmetic:
    Day counts round up: a batch expiring 1 hour from now has 1 day until
    expiry, one that expired 1 hour ago has 0. A batch is expired when its
    days-until-expiry is negative and expiring soon when it is between 0
    and ``expiring_within_days`` inclusive. Batch age is the ceiling of
    days since receipt; the average is rounded half up to whole days and
    is 0 when there are no active batches.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from inventory_kernel.domain.entities import InventoryBatch

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True, slots=True)
class BatchAgeInfo:
    batch_id: str
    batch_number: str
    quantity: Decimal
    received_at: datetime
    expires_at: datetime | None
    age_days: int
    days_until_expiry: int | None
    is_expired: bool
    is_expiring_soon: bool


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Snapshot of one product's active batches at ``as_of``."""

    product_id: str
    as_of: datetime
    total_stock: Decimal
    active_batches: int
    expired_batches: int
    expiring_batches: int
    oldest_received_at: datetime | None
    newest_received_at: datetime | None
    average_batch_age_days: int


def _ceil_days(delta_seconds: float) -> int:
    return math.ceil(delta_seconds / _SECONDS_PER_DAY)


def days_until(moment: datetime, as_of: datetime) -> int:
    return _ceil_days((moment - as_of).total_seconds())


def days_since(moment: datetime, as_of: datetime) -> int:
    return _ceil_days((as_of - moment).total_seconds())


def batch_age_info(
    batch: InventoryBatch,
    as_of: datetime,
    expiring_within_days: int = 30,
) -> BatchAgeInfo:
    """Age and expiry classification of one batch at ``as_of``."""
    remaining_days = days_until(batch.expires_at, as_of) if batch.expires_at else None
    is_expired = remaining_days is not None and remaining_days < 0
    is_expiring_soon = (
        remaining_days is not None and 0 <= remaining_days <= expiring_within_days
    )
    return BatchAgeInfo(
        batch_id=batch.id,
        batch_number=batch.batch_number,
        quantity=batch.quantity,
        received_at=batch.received_at,
        expires_at=batch.expires_at,
        age_days=days_since(batch.received_at, as_of),
        days_until_expiry=remaining_days,
        is_expired=is_expired,
        is_expiring_soon=is_expiring_soon,
    )


def summarize_batches(
    product_id: str,
    batches: Iterable[InventoryBatch],
    as_of: datetime,
    expiring_within_days: int = 30,
) -> BatchSummary:
    """
    Aggregate the active batches of ``product_id``.

    Batches of other products or with a non-active status are ignored, so
    the caller may pass the raw gateway result.
    """
    active = [b for b in batches if b.product_id == product_id and b.is_active]
    infos = [batch_age_info(b, as_of, expiring_within_days) for b in active]

    received = [b.received_at for b in active]
    average_age = math.floor(sum(i.age_days for i in infos) / len(infos) + 0.5) if infos else 0

    return BatchSummary(
        product_id=product_id,
        as_of=as_of,
        total_stock=sum((b.quantity for b in active), Decimal("0")),
        active_batches=len(active),
        expired_batches=sum(1 for i in infos if i.is_expired),
        expiring_batches=sum(1 for i in infos if i.is_expiring_soon),
        oldest_received_at=min(received) if received else None,
        newest_received_at=max(received) if received else None,
        average_batch_age_days=average_age,
    )
