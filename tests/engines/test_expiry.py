"""
Tests for batch age and expiry aggregation.

Covers:
- Ceiling day arithmetic at hour boundaries
- Expired vs expiring-soon classification
- Summary roll-up, product filtering and half-up average age
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from inventory_engines.expiry import (
    batch_age_info,
    days_since,
    days_until,
    summarize_batches,
)
from inventory_kernel.domain.entities import BatchStatus, InventoryBatch

AS_OF = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _batch(
    batch_id: str = "b1",
    quantity: str = "10",
    received_ago: timedelta = timedelta(days=5),
    expires_in: timedelta | None = timedelta(days=60),
    product_id: str = "p-1",
    status: BatchStatus = BatchStatus.ACTIVE,
) -> InventoryBatch:
    return InventoryBatch(
        id=batch_id,
        product_id=product_id,
        warehouse_id="wh-1",
        batch_number=batch_id.upper(),
        quantity=Decimal(quantity),
        unit_cost=Decimal("1"),
        received_at=AS_OF - received_ago,
        expires_at=AS_OF + expires_in if expires_in is not None else None,
        status=status,
    )


class TestDayArithmetic:
    @pytest.mark.parametrize(
        "delta, expected",
        [
            (timedelta(hours=1), 1),
            (timedelta(days=1), 1),
            (timedelta(days=1, seconds=1), 2),
            (timedelta(0), 0),
            (timedelta(hours=-1), 0),
            (timedelta(days=-1), -1),
            (timedelta(days=-1, hours=-1), -1),
        ],
    )
    def test_days_until_rounds_up(self, delta, expected):
        assert days_until(AS_OF + delta, AS_OF) == expected

    def test_days_since(self):
        assert days_since(AS_OF - timedelta(days=2, hours=3), AS_OF) == 3
        assert days_since(AS_OF, AS_OF) == 0


class TestBatchAgeInfo:
    def test_expiring_in_one_hour(self):
        info = batch_age_info(_batch(expires_in=timedelta(hours=1)), AS_OF)
        assert info.days_until_expiry == 1
        assert info.is_expiring_soon
        assert not info.is_expired

    def test_expired_one_hour_ago_still_counts_as_expiring(self):
        """Ceiling rounding puts a batch 1h past expiry at 0 days, not -1."""
        info = batch_age_info(_batch(expires_in=timedelta(hours=-1)), AS_OF)
        assert info.days_until_expiry == 0
        assert not info.is_expired
        assert info.is_expiring_soon

    def test_expired_over_a_day(self):
        info = batch_age_info(_batch(expires_in=timedelta(days=-1, hours=-1)), AS_OF)
        assert info.days_until_expiry == -1
        assert info.is_expired
        assert not info.is_expiring_soon

    def test_expiring_window_is_inclusive(self):
        assert batch_age_info(_batch(expires_in=timedelta(days=30)), AS_OF).is_expiring_soon
        assert not batch_age_info(_batch(expires_in=timedelta(days=31)), AS_OF).is_expiring_soon

    def test_custom_window(self):
        info = batch_age_info(_batch(expires_in=timedelta(days=10)), AS_OF, expiring_within_days=7)
        assert not info.is_expiring_soon

    def test_no_expiry_date(self):
        info = batch_age_info(_batch(expires_in=None), AS_OF)
        assert info.days_until_expiry is None
        assert not info.is_expired
        assert not info.is_expiring_soon


class TestSummarizeBatches:
    def test_empty(self):
        summary = summarize_batches("p-1", [], AS_OF)

        assert summary.total_stock == Decimal("0")
        assert summary.active_batches == 0
        assert summary.average_batch_age_days == 0
        assert summary.oldest_received_at is None
        assert summary.newest_received_at is None

    def test_roll_up(self):
        batches = [
            _batch("b1", "10", received_ago=timedelta(days=10), expires_in=timedelta(days=-3)),
            _batch("b2", "5", received_ago=timedelta(days=4), expires_in=timedelta(days=20)),
            _batch("b3", "2.5", received_ago=timedelta(days=1), expires_in=None),
        ]

        summary = summarize_batches("p-1", batches, AS_OF)

        assert summary.total_stock == Decimal("17.5")
        assert summary.active_batches == 3
        assert summary.expired_batches == 1
        assert summary.expiring_batches == 1
        assert summary.oldest_received_at == AS_OF - timedelta(days=10)
        assert summary.newest_received_at == AS_OF - timedelta(days=1)
        assert summary.average_batch_age_days == 5

    def test_ignores_other_products_and_inactive_batches(self):
        batches = [
            _batch("b1", "10"),
            _batch("b2", "99", product_id="p-2"),
            _batch("b3", "7", status=BatchStatus.DEPLETED),
        ]

        summary = summarize_batches("p-1", batches, AS_OF)

        assert summary.active_batches == 1
        assert summary.total_stock == Decimal("10")

    def test_average_age_rounds_half_up(self):
        """Ages 1 and 2 average to 1.5, reported as 2."""
        batches = [
            _batch("b1", received_ago=timedelta(days=1)),
            _batch("b2", received_ago=timedelta(days=2)),
        ]
        assert summarize_batches("p-1", batches, AS_OF).average_batch_age_days == 2

    def test_average_age_two_and_three(self):
        batches = [
            _batch("b1", received_ago=timedelta(days=2)),
            _batch("b2", received_ago=timedelta(days=3)),
        ]
        assert summarize_batches("p-1", batches, AS_OF).average_batch_age_days == 3
