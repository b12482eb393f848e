"""
inventory_services.expiry_tracker -- Per-product batch age and expiry summaries.

Read-only consumer of the DataAccessLayer. Every call reads the product's
batches through the cache-or-fetch path and classifies them against the
injected clock; results are snapshots and are never cached on their own.
"""

from __future__ import annotations

from inventory_config.schema import ExpiryConfig
from inventory_engines.expiry import BatchAgeInfo, BatchSummary, batch_age_info, summarize_batches
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger
from inventory_services.data_access import DataAccessLayer

logger = get_logger("services.expiry")


class BatchExpiryTracker:
    def __init__(
        self,
        data_access: DataAccessLayer,
        clock: Clock | None = None,
        config: ExpiryConfig | None = None,
    ) -> None:
        self._data_access = data_access
        self._clock = clock or SystemClock()
        self._config = config or ExpiryConfig()

    def get_summary(self, product_id: str, force_refresh: bool = False) -> BatchSummary:
        batches = self._data_access.get_batches_for_product(product_id, force_refresh=force_refresh)
        summary = summarize_batches(
            product_id,
            batches,
            as_of=self._clock.now(),
            expiring_within_days=self._config.expiring_within_days,
        )
        logger.debug("batch_summary_computed", extra={
            "product_id": product_id,
            "active_batches": summary.active_batches,
            "expired_batches": summary.expired_batches,
            "expiring_batches": summary.expiring_batches,
        })
        return summary

    def get_batch_details(self, product_id: str, force_refresh: bool = False) -> list[BatchAgeInfo]:
        """Age info for each active batch, oldest received first."""
        now = self._clock.now()
        batches = self._data_access.get_batches_for_product(product_id, force_refresh=force_refresh)
        active = sorted((b for b in batches if b.is_active), key=lambda b: b.received_at)
        return [
            batch_age_info(b, now, self._config.expiring_within_days)
            for b in active
        ]
