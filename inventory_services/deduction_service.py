"""
inventory_services.deduction_service -- FIFO stock deduction for sales.

Responsibility:
    Given a sale, decrement exactly enough stock, oldest batch first, to
    cover every line item converted into its product's base unit, and
    record one ``sale`` stock movement per batch touched per line.

Architecture position:
    Services -- stateful orchestration over the pure FIFO planner in
    inventory_engines.fifo. All reads and writes go through the
    DataAccessLayer, so inventory caches are invalidated by the writes.

Algorithm:
    1. Plan the whole sale before writing anything. Line items are planned
       in order against a working copy of each product's active batches,
       so two lines for the same product see each other's consumption.
       Any unsatisfiable line fails the sale with zero writes.
    2. Commit batch by batch: compare-and-swap the batch quantity
       (expected = quantity the plan saw), then append the movement.
    3. If a write fails, restore the batches already written with
       compensating writes and record an ``adjustment`` movement for every
       sale movement already appended.
    4. If the compare-and-swap detects a concurrent writer, compensate,
       re-read the batches bypassing the cache and re-plan, up to
       ``max_conflict_retries`` times.

Invariants enforced:
    - FIFO order: oldest ``received_at`` first, stable, no tie-breaker.
    - Conservation: on success the product's active stock drops by exactly
      the requested base quantity.
    - All or nothing: on failure the result carries no deductions; writes
      that could not be compensated are listed in ``uncompensated``.
    - Empty sale: success, no deductions, total 0, no reads or writes.

Failure modes (returned in DeductionResult.error, never raised):
    - InsufficientStockError, InvalidQuantityError, UnknownUnitOfMeasureError
    - ProductNotFoundError
    - GatewayError / GatewayUnavailableError from any read or write
    - BatchConflictError once retries are exhausted
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from inventory_config.schema import DeductionConfig
from inventory_engines.fifo import (
    BatchAllocation,
    apply_allocations,
    convert_to_base_quantity,
    plan_line_deduction,
)
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import (
    InventoryBatch,
    MovementType,
    Product,
    Sale,
    StockMovement,
)
from inventory_kernel.exceptions import (
    BatchConflictError,
    InventoryCoreError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_services.data_access import DataAccessLayer

logger = get_logger("services.deduction")


@dataclass(frozen=True, slots=True)
class BatchDeduction:
    """One batch touched by a sale: what was taken and what is left."""

    batch_id: str
    product_id: str
    quantity_deducted: Decimal
    remaining_stock: Decimal


@dataclass(frozen=True)
class DeductionResult:
    """
    Outcome of ``deduct_for_sale``.

    On success ``deductions`` lists every batch touched, in commit order.
    On failure ``deductions`` is empty and ``error`` names the cause;
    ``uncompensated`` lists any batch writes that remain applied because
    their compensating write also failed (or compensation is disabled).
    """

    success: bool
    deductions: tuple[BatchDeduction, ...] = ()
    total_deducted: Decimal = Decimal("0")
    error: InventoryCoreError | None = None
    movements: tuple[StockMovement, ...] = ()
    uncompensated: tuple[BatchDeduction, ...] = ()
    attempts: int = 0

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    @classmethod
    def failed(
        cls,
        error: InventoryCoreError,
        attempts: int,
        uncompensated: tuple[BatchDeduction, ...] = (),
    ) -> DeductionResult:
        return cls(success=False, error=error, attempts=attempts, uncompensated=uncompensated)


@dataclass
class _AppliedWrite:
    allocation: BatchAllocation
    movement_written: bool = False


class _CommitFailure(Exception):
    """A commit-phase error plus what compensation could not undo."""

    def __init__(self, error: InventoryCoreError, uncompensated: tuple[BatchDeduction, ...] = ()):
        self.error = error
        self.uncompensated = uncompensated
        super().__init__(str(error))


def _as_deduction(allocation: BatchAllocation) -> BatchDeduction:
    return BatchDeduction(
        batch_id=allocation.batch_id,
        product_id=allocation.product_id,
        quantity_deducted=allocation.quantity_deducted,
        remaining_stock=allocation.remaining_after,
    )


class FIFODeductionEngine:
    """
    Deduct sale quantities from inventory batches, oldest first.

    Contract:
        ``deduct_for_sale`` never raises for domain or gateway failures; it
        returns a DeductionResult. Callers decide whether a failure blocks
        the sale or becomes a backorder.
    """

    def __init__(
        self,
        data_access: DataAccessLayer,
        config: DeductionConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._data_access = data_access
        self._config = config or DeductionConfig()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan_sale(self, sale: Sale, force_refresh: bool = False) -> list[BatchAllocation]:
        """
        Plan every line item of ``sale`` without writing.

        Raises:
            StockError subclasses, NotFoundError, GatewayError.
        """
        products: dict[str, Product] = {}
        working: dict[str, list[InventoryBatch]] = {}
        allocations: list[BatchAllocation] = []

        for line in sale.line_items:
            product = products.get(line.product_id)
            if product is None:
                product = self._data_access.get_product(line.product_id)
                products[line.product_id] = product

            needed = convert_to_base_quantity(product, line, self._config.unknown_unit_policy)

            if product.id not in working:
                working[product.id] = self._data_access.get_batches_for_product(
                    product.id, force_refresh=force_refresh
                )

            line_allocations = plan_line_deduction(product, working[product.id], needed)
            working[product.id] = apply_allocations(working[product.id], line_allocations)
            allocations.extend(line_allocations)

            logger.debug("fifo_line_planned", extra={
                "product_id": product.id,
                "unit": line.unit,
                "requested_quantity": str(line.quantity),
                "base_quantity": str(needed),
                "batches_touched": len(line_allocations),
            })

        return allocations

    # ------------------------------------------------------------------
    # Commit and compensation
    # ------------------------------------------------------------------

    def _sale_movement(self, sale: Sale, allocation: BatchAllocation, created_by: str) -> StockMovement:
        label = sale.receipt_number or sale.id
        return StockMovement(
            id=str(uuid4()),
            product_id=allocation.product_id,
            warehouse_id=allocation.batch.warehouse_id,
            movement_type=MovementType.SALE,
            quantity=allocation.quantity_deducted,
            reference_id=sale.id,
            unit_cost=allocation.batch.unit_cost,
            created_at=self._clock.now(),
            batch_id=allocation.batch_id,
            reason=f"Sale {label}",
            created_by=created_by,
        )

    def _commit(
        self,
        sale: Sale,
        allocations: list[BatchAllocation],
        created_by: str,
    ) -> list[StockMovement]:
        applied: list[_AppliedWrite] = []
        movements: list[StockMovement] = []

        for allocation in allocations:
            try:
                self._data_access.update_batch_quantity(
                    allocation.batch_id,
                    allocation.remaining_after,
                    expected_quantity=allocation.quantity_before,
                )
                write = _AppliedWrite(allocation)
                applied.append(write)

                movement = self._data_access.create_stock_movement(
                    self._sale_movement(sale, allocation, created_by)
                )
                write.movement_written = True
                movements.append(movement)
            except InventoryCoreError as exc:
                logger.warning("fifo_commit_failed", extra={
                    "batch_id": allocation.batch_id,
                    "applied_writes": len(applied),
                    "error_code": exc.code,
                    "error": str(exc),
                })
                raise _CommitFailure(exc, self._compensate(sale, applied, created_by)) from exc

            logger.debug("fifo_batch_committed", extra={
                "batch_id": allocation.batch_id,
                "quantity_deducted": str(allocation.quantity_deducted),
                "remaining_stock": str(allocation.remaining_after),
            })

        return movements

    def _compensate(
        self,
        sale: Sale,
        applied: list[_AppliedWrite],
        created_by: str,
    ) -> tuple[BatchDeduction, ...]:
        """Undo applied writes newest first; return the ones left applied."""
        if not applied:
            return ()
        if not self._config.compensate_on_failure:
            leftover = tuple(_as_deduction(w.allocation) for w in applied)
            logger.error("fifo_writes_left_applied", extra={
                "batch_ids": [d.batch_id for d in leftover],
            })
            return leftover

        uncompensated: list[BatchDeduction] = []
        for write in reversed(applied):
            allocation = write.allocation
            try:
                self._data_access.update_batch_quantity(
                    allocation.batch_id,
                    allocation.quantity_before,
                    expected_quantity=allocation.remaining_after,
                )
                if write.movement_written:
                    self._data_access.create_stock_movement(
                        StockMovement(
                            id=str(uuid4()),
                            product_id=allocation.product_id,
                            warehouse_id=allocation.batch.warehouse_id,
                            movement_type=MovementType.ADJUSTMENT,
                            quantity=allocation.quantity_deducted,
                            reference_id=sale.id,
                            unit_cost=allocation.batch.unit_cost,
                            created_at=self._clock.now(),
                            batch_id=allocation.batch_id,
                            reason=f"Reversal of failed sale {sale.receipt_number or sale.id}",
                            created_by=created_by,
                        )
                    )
            except InventoryCoreError as exc:
                logger.error("fifo_compensation_failed", extra={
                    "batch_id": allocation.batch_id,
                    "quantity_deducted": str(allocation.quantity_deducted),
                    "error_code": exc.code,
                    "error": str(exc),
                })
                uncompensated.append(_as_deduction(allocation))
                continue

            logger.info("fifo_compensation_applied", extra={
                "batch_id": allocation.batch_id,
                "restored_quantity": str(allocation.quantity_before),
            })

        uncompensated.reverse()
        return tuple(uncompensated)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def deduct_for_sale(self, sale: Sale, created_by: str = "system") -> DeductionResult:
        """
        Deduct stock for every line item of ``sale`` in FIFO order.

        Args:
            sale: The sale whose line items to fulfil.
            created_by: Actor recorded on the stock movements.

        Returns:
            DeductionResult; see the class docstring for success/failure shape.
        """
        if not sale.line_items:
            logger.info("fifo_deduction_empty_sale", extra={"sale_id": sale.id})
            return DeductionResult(success=True)

        with LogContext.bind(sale_id=sale.id, actor_id=created_by):
            return self._deduct(sale, created_by)

    def _deduct(self, sale: Sale, created_by: str) -> DeductionResult:
        t0 = time.monotonic()
        logger.info("fifo_deduction_started", extra={
            "line_items": len(sale.line_items),
        })

        max_attempts = self._config.max_conflict_retries + 1
        last_conflict: BatchConflictError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                allocations = self.plan_sale(sale, force_refresh=attempt > 1)
            except InventoryCoreError as exc:
                logger.warning("fifo_deduction_failed", extra={
                    "phase": "plan",
                    "attempt": attempt,
                    "error_code": exc.code,
                    "error": str(exc),
                })
                return DeductionResult.failed(exc, attempts=attempt)

            try:
                movements = self._commit(sale, allocations, created_by)
            except _CommitFailure as failure:
                if isinstance(failure.error, BatchConflictError) and not failure.uncompensated:
                    last_conflict = failure.error
                    logger.warning("fifo_conflict_retry", extra={
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "batch_id": failure.error.batch_id,
                    })
                    continue
                logger.error("fifo_deduction_failed", extra={
                    "phase": "commit",
                    "attempt": attempt,
                    "error_code": failure.error.code,
                    "uncompensated": len(failure.uncompensated),
                })
                return DeductionResult.failed(
                    failure.error, attempts=attempt, uncompensated=failure.uncompensated
                )

            deductions = tuple(_as_deduction(a) for a in allocations)
            total = sum((d.quantity_deducted for d in deductions), Decimal("0"))
            logger.info("fifo_deduction_completed", extra={
                "batches_touched": len(deductions),
                "total_deducted": str(total),
                "attempt": attempt,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })
            return DeductionResult(
                success=True,
                deductions=deductions,
                total_deducted=total,
                movements=tuple(movements),
                attempts=attempt,
            )

        logger.error("fifo_deduction_failed", extra={
            "phase": "commit",
            "attempt": max_attempts,
            "error_code": BatchConflictError.code,
            "reason": "conflict_retries_exhausted",
        })
        return DeductionResult.failed(last_conflict, attempts=max_attempts)
