"""
inventory_services.receiving_service -- Purchase order receipt.

Responsibility:
    Turn a purchase order into stock: create one active batch and one
    ``purchase`` movement per order line, mark the order received, and
    raise the accounts-payable record for the order total.

Architecture position:
    Services -- writes through the DataAccessLayer, so the inventory,
    purchase order and dashboard caches are invalidated by the writes.

Invariants enforced:
    - Batch numbers follow ``PO-<po_number>-<product_id>-<line number>``.
    - Expiry is received time plus the product's shelf life, or plus
      ``receiving.default_shelf_life_days`` when the product has none.
    - Payable due date follows the supplier's payment terms (Net 15 / 30 /
      60, COD), falling back to ``receiving.payable_terms_days``.
    - The order is marked received only after every batch and movement is
      stored. A retried receipt reuses stored batches (matched by batch
      number) and movements (matched by batch) instead of duplicating them.
    - A payable failure is logged and reported but never fails the receipt.

Failure modes:
    - PurchaseOrderNotFoundError for an unknown order.
    - PurchaseOrderStateError when the order is already received or
      cancelled.
    - GatewayError from batch, movement or status writes propagates and
      leaves the order receivable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from inventory_config.schema import ReceivingConfig
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import (
    BatchStatus,
    InventoryBatch,
    MovementType,
    Payable,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    StockMovement,
)
from inventory_kernel.exceptions import (
    InventoryCoreError,
    ProductNotFoundError,
    PurchaseOrderStateError,
    SupplierNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_services.data_access import DataAccessLayer

logger = get_logger("services.receiving")

DEFAULT_WAREHOUSE_ID = "default-warehouse"

PAYMENT_TERMS_DAYS = {
    "Net 15": 15,
    "Net 30": 30,
    "Net 60": 60,
    "COD": 0,
}

_NOT_RECEIVABLE = (PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED)


def _batch_number(order: PurchaseOrder, line: PurchaseOrderLine, line_number: int) -> str:
    return f"PO-{order.po_number}-{line.product_id}-{line_number}"


@dataclass(frozen=True)
class ReceiptResult:
    purchase_order: PurchaseOrder
    batches: tuple[InventoryBatch, ...]
    movements: tuple[StockMovement, ...]
    payable: Payable | None = None
    payable_error: InventoryCoreError | None = None


class ReceivingService:
    def __init__(
        self,
        data_access: DataAccessLayer,
        config: ReceivingConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._data_access = data_access
        self._config = config or ReceivingConfig()
        self._clock = clock or SystemClock()

    def receive_purchase_order(
        self,
        purchase_order_id: str,
        warehouse_id: str | None = None,
        created_by: str = "system",
    ) -> ReceiptResult:
        """
        Receive every line of an order into stock.

        Batches and movements are written before the status flips to
        received, so a receipt interrupted by a failed write can be
        retried. A retry reuses the batches and movements the failed
        attempt already stored instead of duplicating them.
        """
        order = self._data_access.get_purchase_order(purchase_order_id)
        if order.status in _NOT_RECEIVABLE:
            raise PurchaseOrderStateError(purchase_order_id, order.status.value, "receive")

        received_at = self._clock.now()
        warehouse_id = warehouse_id or DEFAULT_WAREHOUSE_ID

        logger.info("purchase_order_receipt_started", extra={
            "purchase_order_id": purchase_order_id,
            "po_number": order.po_number,
            "line_count": len(order.lines),
            "warehouse_id": warehouse_id,
        })

        numbers = [
            _batch_number(order, line, line_number)
            for line_number, line in enumerate(order.lines, start=1)
        ]
        stored_batches = {b.batch_number: b for b in self._data_access.find_batches_by_number(numbers)}
        stored_movements = {
            m.batch_id: m
            for m in self._data_access.get_stock_movements(order.id, MovementType.PURCHASE)
        }
        if stored_batches or stored_movements:
            logger.info("purchase_order_receipt_resumed", extra={
                "purchase_order_id": purchase_order_id,
                "batches_found": len(stored_batches),
                "movements_found": len(stored_movements),
            })

        batches: list[InventoryBatch] = []
        movements: list[StockMovement] = []
        for line, number in zip(order.lines, numbers):
            batch = stored_batches.get(number)
            if batch is None:
                batch = self._data_access.create_batch(
                    self._batch_for_line(line, number, warehouse_id, received_at)
                )
            batches.append(batch)

            movement = stored_movements.get(batch.id)
            if movement is None:
                movement = self._data_access.create_stock_movement(
                    StockMovement(
                        id=str(uuid4()),
                        product_id=line.product_id,
                        warehouse_id=batch.warehouse_id,
                        movement_type=MovementType.PURCHASE,
                        quantity=line.quantity,
                        reference_id=order.id,
                        unit_cost=line.unit_price,
                        created_at=received_at,
                        batch_id=batch.id,
                        reason=f"Purchase Order {order.po_number}",
                        created_by=created_by,
                    )
                )
            movements.append(movement)

        order = self._data_access.update_purchase_order_status(
            purchase_order_id, PurchaseOrderStatus.RECEIVED, received_at
        )

        payable, payable_error = self._raise_payable(order, received_at)

        logger.info("purchase_order_received", extra={
            "purchase_order_id": purchase_order_id,
            "batches_created": len(batches),
            "payable_created": payable is not None,
        })
        return ReceiptResult(
            purchase_order=order,
            batches=tuple(batches),
            movements=tuple(movements),
            payable=payable,
            payable_error=payable_error,
        )

    def _shelf_life_days(self, product_id: str) -> int:
        try:
            product = self._data_access.get_product(product_id)
        except ProductNotFoundError:
            logger.warning("receipt_product_unknown", extra={"product_id": product_id})
            return self._config.default_shelf_life_days
        return product.shelf_life_days or self._config.default_shelf_life_days

    def _batch_for_line(
        self,
        line: PurchaseOrderLine,
        batch_number: str,
        warehouse_id: str,
        received_at: datetime,
    ) -> InventoryBatch:
        return InventoryBatch(
            id=str(uuid4()),
            product_id=line.product_id,
            warehouse_id=warehouse_id,
            batch_number=batch_number,
            quantity=line.quantity,
            unit_cost=line.unit_price,
            received_at=received_at,
            expires_at=received_at + timedelta(days=self._shelf_life_days(line.product_id)),
            status=BatchStatus.ACTIVE,
        )

    def _payment_terms_days(self, supplier_id: str) -> int:
        try:
            supplier = self._data_access.get_supplier(supplier_id)
        except SupplierNotFoundError:
            logger.warning("receipt_supplier_unknown", extra={"supplier_id": supplier_id})
            return self._config.payable_terms_days
        return PAYMENT_TERMS_DAYS.get(supplier.payment_terms, self._config.payable_terms_days)

    def _raise_payable(
        self,
        order: PurchaseOrder,
        received_at: datetime,
    ) -> tuple[Payable | None, InventoryCoreError | None]:
        if not order.supplier_id or order.total_amount <= 0:
            return None, None
        try:
            due_at = received_at + timedelta(days=self._payment_terms_days(order.supplier_id))
            payable = self._data_access.create_payable(
                Payable(
                    id=str(uuid4()),
                    supplier_id=order.supplier_id,
                    amount=order.total_amount,
                    due_at=due_at,
                    description=f"Payment for Purchase Order {order.po_number}",
                    purchase_order_id=order.id,
                )
            )
        except InventoryCoreError as exc:
            logger.warning("payable_creation_failed", extra={
                "purchase_order_id": order.id,
                "error_code": exc.code,
                "error": str(exc),
            })
            return None, exc
        return payable, None
