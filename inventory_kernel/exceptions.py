"""
Typed Exception Hierarchy for the Inventory Core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the deduction engine, the data access layer and the offline
queue must decide what to do with a failure (block the sale, allow a
backorder, retry later, show an operator). Parsing message strings for
that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE class attribute (machine-readable)
  3. Exceptions carry structured DATA (product ids, quantities, batch ids)

Example:
    try:
        data_access.update_batch_quantity(batch_id, new_qty, expected_quantity=old_qty)
    except BatchConflictError as e:
        replan(e.batch_id)
    except GatewayUnavailableError:
        queue.enqueue(...)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryCoreError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- BatchNotFoundError
    |   +-- SupplierNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |
    +-- PurchaseOrderStateError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InvalidQuantityError
    |   +-- UnknownUnitOfMeasureError
    |
    +-- GatewayError
    |   +-- GatewayUnavailableError
    |   +-- BatchConflictError
    |
    +-- CacheError
    |
    +-- OfflineActionError
    |   +-- UnknownActionTypeError
    |   +-- InvalidActionPayloadError
    |   +-- OfflineActionNotFoundError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                   | When Raised
-----------|------------------------|----------------------------------------------
NotFound   | PRODUCT_NOT_FOUND      | Product id unknown to the remote store
           | BATCH_NOT_FOUND        | Batch id unknown to the remote store
           | SUPPLIER_NOT_FOUND     | Supplier id unknown to the remote store
           | PURCHASE_ORDER_NOT_FOUND | Purchase order id unknown
-----------|------------------------|----------------------------------------------
Receiving  | PURCHASE_ORDER_STATE   | Receiving an order already received/cancelled
-----------|------------------------|----------------------------------------------
Stock      | INSUFFICIENT_STOCK     | FIFO walk exhausted active batches
           | INVALID_QUANTITY       | Requested base quantity <= 0
           | UNKNOWN_UNIT           | Line unit matches neither base nor alternates
-----------|------------------------|----------------------------------------------
Gateway    | GATEWAY_ERROR          | Remote read/write failed (validation, conflict)
           | GATEWAY_UNAVAILABLE    | Remote store unreachable (queue the write)
           | BATCH_CONFLICT         | Batch quantity changed under us (CAS failed)
-----------|------------------------|----------------------------------------------
Cache      | CACHE_ERROR            | Local cache read/write failed (never escapes)
-----------|------------------------|----------------------------------------------
Offline    | UNKNOWN_ACTION_TYPE    | No handler registered for a queued action
           | INVALID_PAYLOAD        | Action payload is not JSON-native or is malformed
           | OFFLINE_ACTION_NOT_FOUND | Action id not present in the queue
-----------|------------------------|----------------------------------------------
Config     | CONFIGURATION_ERROR    | Settings file or override failed validation

===============================================================================
PROPAGATION
===============================================================================

- NotFoundError and GatewayError are surfaced immediately; nothing in the
  core retries them automatically (BatchConflictError excepted, which the
  deduction engine answers with a bounded re-plan).
- CacheError is always downgraded to a cache miss inside CacheStore.
- OfflineActionError during replay is captured on the action record and
  does not stop the replay pass.
"""

from decimal import Decimal


class InventoryCoreError(Exception):
    """
    Base exception for all inventory core errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_CORE_ERROR"


# Not-found exceptions


class NotFoundError(InventoryCoreError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class BatchNotFoundError(NotFoundError):
    """Inventory batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Inventory batch not found: {batch_id}")


class SupplierNotFoundError(NotFoundError):
    """Supplier with given ID was not found."""

    code: str = "SUPPLIER_NOT_FOUND"

    def __init__(self, supplier_id: str):
        self.supplier_id = supplier_id
        super().__init__(f"Supplier not found: {supplier_id}")


class PurchaseOrderNotFoundError(NotFoundError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, purchase_order_id: str):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order not found: {purchase_order_id}")


class PurchaseOrderStateError(InventoryCoreError):
    """Purchase order is in a status that does not allow the operation."""

    code: str = "PURCHASE_ORDER_STATE"

    def __init__(self, purchase_order_id: str, status: str, operation: str):
        self.purchase_order_id = purchase_order_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} purchase order {purchase_order_id} in status {status}"
        )


# Stock exceptions


class StockError(InventoryCoreError):
    """Base exception for stock deduction errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Active batches cannot cover the requested base quantity.

    The shortfall is ``needed - available``; policy for what happens next
    (block the sale, allow a backorder) belongs to the caller.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        needed: Decimal,
        available: Decimal,
        product_name: str | None = None,
    ):
        self.product_id = product_id
        self.product_name = product_name
        self.needed = needed
        self.available = available
        self.shortfall = needed - available
        label = product_name or product_id
        super().__init__(
            f"Insufficient inventory for {label}. "
            f"Needed: {_fmt(needed)}, Available: {_fmt(available)}"
        )


class InvalidQuantityError(StockError):
    """Requested quantity converts to zero or a negative base quantity."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, product_id: str, quantity: Decimal):
        self.product_id = product_id
        self.quantity = quantity
        super().__init__(
            f"Invalid quantity {_fmt(quantity)} for product {product_id}"
        )


class UnknownUnitOfMeasureError(StockError):
    """Line item unit is neither the base unit nor a known alternate unit."""

    code: str = "UNKNOWN_UNIT"

    def __init__(self, product_id: str, unit: str):
        self.product_id = product_id
        self.unit = unit
        super().__init__(f"Unknown unit of measure {unit!r} for product {product_id}")


# Gateway exceptions


class GatewayError(InventoryCoreError):
    """A read or write against the remote store failed."""

    code: str = "GATEWAY_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Gateway {operation} failed: {detail}")


class GatewayUnavailableError(GatewayError):
    """The remote store could not be reached at all."""

    code: str = "GATEWAY_UNAVAILABLE"


class BatchConflictError(GatewayError):
    """
    Batch quantity did not match the expected value on update.

    Raised instead of overwriting when another writer changed the batch
    between our read and our write.
    """

    code: str = "BATCH_CONFLICT"

    def __init__(self, batch_id: str, expected: Decimal, actual: Decimal):
        self.batch_id = batch_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            "update_batch_quantity",
            f"batch {batch_id} expected quantity {_fmt(expected)}, found {_fmt(actual)}",
        )


# Cache exceptions


class CacheError(InventoryCoreError):
    """Local cache substrate failure. Never escapes CacheStore."""

    code: str = "CACHE_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Cache failure on {key}: {reason}")


# Offline queue exceptions


class OfflineActionError(InventoryCoreError):
    """Base exception for offline queue errors."""

    code: str = "OFFLINE_ACTION_ERROR"


class UnknownActionTypeError(OfflineActionError):
    """No replay handler is registered for the action type."""

    code: str = "UNKNOWN_ACTION_TYPE"

    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"Unknown offline action type: {action_type}")


class InvalidActionPayloadError(OfflineActionError):
    """Action payload cannot be stored in the offline log or replayed."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, action_type: str, reason: str):
        self.action_type = action_type
        self.reason = reason
        super().__init__(f"Invalid payload for {action_type}: {reason}")


class OfflineActionNotFoundError(OfflineActionError):
    """Action id is not present in the offline queue."""

    code: str = "OFFLINE_ACTION_NOT_FOUND"

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"Offline action not found: {action_id}")


# Configuration exceptions


class ConfigurationError(InventoryCoreError):
    """Settings failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")


def _fmt(value: Decimal) -> str:
    """Fixed-point rendering without trailing zeros or exponent."""
    if isinstance(value, Decimal):
        normalized = value.normalize()
        return format(normalized, "f")
    return str(value)
