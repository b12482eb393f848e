"""ORM models. Importing this package registers every table on Base.metadata."""

from inventory_kernel.models.catalog import (
    ProductModel,
    ProductUnitModel,
    SupplierModel,
    WarehouseModel,
)
from inventory_kernel.models.inventory import InventoryBatchModel, StockMovementModel
from inventory_kernel.models.local_state import AppliedActionModel, LocalStateModel
from inventory_kernel.models.orders import (
    PayableModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceivableModel,
    SalesOrderModel,
)

__all__ = [
    "ProductModel",
    "ProductUnitModel",
    "SupplierModel",
    "WarehouseModel",
    "InventoryBatchModel",
    "StockMovementModel",
    "AppliedActionModel",
    "LocalStateModel",
    "PayableModel",
    "PurchaseOrderLineModel",
    "PurchaseOrderModel",
    "ReceivableModel",
    "SalesOrderModel",
]
