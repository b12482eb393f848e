"""
Entities -- Immutable domain records for the inventory core.

Responsibility:
    Defines the frozen records that flow between the remote gateway, the
    cache, the offline queue and the deduction engine: products and their
    unit-of-measure table, inventory batches, sale line items, stock
    movements, offline actions, and the catalog/order records the data
    access layer caches.

Architecture position:
    Kernel > Domain -- pure, zero I/O. No ORM imports; ORM rows are
    converted at the gateway boundary.

Invariants enforced:
    - InventoryBatch.quantity >= 0 (ValueError at construction).
    - AlternateUnit.conversion_factor > 0.
    - All quantities and money are Decimal; all timestamps are aware UTC.

Serialization:
    Every cached or persisted record has ``to_dict()`` producing JSON-native
    values (Decimal -> str, datetime -> ISO-8601, Enum -> value) and a
    ``from_dict()`` inverse. The cache and the offline log store nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Value coercion helpers
# ---------------------------------------------------------------------------


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float/Decimal to Decimal via its string form."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_utc(value: Any) -> datetime | None:
    """Parse an ISO string or datetime into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def json_default(value: Any) -> Any:
    """
    ``json.dumps`` default rendering domain values the way ``to_dict`` does.

    Raises TypeError for anything else, as ``json.dumps`` itself would.
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _opt_decimal(value: Any) -> Decimal | None:
    return to_decimal(value) if value is not None else None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class BatchStatus(str, Enum):
    """Lifecycle of an inventory batch. Batches are never deleted."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"
    CANCELLED = "cancelled"


class MovementType(str, Enum):
    """Kind of stock movement recorded in the audit trail."""

    SALE = "sale"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    EXPIRED = "expired"


class ActionStatus(str, Enum):
    """Replay state of an offline action."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class SalesOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONVERTED = "converted"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AlternateUnit:
    """A secondary unit of measure: one of these equals ``conversion_factor`` base units."""

    name: str
    conversion_factor: Decimal
    price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.conversion_factor <= 0:
            raise ValueError(
                f"conversion_factor must be positive, got {self.conversion_factor}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "conversion_factor": str(self.conversion_factor),
            "price": str(self.price) if self.price is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlternateUnit:
        return cls(
            name=data["name"],
            conversion_factor=to_decimal(data["conversion_factor"]),
            price=_opt_decimal(data.get("price")),
        )


@dataclass(frozen=True, slots=True)
class Product:
    """
    Catalog product. Stock is always tracked in ``base_unit``.

    Immutable for the duration of a sale; owned by the catalog.
    """

    id: str
    name: str
    base_unit: str
    alternate_units: tuple[AlternateUnit, ...] = ()
    shelf_life_days: int | None = None
    min_stock_level: Decimal = Decimal("0")
    base_price: Decimal = Decimal("0")
    active: bool = True

    def find_unit(self, unit_name: str) -> AlternateUnit | None:
        """Return the alternate unit named ``unit_name``, if any."""
        for unit in self.alternate_units:
            if unit.name == unit_name:
                return unit
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "base_unit": self.base_unit,
            "alternate_units": [u.to_dict() for u in self.alternate_units],
            "shelf_life_days": self.shelf_life_days,
            "min_stock_level": str(self.min_stock_level),
            "base_price": str(self.base_price),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        return cls(
            id=data["id"],
            name=data["name"],
            base_unit=data["base_unit"],
            alternate_units=tuple(
                AlternateUnit.from_dict(u) for u in data.get("alternate_units", ())
            ),
            shelf_life_days=data.get("shelf_life_days"),
            min_stock_level=to_decimal(data.get("min_stock_level", "0")),
            base_price=to_decimal(data.get("base_price", "0")),
            active=data.get("active", True),
        )


@dataclass(frozen=True, slots=True)
class Warehouse:
    id: str
    name: str
    location: str = ""
    capacity: Decimal | None = None
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "capacity": str(self.capacity) if self.capacity is not None else None,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Warehouse:
        return cls(
            id=data["id"],
            name=data["name"],
            location=data.get("location", ""),
            capacity=_opt_decimal(data.get("capacity")),
            active=data.get("active", True),
        )


@dataclass(frozen=True, slots=True)
class Supplier:
    id: str
    company_name: str
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    payment_terms: str = "Net 30"
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "contact_person": self.contact_person,
            "phone": self.phone,
            "email": self.email,
            "payment_terms": self.payment_terms,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Supplier:
        return cls(
            id=data["id"],
            company_name=data["company_name"],
            contact_person=data.get("contact_person", ""),
            phone=data.get("phone", ""),
            email=data.get("email", ""),
            payment_terms=data.get("payment_terms", "Net 30"),
            active=data.get("active", True),
        )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InventoryBatch:
    """
    A discrete receipt of one product at one warehouse.

    Created on purchase receipt, mutated only by quantity decrements or
    status transitions. ``version`` increments on every quantity write.
    """

    id: str
    product_id: str
    warehouse_id: str
    batch_number: str
    quantity: Decimal
    unit_cost: Decimal
    received_at: datetime
    expires_at: datetime | None = None
    status: BatchStatus = BatchStatus.ACTIVE
    version: int = 0

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(
                f"Batch {self.id} quantity cannot be negative, got {self.quantity}"
            )

    @property
    def is_active(self) -> bool:
        return self.status == BatchStatus.ACTIVE

    def with_quantity(self, quantity: Decimal) -> InventoryBatch:
        """Return a copy holding ``quantity`` (status left to the store)."""
        return replace(self, quantity=quantity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "batch_number": self.batch_number,
            "quantity": str(self.quantity),
            "unit_cost": str(self.unit_cost),
            "received_at": _iso(self.received_at),
            "expires_at": _iso(self.expires_at),
            "status": self.status.value,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventoryBatch:
        return cls(
            id=data["id"],
            product_id=data["product_id"],
            warehouse_id=data["warehouse_id"],
            batch_number=data["batch_number"],
            quantity=to_decimal(data["quantity"]),
            unit_cost=to_decimal(data["unit_cost"]),
            received_at=to_utc(data["received_at"]),
            expires_at=to_utc(data.get("expires_at")),
            status=BatchStatus(data.get("status", BatchStatus.ACTIVE.value)),
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True, slots=True)
class StockMovement:
    """Append-only audit record: one per batch touched by a stock change."""

    id: str
    product_id: str
    warehouse_id: str
    movement_type: MovementType
    quantity: Decimal
    reference_id: str | None
    unit_cost: Decimal | None
    created_at: datetime
    batch_id: str | None = None
    reason: str | None = None
    created_by: str = "system"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "movement_type": self.movement_type.value,
            "quantity": str(self.quantity),
            "reference_id": self.reference_id,
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
            "created_at": _iso(self.created_at),
            "batch_id": self.batch_id,
            "reason": self.reason,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StockMovement:
        return cls(
            id=data["id"],
            product_id=data["product_id"],
            warehouse_id=data["warehouse_id"],
            movement_type=MovementType(data["movement_type"]),
            quantity=to_decimal(data["quantity"]),
            reference_id=data.get("reference_id"),
            unit_cost=_opt_decimal(data.get("unit_cost")),
            created_at=to_utc(data["created_at"]),
            batch_id=data.get("batch_id"),
            reason=data.get("reason"),
            created_by=data.get("created_by", "system"),
        )


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SaleLineItem:
    """One line of a sale; ``unit`` may differ from the product's base unit."""

    product_id: str
    quantity: Decimal
    unit: str
    unit_price: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class Sale:
    id: str
    line_items: tuple[SaleLineItem, ...] = ()
    receipt_number: str | None = None
    created_at: datetime | None = None
    payment_method: str = "cash"
    converted_from_order_id: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return sum((line.quantity * line.unit_price for line in self.line_items), Decimal("0"))


# ---------------------------------------------------------------------------
# Orders and payables
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PurchaseOrderLine:
    product_id: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True, slots=True)
class PurchaseOrder:
    id: str
    po_number: str
    supplier_id: str
    status: PurchaseOrderStatus
    total_amount: Decimal
    created_at: datetime
    lines: tuple[PurchaseOrderLine, ...] = ()
    actual_delivery_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "status": self.status.value,
            "total_amount": str(self.total_amount),
            "created_at": _iso(self.created_at),
            "lines": [
                {
                    "product_id": line.product_id,
                    "quantity": str(line.quantity),
                    "unit_price": str(line.unit_price),
                }
                for line in self.lines
            ],
            "actual_delivery_at": _iso(self.actual_delivery_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseOrder:
        return cls(
            id=data["id"],
            po_number=data["po_number"],
            supplier_id=data["supplier_id"],
            status=PurchaseOrderStatus(data["status"]),
            total_amount=to_decimal(data["total_amount"]),
            created_at=to_utc(data["created_at"]),
            lines=tuple(
                PurchaseOrderLine(
                    product_id=line["product_id"],
                    quantity=to_decimal(line["quantity"]),
                    unit_price=to_decimal(line["unit_price"]),
                )
                for line in data.get("lines", ())
            ),
            actual_delivery_at=to_utc(data.get("actual_delivery_at")),
        )


@dataclass(frozen=True, slots=True)
class SalesOrder:
    id: str
    order_number: str
    customer_name: str
    warehouse_id: str
    status: SalesOrderStatus
    total_amount: Decimal
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "warehouse_id": self.warehouse_id,
            "status": self.status.value,
            "total_amount": str(self.total_amount),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SalesOrder:
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            customer_name=data["customer_name"],
            warehouse_id=data["warehouse_id"],
            status=SalesOrderStatus(data["status"]),
            total_amount=to_decimal(data["total_amount"]),
            created_at=to_utc(data["created_at"]),
        )


@dataclass(frozen=True, slots=True)
class Payable:
    """Accounts-payable record raised by a purchase receipt."""

    id: str
    supplier_id: str
    amount: Decimal
    due_at: datetime
    description: str
    purchase_order_id: str | None = None
    status: str = "outstanding"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "amount": str(self.amount),
            "due_at": _iso(self.due_at),
            "description": self.description,
            "purchase_order_id": self.purchase_order_id,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Payable:
        return cls(
            id=data["id"],
            supplier_id=data["supplier_id"],
            amount=to_decimal(data["amount"]),
            due_at=to_utc(data["due_at"]),
            description=data["description"],
            purchase_order_id=data.get("purchase_order_id"),
            status=data.get("status", "outstanding"),
        )


@dataclass(frozen=True, slots=True)
class Receivable:
    """Accounts-receivable record raised by a credit or converted sale."""

    id: str
    customer_name: str
    amount: Decimal
    due_at: datetime
    description: str
    sale_id: str | None = None
    invoice_number: str | None = None
    status: str = "outstanding"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "amount": str(self.amount),
            "due_at": _iso(self.due_at),
            "description": self.description,
            "sale_id": self.sale_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Receivable:
        return cls(
            id=data["id"],
            customer_name=data["customer_name"],
            amount=to_decimal(data["amount"]),
            due_at=to_utc(data["due_at"]),
            description=data["description"],
            sale_id=data.get("sale_id"),
            invoice_number=data.get("invoice_number"),
            status=data.get("status", "outstanding"),
        )


# ---------------------------------------------------------------------------
# Alerts, search pages and dashboard
# ---------------------------------------------------------------------------


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


@dataclass(frozen=True, slots=True)
class StockAlert:
    """A product whose active stock is at or below its minimum level."""

    product_id: str
    product_name: str
    alert_type: AlertType
    current_stock: Decimal
    min_stock_level: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "alert_type": self.alert_type.value,
            "current_stock": str(self.current_stock),
            "min_stock_level": str(self.min_stock_level),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StockAlert:
        return cls(
            product_id=data["product_id"],
            product_name=data["product_name"],
            alert_type=AlertType(data["alert_type"]),
            current_stock=to_decimal(data["current_stock"]),
            min_stock_level=to_decimal(data["min_stock_level"]),
        )


@dataclass(frozen=True, slots=True)
class Page:
    """One page of a search; ``total_count`` counts every match."""

    items: tuple[Any, ...]
    total_count: int
    page: int
    per_page: int

    @property
    def page_count(self) -> int:
        return -(-self.total_count // self.per_page)

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count


@dataclass(frozen=True, slots=True)
class DashboardKpis:
    """Aggregate figures; cached with a short TTL."""

    total_products: int
    total_stock_units: Decimal
    inventory_value: Decimal
    active_orders: int
    warehouse_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_products": self.total_products,
            "total_stock_units": str(self.total_stock_units),
            "inventory_value": str(self.inventory_value),
            "active_orders": self.active_orders,
            "warehouse_count": self.warehouse_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DashboardKpis:
        return cls(
            total_products=int(data["total_products"]),
            total_stock_units=to_decimal(data["total_stock_units"]),
            inventory_value=to_decimal(data["inventory_value"]),
            active_orders=int(data["active_orders"]),
            warehouse_count=int(data["warehouse_count"]),
        )


# ---------------------------------------------------------------------------
# Offline actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OfflineAction:
    """
    A mutating call recorded while the remote store was unreachable.

    Transitions: PENDING -> COMPLETED | FAILED; FAILED -> PENDING only by
    explicit operator requeue.
    """

    id: str
    action_type: str
    payload: dict[str, Any]
    created_at: datetime
    status: ActionStatus = ActionStatus.PENDING
    idempotency_key: str | None = None
    error: str | None = None
    error_code: str | None = None
    attempted_at: datetime | None = None
    attempts: int = 0
    result: Any = field(default=None, compare=False)

    @property
    def is_pending(self) -> bool:
        return self.status == ActionStatus.PENDING

    def mark_completed(self, at: datetime, result: Any = None) -> OfflineAction:
        return replace(
            self,
            status=ActionStatus.COMPLETED,
            error=None,
            error_code=None,
            attempted_at=at,
            attempts=self.attempts + 1,
            result=result,
        )

    def mark_failed(self, at: datetime, error: str, error_code: str | None) -> OfflineAction:
        return replace(
            self,
            status=ActionStatus.FAILED,
            error=error,
            error_code=error_code,
            attempted_at=at,
            attempts=self.attempts + 1,
        )

    def requeued(self) -> OfflineAction:
        return replace(self, status=ActionStatus.PENDING, error=None, error_code=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "payload": self.payload,
            "created_at": _iso(self.created_at),
            "status": self.status.value,
            "idempotency_key": self.idempotency_key,
            "error": self.error,
            "error_code": self.error_code,
            "attempted_at": _iso(self.attempted_at),
            "attempts": self.attempts,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OfflineAction:
        return cls(
            id=data["id"],
            action_type=data["action_type"],
            payload=data.get("payload") or {},
            created_at=to_utc(data["created_at"]),
            status=ActionStatus(data.get("status", ActionStatus.PENDING.value)),
            idempotency_key=data.get("idempotency_key"),
            error=data.get("error"),
            error_code=data.get("error_code"),
            attempted_at=to_utc(data.get("attempted_at")),
            attempts=int(data.get("attempts", 0)),
            result=data.get("result"),
        )
