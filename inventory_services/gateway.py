"""
inventory_services.gateway -- Remote data gateway over the relational store.

Responsibility:
    Name every remote call the inventory core needs (``RemoteDataGateway``)
    and provide the SQLAlchemy-backed client (``SqlAlchemyGateway``) that
    turns ORM rows into domain entities and back.

Architecture position:
    Services -- the only module that talks to the remote store. The
    DataAccessLayer is its sole caller inside the core; engines never see
    it. One short transaction per call; the gateway keeps no state between
    calls.

Invariants enforced:
    - fetch_batches_by_product returns active batches only, unordered.
      FIFO ordering belongs to the deduction engine.
    - Compare-and-swap: update_batch_quantity with ``expected_quantity``
      raises BatchConflictError instead of overwriting a quantity another
      writer changed. Every quantity write increments ``version``.
    - A batch whose quantity reaches zero becomes ``depleted``; a depleted
      batch restored above zero becomes ``active`` again.
    - Applied idempotency keys are unique; recording one twice is a no-op.
    - Stock alerts cover active products with a positive minimum level
      whose active stock is at or below it.

Failure modes:
    - NotFoundError subclasses for unknown product / supplier / batch /
      purchase order.
    - GatewayUnavailableError when the store cannot be reached
      (OperationalError, InterfaceError, DisconnectionError).
    - GatewayError for every other store failure (constraint violations,
      unknown tables or columns, negative quantities).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.base import Base
from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import (
    AlternateUnit,
    AlertType,
    BatchStatus,
    DashboardKpis,
    InventoryBatch,
    MovementType,
    Page,
    Payable,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    Receivable,
    SalesOrder,
    SalesOrderStatus,
    StockAlert,
    StockMovement,
    Supplier,
    Warehouse,
    to_decimal,
)
from inventory_kernel.exceptions import (
    BatchConflictError,
    BatchNotFoundError,
    GatewayError,
    GatewayUnavailableError,
    ProductNotFoundError,
    PurchaseOrderNotFoundError,
    SupplierNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models import (
    AppliedActionModel,
    InventoryBatchModel,
    PayableModel,
    ProductModel,
    ProductUnitModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceivableModel,
    SalesOrderModel,
    StockMovementModel,
    SupplierModel,
    WarehouseModel,
)

logger = get_logger("services.gateway")

T = TypeVar("T")

TABLES: dict[str, type[Base]] = {
    "products": ProductModel,
    "product_units": ProductUnitModel,
    "warehouses": WarehouseModel,
    "suppliers": SupplierModel,
    "inventory_batches": InventoryBatchModel,
    "stock_movements": StockMovementModel,
    "purchase_orders": PurchaseOrderModel,
    "purchase_order_lines": PurchaseOrderLineModel,
    "sales_orders": SalesOrderModel,
    "payables": PayableModel,
    "receivables": ReceivableModel,
    "applied_actions": AppliedActionModel,
}

ACTIVE_PURCHASE_ORDER_STATUSES = (PurchaseOrderStatus.PENDING.value, PurchaseOrderStatus.ORDERED.value)
ACTIVE_SALES_ORDER_STATUSES = (SalesOrderStatus.PENDING.value,)

_PRODUCT_FIELDS = {"name", "base_unit", "shelf_life_days", "min_stock_level", "base_price", "active"}
_SUPPLIER_FIELDS = {"company_name", "contact_person", "phone", "email", "payment_terms", "active"}


@dataclass(frozen=True)
class InventorySearch:
    """
    Filters for one page of batch search.

    ``term`` matches batch number or product name, case-insensitively.
    Expiry bounds are inclusive. Results are newest receipt first.
    """

    term: str = ""
    warehouse_id: str | None = None
    product_id: str | None = None
    expiry_from: datetime | None = None
    expiry_to: datetime | None = None
    status: BatchStatus | None = BatchStatus.ACTIVE
    page: int = 1
    per_page: int = 20


def _check_page(operation: str, page: int, per_page: int) -> None:
    if page < 1 or per_page < 1:
        raise GatewayError(operation, f"page and per_page must be >= 1, got {page} and {per_page}")


class RemoteDataGateway(ABC):
    """
    Every remote call the inventory core makes.

    Contract:
        Reads return domain entities or raise a NotFoundError subclass.
        Writes return the stored entity. Any store failure surfaces as
        GatewayError (GatewayUnavailableError when unreachable).
    """

    # Catalog reads

    @abstractmethod
    def fetch_products(self) -> list[Product]: ...

    @abstractmethod
    def fetch_product(self, product_id: str) -> Product: ...

    @abstractmethod
    def fetch_warehouses(self) -> list[Warehouse]: ...

    @abstractmethod
    def fetch_suppliers(self) -> list[Supplier]: ...

    @abstractmethod
    def fetch_supplier(self, supplier_id: str) -> Supplier: ...

    @abstractmethod
    def search_products(self, term: str = "", page: int = 1, per_page: int = 20) -> Page: ...

    # Orders

    @abstractmethod
    def fetch_purchase_orders(self) -> list[PurchaseOrder]: ...

    @abstractmethod
    def fetch_purchase_order(self, purchase_order_id: str) -> PurchaseOrder: ...

    @abstractmethod
    def fetch_sales_orders(self) -> list[SalesOrder]: ...

    # Inventory

    @abstractmethod
    def fetch_inventory_items(self) -> list[InventoryBatch]: ...

    @abstractmethod
    def fetch_batches_by_product(self, product_id: str) -> list[InventoryBatch]: ...

    @abstractmethod
    def fetch_batch(self, batch_id: str) -> InventoryBatch: ...

    @abstractmethod
    def fetch_batches_by_number(self, batch_numbers: Sequence[str]) -> list[InventoryBatch]: ...

    @abstractmethod
    def fetch_stock_movements(
        self,
        reference_id: str,
        movement_type: MovementType | None = None,
    ) -> list[StockMovement]: ...

    @abstractmethod
    def search_inventory(self, query: InventorySearch) -> Page: ...

    @abstractmethod
    def fetch_alerts(self) -> list[StockAlert]: ...

    @abstractmethod
    def fetch_dashboard_kpis(self) -> DashboardKpis: ...

    # Mutations

    @abstractmethod
    def update_batch_quantity(
        self,
        batch_id: str,
        new_quantity: Decimal,
        expected_quantity: Decimal | None = None,
    ) -> InventoryBatch: ...

    @abstractmethod
    def create_batch(self, batch: InventoryBatch) -> InventoryBatch: ...

    @abstractmethod
    def create_stock_movement(self, movement: StockMovement) -> StockMovement: ...

    @abstractmethod
    def create_product(self, product: Product) -> Product: ...

    @abstractmethod
    def update_product(self, product_id: str, changes: Mapping[str, Any]) -> Product: ...

    @abstractmethod
    def create_warehouse(self, warehouse: Warehouse) -> Warehouse: ...

    @abstractmethod
    def create_supplier(self, supplier: Supplier) -> Supplier: ...

    @abstractmethod
    def update_supplier(self, supplier_id: str, changes: Mapping[str, Any]) -> Supplier: ...

    @abstractmethod
    def update_purchase_order_status(
        self,
        purchase_order_id: str,
        status: PurchaseOrderStatus,
        delivered_at: datetime | None = None,
    ) -> PurchaseOrder: ...

    @abstractmethod
    def create_payable(self, payable: Payable) -> Payable: ...

    @abstractmethod
    def create_receivable(self, receivable: Receivable) -> Receivable: ...

    # Idempotency ledger

    @abstractmethod
    def is_action_applied(self, idempotency_key: str) -> bool: ...

    @abstractmethod
    def record_applied_action(self, idempotency_key: str, action_type: str) -> None: ...

    # Generic row access

    @abstractmethod
    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]: ...

    @abstractmethod
    def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Row <-> entity conversion
# ---------------------------------------------------------------------------


def _product_from_row(row: ProductModel) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        base_unit=row.base_unit,
        alternate_units=tuple(
            AlternateUnit(name=u.name, conversion_factor=u.conversion_factor, price=u.price)
            for u in row.units
        ),
        shelf_life_days=row.shelf_life_days,
        min_stock_level=row.min_stock_level,
        base_price=row.base_price,
        active=row.active,
    )


def _warehouse_from_row(row: WarehouseModel) -> Warehouse:
    return Warehouse(
        id=row.id,
        name=row.name,
        location=row.location,
        capacity=row.capacity,
        active=row.active,
    )


def _supplier_from_row(row: SupplierModel) -> Supplier:
    return Supplier(
        id=row.id,
        company_name=row.company_name,
        contact_person=row.contact_person,
        phone=row.phone,
        email=row.email,
        payment_terms=row.payment_terms,
        active=row.active,
    )


def _batch_from_row(row: InventoryBatchModel) -> InventoryBatch:
    return InventoryBatch(
        id=row.id,
        product_id=row.product_id,
        warehouse_id=row.warehouse_id,
        batch_number=row.batch_number,
        quantity=row.quantity,
        unit_cost=row.unit_cost,
        received_at=row.received_at,
        expires_at=row.expires_at,
        status=BatchStatus(row.status),
        version=row.version,
    )


def _movement_from_row(row: StockMovementModel) -> StockMovement:
    return StockMovement(
        id=row.id,
        product_id=row.product_id,
        warehouse_id=row.warehouse_id,
        movement_type=MovementType(row.movement_type),
        quantity=row.quantity,
        reference_id=row.reference_id,
        unit_cost=row.unit_cost,
        created_at=row.created_at,
        batch_id=row.batch_id,
        reason=row.reason,
        created_by=row.created_by,
    )


def _purchase_order_from_row(row: PurchaseOrderModel) -> PurchaseOrder:
    return PurchaseOrder(
        id=row.id,
        po_number=row.po_number,
        supplier_id=row.supplier_id,
        status=PurchaseOrderStatus(row.status),
        total_amount=row.total_amount,
        created_at=row.created_at,
        lines=tuple(
            PurchaseOrderLine(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in row.lines
        ),
        actual_delivery_at=row.actual_delivery_at,
    )


def _sales_order_from_row(row: SalesOrderModel) -> SalesOrder:
    return SalesOrder(
        id=row.id,
        order_number=row.order_number,
        customer_name=row.customer_name,
        warehouse_id=row.warehouse_id,
        status=SalesOrderStatus(row.status),
        total_amount=row.total_amount,
        created_at=row.created_at,
    )


def _payable_from_row(row: PayableModel) -> Payable:
    return Payable(
        id=row.id,
        supplier_id=row.supplier_id,
        amount=row.amount,
        due_at=row.due_at,
        description=row.description,
        purchase_order_id=row.purchase_order_id,
        status=row.status,
    )


def _receivable_from_row(row: ReceivableModel) -> Receivable:
    return Receivable(
        id=row.id,
        customer_name=row.customer_name,
        amount=row.amount,
        due_at=row.due_at,
        description=row.description,
        sale_id=row.sale_id,
        invoice_number=row.invoice_number,
        status=row.status,
    )


def _row_to_dict(row: Base) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _unit_rows(units: Any) -> list[ProductUnitModel]:
    rows = []
    for unit in units:
        if isinstance(unit, Mapping):
            unit = AlternateUnit.from_dict(unit)
        rows.append(
            ProductUnitModel(
                name=unit.name,
                conversion_factor=unit.conversion_factor,
                price=unit.price,
            )
        )
    return rows


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlAlchemyGateway(RemoteDataGateway):
    """
    RemoteDataGateway over a SQLAlchemy session factory.

    Each public method runs in its own ``session_scope`` transaction and
    maps SQLAlchemy failures onto the gateway exception family.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        t0 = time.monotonic()
        try:
            with session_scope(self._session_factory) as session:
                result = work(session)
        except (OperationalError, InterfaceError, DisconnectionError) as exc:
            logger.error("gateway_unavailable", extra={
                "operation": operation,
                "error": str(exc),
            })
            raise GatewayUnavailableError(operation, str(exc)) from exc
        except IntegrityError as exc:
            logger.warning("gateway_integrity_error", extra={
                "operation": operation,
                "error": str(exc.orig),
            })
            raise GatewayError(operation, f"constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("gateway_error", extra={
                "operation": operation,
                "error": str(exc),
            })
            raise GatewayError(operation, str(exc)) from exc

        logger.debug("gateway_call_completed", extra={
            "operation": operation,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result

    # Catalog reads

    def fetch_products(self) -> list[Product]:
        def work(session: Session) -> list[Product]:
            rows = session.execute(select(ProductModel).order_by(ProductModel.name)).scalars()
            return [_product_from_row(r) for r in rows]

        return self._run("fetch_products", work)

    def fetch_product(self, product_id: str) -> Product:
        def work(session: Session) -> Product:
            row = session.get(ProductModel, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            return _product_from_row(row)

        return self._run("fetch_product", work)

    def fetch_warehouses(self) -> list[Warehouse]:
        def work(session: Session) -> list[Warehouse]:
            rows = session.execute(select(WarehouseModel).order_by(WarehouseModel.name)).scalars()
            return [_warehouse_from_row(r) for r in rows]

        return self._run("fetch_warehouses", work)

    def fetch_suppliers(self) -> list[Supplier]:
        def work(session: Session) -> list[Supplier]:
            rows = session.execute(
                select(SupplierModel).order_by(SupplierModel.company_name)
            ).scalars()
            return [_supplier_from_row(r) for r in rows]

        return self._run("fetch_suppliers", work)

    def fetch_supplier(self, supplier_id: str) -> Supplier:
        def work(session: Session) -> Supplier:
            row = session.get(SupplierModel, supplier_id)
            if row is None:
                raise SupplierNotFoundError(supplier_id)
            return _supplier_from_row(row)

        return self._run("fetch_supplier", work)

    def search_products(self, term: str = "", page: int = 1, per_page: int = 20) -> Page:
        """Active products whose name contains ``term``, by name."""
        _check_page("search_products", page, per_page)

        def work(session: Session) -> Page:
            stmt = select(ProductModel).where(ProductModel.active.is_(True))
            if term:
                stmt = stmt.where(ProductModel.name.ilike(f"%{term}%"))
            total = session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            rows = session.execute(
                stmt.order_by(ProductModel.name, ProductModel.id)
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).scalars()
            return Page(
                items=tuple(_product_from_row(r) for r in rows),
                total_count=total,
                page=page,
                per_page=per_page,
            )

        return self._run("search_products", work)

    # Orders

    def fetch_purchase_orders(self) -> list[PurchaseOrder]:
        def work(session: Session) -> list[PurchaseOrder]:
            rows = session.execute(
                select(PurchaseOrderModel).order_by(PurchaseOrderModel.created_at.desc())
            ).scalars()
            return [_purchase_order_from_row(r) for r in rows]

        return self._run("fetch_purchase_orders", work)

    def fetch_purchase_order(self, purchase_order_id: str) -> PurchaseOrder:
        def work(session: Session) -> PurchaseOrder:
            row = session.get(PurchaseOrderModel, purchase_order_id)
            if row is None:
                raise PurchaseOrderNotFoundError(purchase_order_id)
            return _purchase_order_from_row(row)

        return self._run("fetch_purchase_order", work)

    def fetch_sales_orders(self) -> list[SalesOrder]:
        def work(session: Session) -> list[SalesOrder]:
            rows = session.execute(
                select(SalesOrderModel).order_by(SalesOrderModel.created_at.desc())
            ).scalars()
            return [_sales_order_from_row(r) for r in rows]

        return self._run("fetch_sales_orders", work)

    # Inventory

    def fetch_inventory_items(self) -> list[InventoryBatch]:
        def work(session: Session) -> list[InventoryBatch]:
            rows = session.execute(
                select(InventoryBatchModel).where(
                    InventoryBatchModel.status == BatchStatus.ACTIVE.value
                )
            ).scalars()
            return [_batch_from_row(r) for r in rows]

        return self._run("fetch_inventory_items", work)

    def fetch_batches_by_product(self, product_id: str) -> list[InventoryBatch]:
        def work(session: Session) -> list[InventoryBatch]:
            rows = session.execute(
                select(InventoryBatchModel).where(
                    InventoryBatchModel.product_id == product_id,
                    InventoryBatchModel.status == BatchStatus.ACTIVE.value,
                )
            ).scalars()
            return [_batch_from_row(r) for r in rows]

        return self._run("fetch_batches_by_product", work)

    def fetch_batch(self, batch_id: str) -> InventoryBatch:
        def work(session: Session) -> InventoryBatch:
            row = session.get(InventoryBatchModel, batch_id)
            if row is None:
                raise BatchNotFoundError(batch_id)
            return _batch_from_row(row)

        return self._run("fetch_batch", work)

    def fetch_batches_by_number(self, batch_numbers: Sequence[str]) -> list[InventoryBatch]:
        """Batches with any of ``batch_numbers``, in every status."""
        if not batch_numbers:
            return []

        def work(session: Session) -> list[InventoryBatch]:
            rows = session.execute(
                select(InventoryBatchModel).where(
                    InventoryBatchModel.batch_number.in_(list(batch_numbers))
                )
            ).scalars()
            return [_batch_from_row(r) for r in rows]

        return self._run("fetch_batches_by_number", work)

    def fetch_stock_movements(
        self,
        reference_id: str,
        movement_type: MovementType | None = None,
    ) -> list[StockMovement]:
        def work(session: Session) -> list[StockMovement]:
            stmt = select(StockMovementModel).where(StockMovementModel.reference_id == reference_id)
            if movement_type is not None:
                stmt = stmt.where(
                    StockMovementModel.movement_type == MovementType(movement_type).value
                )
            rows = session.execute(stmt.order_by(StockMovementModel.created_at)).scalars()
            return [_movement_from_row(r) for r in rows]

        return self._run("fetch_stock_movements", work)

    def search_inventory(self, query: InventorySearch) -> Page:
        _check_page("search_inventory", query.page, query.per_page)

        def work(session: Session) -> Page:
            stmt = select(InventoryBatchModel).join(
                ProductModel, ProductModel.id == InventoryBatchModel.product_id
            )
            if query.status is not None:
                stmt = stmt.where(InventoryBatchModel.status == BatchStatus(query.status).value)
            if query.term:
                pattern = f"%{query.term}%"
                stmt = stmt.where(
                    or_(
                        InventoryBatchModel.batch_number.ilike(pattern),
                        ProductModel.name.ilike(pattern),
                    )
                )
            if query.warehouse_id is not None:
                stmt = stmt.where(InventoryBatchModel.warehouse_id == query.warehouse_id)
            if query.product_id is not None:
                stmt = stmt.where(InventoryBatchModel.product_id == query.product_id)
            if query.expiry_from is not None:
                stmt = stmt.where(InventoryBatchModel.expires_at >= query.expiry_from)
            if query.expiry_to is not None:
                stmt = stmt.where(InventoryBatchModel.expires_at <= query.expiry_to)

            total = session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            rows = session.execute(
                stmt.order_by(InventoryBatchModel.received_at.desc(), InventoryBatchModel.id)
                .offset((query.page - 1) * query.per_page)
                .limit(query.per_page)
            ).scalars()
            return Page(
                items=tuple(_batch_from_row(r) for r in rows),
                total_count=total,
                page=query.page,
                per_page=query.per_page,
            )

        return self._run("search_inventory", work)

    def fetch_alerts(self) -> list[StockAlert]:
        def work(session: Session) -> list[StockAlert]:
            stock = (
                select(
                    InventoryBatchModel.product_id.label("product_id"),
                    func.sum(InventoryBatchModel.quantity).label("on_hand"),
                )
                .where(InventoryBatchModel.status == BatchStatus.ACTIVE.value)
                .group_by(InventoryBatchModel.product_id)
                .subquery()
            )
            rows = session.execute(
                select(ProductModel.id, ProductModel.name, ProductModel.min_stock_level, stock.c.on_hand)
                .outerjoin(stock, stock.c.product_id == ProductModel.id)
                .where(ProductModel.active.is_(True), ProductModel.min_stock_level > 0)
                .order_by(ProductModel.name, ProductModel.id)
            ).all()

            alerts = []
            for product_id, name, min_level, on_hand in rows:
                current = to_decimal(on_hand if on_hand is not None else 0)
                if current > min_level:
                    continue
                alerts.append(
                    StockAlert(
                        product_id=product_id,
                        product_name=name,
                        alert_type=AlertType.OUT_OF_STOCK if current <= 0 else AlertType.LOW_STOCK,
                        current_stock=current,
                        min_stock_level=min_level,
                    )
                )
            return alerts

        return self._run("fetch_alerts", work)

    def fetch_dashboard_kpis(self) -> DashboardKpis:
        def work(session: Session) -> DashboardKpis:
            products = session.execute(
                select(ProductModel.id).where(ProductModel.active.is_(True))
            ).scalars().all()
            batches = session.execute(
                select(InventoryBatchModel.quantity, InventoryBatchModel.unit_cost).where(
                    InventoryBatchModel.status == BatchStatus.ACTIVE.value
                )
            ).all()
            open_purchase_orders = session.execute(
                select(PurchaseOrderModel.id).where(
                    PurchaseOrderModel.status.in_(ACTIVE_PURCHASE_ORDER_STATUSES)
                )
            ).scalars().all()
            open_sales_orders = session.execute(
                select(SalesOrderModel.id).where(
                    SalesOrderModel.status.in_(ACTIVE_SALES_ORDER_STATUSES)
                )
            ).scalars().all()
            warehouses = session.execute(
                select(WarehouseModel.id).where(WarehouseModel.active.is_(True))
            ).scalars().all()

            return DashboardKpis(
                total_products=len(products),
                total_stock_units=sum((q for q, _ in batches), Decimal("0")),
                inventory_value=sum((q * c for q, c in batches), Decimal("0")),
                active_orders=len(open_purchase_orders) + len(open_sales_orders),
                warehouse_count=len(warehouses),
            )

        return self._run("fetch_dashboard_kpis", work)

    # Mutations

    def update_batch_quantity(
        self,
        batch_id: str,
        new_quantity: Decimal,
        expected_quantity: Decimal | None = None,
    ) -> InventoryBatch:
        new_quantity = to_decimal(new_quantity)
        if new_quantity < 0:
            raise GatewayError(
                "update_batch_quantity",
                f"batch {batch_id} quantity cannot be negative, got {new_quantity}",
            )

        def work(session: Session) -> InventoryBatch:
            row = session.execute(
                select(InventoryBatchModel)
                .where(InventoryBatchModel.id == batch_id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                raise BatchNotFoundError(batch_id)

            if expected_quantity is not None and row.quantity != to_decimal(expected_quantity):
                logger.warning("batch_update_conflict", extra={
                    "batch_id": batch_id,
                    "expected_quantity": str(expected_quantity),
                    "actual_quantity": str(row.quantity),
                    "version": row.version,
                })
                raise BatchConflictError(batch_id, to_decimal(expected_quantity), row.quantity)

            previous = row.quantity
            row.quantity = new_quantity
            row.version = row.version + 1
            if new_quantity == 0 and row.status == BatchStatus.ACTIVE.value:
                row.status = BatchStatus.DEPLETED.value
            elif new_quantity > 0 and row.status == BatchStatus.DEPLETED.value:
                row.status = BatchStatus.ACTIVE.value
            session.flush()

            logger.info("batch_quantity_updated", extra={
                "batch_id": batch_id,
                "previous_quantity": str(previous),
                "new_quantity": str(new_quantity),
                "status": row.status,
                "version": row.version,
            })
            return _batch_from_row(row)

        return self._run("update_batch_quantity", work)

    def create_batch(self, batch: InventoryBatch) -> InventoryBatch:
        def work(session: Session) -> InventoryBatch:
            row = InventoryBatchModel(
                id=batch.id,
                product_id=batch.product_id,
                warehouse_id=batch.warehouse_id,
                batch_number=batch.batch_number,
                quantity=batch.quantity,
                unit_cost=batch.unit_cost,
                received_at=batch.received_at,
                expires_at=batch.expires_at,
                status=batch.status.value,
                version=batch.version,
            )
            session.add(row)
            session.flush()
            return _batch_from_row(row)

        return self._run("create_batch", work)

    def create_stock_movement(self, movement: StockMovement) -> StockMovement:
        def work(session: Session) -> StockMovement:
            row = StockMovementModel(
                id=movement.id,
                product_id=movement.product_id,
                warehouse_id=movement.warehouse_id,
                movement_type=movement.movement_type.value,
                quantity=movement.quantity,
                reference_id=movement.reference_id,
                unit_cost=movement.unit_cost,
                batch_id=movement.batch_id,
                reason=movement.reason,
                created_by=movement.created_by,
                created_at=movement.created_at,
            )
            session.add(row)
            session.flush()
            return _movement_from_row(row)

        return self._run("create_stock_movement", work)

    def create_product(self, product: Product) -> Product:
        def work(session: Session) -> Product:
            row = ProductModel(
                id=product.id,
                name=product.name,
                base_unit=product.base_unit,
                shelf_life_days=product.shelf_life_days,
                min_stock_level=product.min_stock_level,
                base_price=product.base_price,
                active=product.active,
            )
            row.units = _unit_rows(product.alternate_units)
            session.add(row)
            session.flush()
            return _product_from_row(row)

        return self._run("create_product", work)

    def update_product(self, product_id: str, changes: Mapping[str, Any]) -> Product:
        unknown = set(changes) - _PRODUCT_FIELDS - {"alternate_units"}
        if unknown:
            raise GatewayError("update_product", f"unknown product fields {sorted(unknown)}")

        def work(session: Session) -> Product:
            row = session.get(ProductModel, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            for name, value in changes.items():
                if name == "alternate_units":
                    row.units = _unit_rows(value)
                else:
                    setattr(row, name, value)
            session.flush()
            return _product_from_row(row)

        return self._run("update_product", work)

    def create_warehouse(self, warehouse: Warehouse) -> Warehouse:
        def work(session: Session) -> Warehouse:
            row = WarehouseModel(
                id=warehouse.id,
                name=warehouse.name,
                location=warehouse.location,
                capacity=warehouse.capacity,
                active=warehouse.active,
            )
            session.add(row)
            session.flush()
            return _warehouse_from_row(row)

        return self._run("create_warehouse", work)

    def create_supplier(self, supplier: Supplier) -> Supplier:
        def work(session: Session) -> Supplier:
            row = SupplierModel(
                id=supplier.id,
                company_name=supplier.company_name,
                contact_person=supplier.contact_person,
                phone=supplier.phone,
                email=supplier.email,
                payment_terms=supplier.payment_terms,
                active=supplier.active,
            )
            session.add(row)
            session.flush()
            return _supplier_from_row(row)

        return self._run("create_supplier", work)

    def update_supplier(self, supplier_id: str, changes: Mapping[str, Any]) -> Supplier:
        unknown = set(changes) - _SUPPLIER_FIELDS
        if unknown:
            raise GatewayError("update_supplier", f"unknown supplier fields {sorted(unknown)}")

        def work(session: Session) -> Supplier:
            row = session.get(SupplierModel, supplier_id)
            if row is None:
                raise SupplierNotFoundError(supplier_id)
            for name, value in changes.items():
                setattr(row, name, value)
            session.flush()
            return _supplier_from_row(row)

        return self._run("update_supplier", work)

    def update_purchase_order_status(
        self,
        purchase_order_id: str,
        status: PurchaseOrderStatus,
        delivered_at: datetime | None = None,
    ) -> PurchaseOrder:
        def work(session: Session) -> PurchaseOrder:
            row = session.get(PurchaseOrderModel, purchase_order_id)
            if row is None:
                raise PurchaseOrderNotFoundError(purchase_order_id)
            row.status = PurchaseOrderStatus(status).value
            if delivered_at is not None:
                row.actual_delivery_at = delivered_at
            session.flush()
            return _purchase_order_from_row(row)

        return self._run("update_purchase_order_status", work)

    def create_payable(self, payable: Payable) -> Payable:
        def work(session: Session) -> Payable:
            row = PayableModel(
                id=payable.id,
                supplier_id=payable.supplier_id,
                amount=payable.amount,
                due_at=payable.due_at,
                description=payable.description,
                purchase_order_id=payable.purchase_order_id,
                status=payable.status,
            )
            session.add(row)
            session.flush()
            return _payable_from_row(row)

        return self._run("create_payable", work)

    def create_receivable(self, receivable: Receivable) -> Receivable:
        def work(session: Session) -> Receivable:
            row = ReceivableModel(
                id=receivable.id,
                customer_name=receivable.customer_name,
                amount=receivable.amount,
                due_at=receivable.due_at,
                description=receivable.description,
                sale_id=receivable.sale_id,
                invoice_number=receivable.invoice_number,
                status=receivable.status,
            )
            session.add(row)
            session.flush()
            return _receivable_from_row(row)

        return self._run("create_receivable", work)

    # Idempotency ledger

    def is_action_applied(self, idempotency_key: str) -> bool:
        def work(session: Session) -> bool:
            found = session.execute(
                select(AppliedActionModel.id).where(
                    AppliedActionModel.idempotency_key == idempotency_key
                )
            ).scalar_one_or_none()
            return found is not None

        return self._run("is_action_applied", work)

    def record_applied_action(self, idempotency_key: str, action_type: str) -> None:
        def work(session: Session) -> None:
            existing = session.execute(
                select(AppliedActionModel.id).where(
                    AppliedActionModel.idempotency_key == idempotency_key
                )
            ).scalar_one_or_none()
            if existing is not None:
                return
            session.add(
                AppliedActionModel(
                    idempotency_key=idempotency_key,
                    action_type=action_type,
                    applied_at=self._clock.now(),
                )
            )

        self._run("record_applied_action", work)

    # Generic row access

    @staticmethod
    def _model(operation: str, table: str) -> type[Base]:
        model = TABLES.get(table)
        if model is None:
            raise GatewayError(operation, f"unknown table {table!r}")
        return model

    @staticmethod
    def _check_columns(operation: str, model: type[Base], names: Any) -> None:
        columns = set(model.__table__.columns.keys())
        unknown = set(names) - columns
        if unknown:
            raise GatewayError(
                operation, f"unknown columns {sorted(unknown)} for {model.__tablename__}"
            )

    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        model = self._model("select", table)
        filters = filters or {}
        self._check_columns("select", model, filters)

        def work(session: Session) -> list[dict[str, Any]]:
            stmt = select(model)
            for name, value in filters.items():
                stmt = stmt.where(getattr(model, name) == value)
            return [_row_to_dict(r) for r in session.execute(stmt).scalars()]

        return self._run(f"select:{table}", work)

    def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        model = self._model("insert", table)
        self._check_columns("insert", model, values)

        def work(session: Session) -> dict[str, Any]:
            row = model(**values)
            session.add(row)
            session.flush()
            return _row_to_dict(row)

        return self._run(f"insert:{table}", work)

    def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        model = self._model("update", table)
        self._check_columns("update", model, values)
        if "id" in values:
            raise GatewayError("update", "primary key cannot be updated")

        def work(session: Session) -> dict[str, Any]:
            row = session.get(model, row_id)
            if row is None:
                raise GatewayError(f"update:{table}", f"row {row_id} not found")
            for name, value in values.items():
                setattr(row, name, value)
            session.flush()
            return _row_to_dict(row)

        return self._run(f"update:{table}", work)
