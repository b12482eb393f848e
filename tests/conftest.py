"""
Pytest fixtures for the inventory core test suite.

Provides:
- In-memory SQLite engine standing in for the remote relational store
- A recording gateway that counts calls and injects failures
- Deterministic clock, device-local store, cache, data access layer
- Seeded catalog: a product with alternate units and two FIFO batches
- Structured log capture
"""

import json
import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from inventory_config import get_active_config
from inventory_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.entities import (
    AlternateUnit,
    BatchStatus,
    InventoryBatch,
    Product,
    PurchaseOrder,
    PurchaseOrderStatus,
    Sale,
    SaleLineItem,
    Supplier,
)
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_services.cache_store import CacheStore
from inventory_services.data_access import DataAccessLayer
from inventory_services.deduction_service import FIFODeductionEngine
from inventory_services.gateway import SqlAlchemyGateway
from inventory_services.local_store import MemoryLocalStore
from inventory_services.offline_queue import OfflineActionQueue

TEST_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, deduction_engine):
            deduction_engine.deduct_for_sale(sale)
            logs = captured_logs()
            assert any(r["message"] == "fifo_deduction_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Recording gateway
# =============================================================================


class RecordingGateway(SqlAlchemyGateway):
    """
    SqlAlchemyGateway that counts calls and can fail or intercept them.

    ``fail(operation, *outcomes)`` queues outcomes for the next calls of an
    operation: ``None`` lets the call through, an exception is raised
    instead of touching the store. ``before(operation, hook)`` runs ``hook``
    once, just before the next call of ``operation`` reaches the store.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: Counter[str] = Counter()
        self._outcomes: dict[str, list[Exception | None]] = {}
        self._hooks: dict[str, Callable[[], None]] = {}

    def fail(self, operation: str, *outcomes: Exception | None) -> None:
        self._outcomes.setdefault(operation, []).extend(outcomes)

    def before(self, operation: str, hook: Callable[[], None]) -> None:
        self._hooks[operation] = hook

    def reset_calls(self) -> None:
        self.calls.clear()

    def _run(self, operation, work):
        name = operation.split(":")[0]
        self.calls[name] += 1
        queued = self._outcomes.get(name)
        if queued:
            outcome = queued.pop(0)
            if outcome is not None:
                raise outcome
        hook = self._hooks.pop(name, None)
        if hook is not None:
            hook()
        return super()._run(operation, work)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def engine():
    engine = create_engine_from_url("sqlite://")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def gateway(session_factory, clock) -> RecordingGateway:
    return RecordingGateway(session_factory, clock)


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def local_store() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture
def cache(local_store, clock, config) -> CacheStore:
    return CacheStore(local_store, clock, config.cache.schema_version)


@pytest.fixture
def data_access(gateway, cache, config) -> DataAccessLayer:
    return DataAccessLayer(gateway, cache, config.cache)


@pytest.fixture
def offline_queue(local_store, data_access, config, clock) -> OfflineActionQueue:
    return OfflineActionQueue(local_store, data_access, config.offline, clock)


@pytest.fixture
def deduction_engine(data_access, config, clock) -> FIFODeductionEngine:
    return FIFODeductionEngine(data_access, config.deduction, clock)


# =============================================================================
# Catalog data
# =============================================================================


@pytest.fixture
def create_product(gateway) -> Callable[..., Product]:
    def _create(
        name: str = "Jasmine Rice",
        base_unit: str = "kg",
        alternate_units: tuple[AlternateUnit, ...] = (
            AlternateUnit("g", Decimal("0.001")),
            AlternateUnit("sack", Decimal("25")),
        ),
        shelf_life_days: int | None = 180,
    ) -> Product:
        return gateway.create_product(
            Product(
                id=str(uuid4()),
                name=name,
                base_unit=base_unit,
                alternate_units=alternate_units,
                shelf_life_days=shelf_life_days,
                min_stock_level=Decimal("5"),
                base_price=Decimal("2.50"),
            )
        )

    return _create


@pytest.fixture
def create_batch(gateway, clock) -> Callable[..., InventoryBatch]:
    def _create(
        product: Product,
        quantity: Decimal | int | str,
        received_days_ago: float,
        batch_number: str | None = None,
        expires_in_days: float | None = 90,
        unit_cost: str = "1.20",
        warehouse_id: str = "wh-main",
        status: BatchStatus = BatchStatus.ACTIVE,
    ) -> InventoryBatch:
        now = clock.now()
        return gateway.create_batch(
            InventoryBatch(
                id=str(uuid4()),
                product_id=product.id,
                warehouse_id=warehouse_id,
                batch_number=batch_number or f"B-{uuid4().hex[:6]}",
                quantity=Decimal(str(quantity)),
                unit_cost=Decimal(unit_cost),
                received_at=now - timedelta(days=received_days_ago),
                expires_at=(
                    now + timedelta(days=expires_in_days) if expires_in_days is not None else None
                ),
                status=status,
            )
        )

    return _create


@pytest.fixture
def product(create_product) -> Product:
    return create_product()


@pytest.fixture
def fifo_batches(product, create_batch) -> tuple[InventoryBatch, InventoryBatch]:
    """B1 received on day 1 and B2 on day 5, ten units each."""
    b1 = create_batch(product, 10, received_days_ago=9, batch_number="B1")
    b2 = create_batch(product, 10, received_days_ago=5, batch_number="B2")
    return b1, b2


@pytest.fixture
def supplier(gateway) -> Supplier:
    return gateway.create_supplier(
        Supplier(id=str(uuid4()), company_name="Harvest Wholesale", payment_terms="Net 15")
    )


@pytest.fixture
def create_purchase_order(gateway, clock) -> Callable[..., PurchaseOrder]:
    """Insert an order with (product_id, quantity, unit_price) lines."""

    def _create(
        supplier_id: str,
        lines: list[tuple[str, Decimal | int | str, Decimal | int | str]],
        po_number: str | None = None,
        status: PurchaseOrderStatus = PurchaseOrderStatus.ORDERED,
    ) -> PurchaseOrder:
        order_id = str(uuid4())
        total = sum(
            (Decimal(str(qty)) * Decimal(str(price)) for _, qty, price in lines), Decimal("0")
        )
        gateway.insert("purchase_orders", {
            "id": order_id,
            "po_number": po_number or f"PO{uuid4().hex[:6]}",
            "supplier_id": supplier_id,
            "status": status.value,
            "total_amount": total,
            "created_at": clock.now(),
        })
        for product_id, qty, price in lines:
            gateway.insert("purchase_order_lines", {
                "purchase_order_id": order_id,
                "product_id": product_id,
                "quantity": Decimal(str(qty)),
                "unit_price": Decimal(str(price)),
            })
        return gateway.fetch_purchase_order(order_id)

    return _create


@pytest.fixture
def make_sale() -> Callable[..., Sale]:
    """Build a sale from (product_id, quantity, unit[, unit_price]) tuples."""

    def _make(
        *lines: tuple,
        receipt_number: str | None = None,
        payment_method: str = "cash",
        converted_from_order_id: str | None = None,
    ) -> Sale:
        return Sale(
            id=str(uuid4()),
            line_items=tuple(
                SaleLineItem(
                    product_id=pid,
                    quantity=Decimal(str(qty)),
                    unit=unit,
                    unit_price=Decimal(str(price[0])) if price else Decimal("0"),
                )
                for pid, qty, unit, *price in lines
            ),
            receipt_number=receipt_number,
            payment_method=payment_method,
            converted_from_order_id=converted_from_order_id,
        )

    return _make
