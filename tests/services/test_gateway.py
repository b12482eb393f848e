"""
Tests for the SQLAlchemy remote data gateway.

Covers:
- Compare-and-swap batch updates, version and status transitions
- Catalog reads and writes, unknown fields, missing rows
- Error mapping: unreachable store vs rejected write
- Idempotency ledger
- Generic table access
- Batch search, product search and stock alerts
- Lookups by batch number and movement reference; receivables
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.db.engine import create_engine_from_url, create_session_factory
from inventory_kernel.domain.entities import (
    AlertType,
    AlternateUnit,
    BatchStatus,
    MovementType,
    Product,
    PurchaseOrderStatus,
    Receivable,
    StockMovement,
    Supplier,
    Warehouse,
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
from inventory_services.gateway import InventorySearch, SqlAlchemyGateway


class TestBatchQuantityUpdate:
    def test_unconditional_update(self, gateway, fifo_batches):
        b1, _ = fifo_batches

        updated = gateway.update_batch_quantity(b1.id, Decimal("6"))

        assert updated.quantity == Decimal("6")
        assert updated.version == b1.version + 1
        assert gateway.fetch_batch(b1.id).quantity == Decimal("6")

    def test_compare_and_swap_match(self, gateway, fifo_batches):
        b1, _ = fifo_batches
        updated = gateway.update_batch_quantity(b1.id, Decimal("4"), expected_quantity=Decimal("10"))
        assert updated.quantity == Decimal("4")

    def test_compare_and_swap_conflict_leaves_row(self, gateway, fifo_batches):
        b1, _ = fifo_batches
        gateway.update_batch_quantity(b1.id, Decimal("7"))

        with pytest.raises(BatchConflictError) as exc_info:
            gateway.update_batch_quantity(b1.id, Decimal("0"), expected_quantity=Decimal("10"))

        assert exc_info.value.batch_id == b1.id
        assert exc_info.value.expected == Decimal("10")
        assert exc_info.value.actual == Decimal("7")
        assert gateway.fetch_batch(b1.id).quantity == Decimal("7")

    def test_depletes_at_zero_and_reactivates(self, gateway, product, fifo_batches):
        b1, _ = fifo_batches

        assert gateway.update_batch_quantity(b1.id, Decimal("0")).status == BatchStatus.DEPLETED
        assert b1.id not in {b.id for b in gateway.fetch_batches_by_product(product.id)}

        assert gateway.update_batch_quantity(b1.id, Decimal("3")).status == BatchStatus.ACTIVE

    def test_expired_status_not_changed_by_quantity(self, gateway, product, create_batch):
        batch = create_batch(product, 5, received_days_ago=100, status=BatchStatus.EXPIRED)
        assert gateway.update_batch_quantity(batch.id, Decimal("0")).status == BatchStatus.EXPIRED

    def test_negative_quantity_rejected_before_store(self, gateway, fifo_batches):
        gateway.reset_calls()

        with pytest.raises(GatewayError):
            gateway.update_batch_quantity(fifo_batches[0].id, Decimal("-1"))

        assert gateway.calls["update_batch_quantity"] == 0

    def test_missing_batch(self, gateway):
        with pytest.raises(BatchNotFoundError):
            gateway.update_batch_quantity("missing", Decimal("1"))


class TestCatalog:
    def test_product_round_trip(self, gateway, product):
        fetched = gateway.fetch_product(product.id)

        assert fetched == product
        assert fetched.find_unit("sack").conversion_factor == Decimal("25")

    def test_missing_product(self, gateway):
        with pytest.raises(ProductNotFoundError):
            gateway.fetch_product("missing")

    def test_update_product_fields_and_units(self, gateway, product):
        updated = gateway.update_product(product.id, {
            "name": "Basmati",
            "alternate_units": [AlternateUnit("bag", Decimal("5"))],
        })

        assert updated.name == "Basmati"
        assert [u.name for u in updated.alternate_units] == ["bag"]

    def test_update_product_unknown_field(self, gateway, product):
        with pytest.raises(GatewayError):
            gateway.update_product(product.id, {"colour": "red"})

    def test_update_missing_product(self, gateway):
        with pytest.raises(ProductNotFoundError):
            gateway.update_product("missing", {"name": "x"})

    def test_supplier_update(self, gateway, supplier):
        updated = gateway.update_supplier(supplier.id, {"payment_terms": "COD"})
        assert updated.payment_terms == "COD"
        assert gateway.fetch_suppliers() == [updated]

    def test_update_missing_supplier(self, gateway):
        with pytest.raises(SupplierNotFoundError):
            gateway.update_supplier("missing", {"phone": "555"})

    def test_fetch_supplier(self, gateway, supplier):
        assert gateway.fetch_supplier(supplier.id) == supplier

    def test_fetch_missing_supplier(self, gateway):
        with pytest.raises(SupplierNotFoundError) as exc_info:
            gateway.fetch_supplier("missing")
        assert exc_info.value.supplier_id == "missing"

    def test_warehouses(self, gateway):
        gateway.create_warehouse(Warehouse(id="wh-2", name="Overflow", capacity=Decimal("500")))
        [warehouse] = gateway.fetch_warehouses()
        assert warehouse.capacity == Decimal("500")

    def test_duplicate_id_is_rejected_not_unavailable(self, gateway, product):
        with pytest.raises(GatewayError) as exc_info:
            gateway.create_product(Product(id=product.id, name="Copy", base_unit="kg"))
        assert not isinstance(exc_info.value, GatewayUnavailableError)


class TestOrders:
    def test_purchase_order_with_lines(self, gateway, supplier, product, create_purchase_order):
        order = create_purchase_order(supplier.id, [(product.id, 4, "2.50")], po_number="PO77")

        fetched = gateway.fetch_purchase_order(order.id)

        assert fetched.po_number == "PO77"
        assert fetched.total_amount == Decimal("10.00")
        assert [(l.product_id, l.quantity) for l in fetched.lines] == [(product.id, Decimal("4"))]

    def test_missing_purchase_order(self, gateway):
        with pytest.raises(PurchaseOrderNotFoundError):
            gateway.fetch_purchase_order("missing")
        with pytest.raises(PurchaseOrderNotFoundError):
            gateway.update_purchase_order_status("missing", PurchaseOrderStatus.RECEIVED)

    def test_dashboard_counts_open_orders(self, gateway, supplier, product, create_purchase_order):
        create_purchase_order(supplier.id, [(product.id, 1, "1")])
        create_purchase_order(supplier.id, [(product.id, 1, "1")], status=PurchaseOrderStatus.RECEIVED)

        assert gateway.fetch_dashboard_kpis().active_orders == 1


class TestUnavailable:
    def test_operational_error_maps_to_unavailable(self, clock, captured_logs):
        engine = create_engine_from_url("sqlite://")
        gateway = SqlAlchemyGateway(create_session_factory(engine), clock)
        try:
            with pytest.raises(GatewayUnavailableError) as exc_info:
                gateway.fetch_products()
        finally:
            engine.dispose()

        assert exc_info.value.operation == "fetch_products"
        assert any(r["message"] == "gateway_unavailable" for r in captured_logs())


class TestIdempotencyLedger:
    def test_record_and_check(self, gateway):
        key = f"till-01:update_batch_quantity:{uuid4()}"
        assert not gateway.is_action_applied(key)

        gateway.record_applied_action(key, "update_batch_quantity")
        gateway.record_applied_action(key, "update_batch_quantity")

        assert gateway.is_action_applied(key)
        assert len(gateway.select("applied_actions", {"idempotency_key": key})) == 1


class TestGenericAccess:
    def test_select_with_filters(self, gateway, product, fifo_batches):
        rows = gateway.select("inventory_batches", {"batch_number": "B2"})
        assert [r["id"] for r in rows] == [fifo_batches[1].id]

    def test_insert_and_update(self, gateway, clock):
        gateway.insert("warehouses", {"id": "wh-9", "name": "Annex"})

        row = gateway.update("warehouses", "wh-9", {"location": "Dock 4"})

        assert row["location"] == "Dock 4"
        assert gateway.fetch_warehouses()[0].location == "Dock 4"

    @pytest.mark.parametrize(
        "call",
        [
            lambda g: g.select("ledgers"),
            lambda g: g.select("warehouses", {"colour": "red"}),
            lambda g: g.insert("warehouses", {"id": "w", "name": "n", "colour": "red"}),
            lambda g: g.update("warehouses", "w", {"id": "other"}),
            lambda g: g.update("warehouses", "missing", {"name": "n"}),
        ],
        ids=["unknown_table", "unknown_filter", "unknown_column", "primary_key", "missing_row"],
    )
    def test_rejected(self, gateway, call):
        with pytest.raises(GatewayError):
            call(gateway)

    def test_operation_names_carry_table(self, gateway, captured_logs):
        gateway.select("warehouses")
        operations = {r.get("operation") for r in captured_logs() if r["message"] == "gateway_call_completed"}
        assert "select:warehouses" in operations


class TestLookups:
    def test_batches_by_number_include_every_status(self, gateway, product, create_batch):
        active = create_batch(product, 3, received_days_ago=1, batch_number="PO-1-a")
        depleted = create_batch(product, 0, received_days_ago=1, batch_number="PO-1-b", status=BatchStatus.DEPLETED)
        create_batch(product, 3, received_days_ago=1, batch_number="other")

        found = gateway.fetch_batches_by_number(["PO-1-a", "PO-1-b", "PO-1-c"])

        assert {b.id for b in found} == {active.id, depleted.id}

    def test_batches_by_number_empty_skips_store(self, gateway):
        gateway.reset_calls()
        assert gateway.fetch_batches_by_number([]) == []
        assert gateway.calls["fetch_batches_by_number"] == 0

    def test_stock_movements_by_reference_and_type(self, gateway, clock, product, fifo_batches):
        b1, _ = fifo_batches
        for movement_type, reference in [
            (MovementType.PURCHASE, "po-1"),
            (MovementType.ADJUSTMENT, "po-1"),
            (MovementType.PURCHASE, "po-2"),
        ]:
            gateway.create_stock_movement(StockMovement(
                id=str(uuid4()),
                product_id=product.id,
                warehouse_id="wh-main",
                movement_type=movement_type,
                quantity=Decimal("1"),
                reference_id=reference,
                unit_cost=None,
                created_at=clock.now(),
                batch_id=b1.id,
            ))

        assert len(gateway.fetch_stock_movements("po-1")) == 2
        [purchase] = gateway.fetch_stock_movements("po-1", MovementType.PURCHASE)
        assert purchase.batch_id == b1.id


class TestInventorySearch:
    @pytest.fixture
    def stocked(self, create_product, create_batch):
        rice = create_product(name="Jasmine Rice")
        beans = create_product(name="Black Beans")
        return {
            "rice_old": create_batch(rice, 4, received_days_ago=9, batch_number="R-100", expires_in_days=10),
            "rice_new": create_batch(rice, 6, received_days_ago=2, batch_number="R-200", expires_in_days=60),
            "beans": create_batch(beans, 8, received_days_ago=5, batch_number="K-300",
                                  expires_in_days=30, warehouse_id="wh-annex"),
            "gone": create_batch(beans, 0, received_days_ago=1, batch_number="K-400",
                                 status=BatchStatus.DEPLETED),
        }

    def test_active_batches_newest_first(self, gateway, stocked):
        page = gateway.search_inventory(InventorySearch())

        assert [b.batch_number for b in page.items] == ["R-200", "K-300", "R-100"]
        assert page.total_count == 3

    def test_term_matches_product_name_or_batch_number(self, gateway, stocked):
        by_name = gateway.search_inventory(InventorySearch(term="rice"))
        by_number = gateway.search_inventory(InventorySearch(term="k-3"))

        assert {b.batch_number for b in by_name.items} == {"R-100", "R-200"}
        assert [b.batch_number for b in by_number.items] == ["K-300"]

    def test_filters(self, gateway, clock, stocked):
        annex = gateway.search_inventory(InventorySearch(warehouse_id="wh-annex"))
        rice = gateway.search_inventory(InventorySearch(product_id=stocked["rice_old"].product_id))
        expiring = gateway.search_inventory(InventorySearch(
            expiry_from=clock.now(),
            expiry_to=clock.now() + timedelta(days=31),
        ))
        every_status = gateway.search_inventory(InventorySearch(term="K-", status=None))

        assert [b.id for b in annex.items] == [stocked["beans"].id]
        assert rice.total_count == 2
        assert {b.batch_number for b in expiring.items} == {"R-100", "K-300"}
        assert every_status.total_count == 2

    def test_pagination(self, gateway, stocked):
        first = gateway.search_inventory(InventorySearch(per_page=2))
        second = gateway.search_inventory(InventorySearch(page=2, per_page=2))

        assert [b.batch_number for b in first.items] == ["R-200", "K-300"]
        assert first.has_next
        assert [b.batch_number for b in second.items] == ["R-100"]
        assert second.total_count == 3
        assert second.page_count == 2
        assert not second.has_next

    def test_bad_page_rejected_before_store(self, gateway):
        gateway.reset_calls()
        with pytest.raises(GatewayError):
            gateway.search_inventory(InventorySearch(page=0))
        assert gateway.calls["search_inventory"] == 0


class TestProductSearch:
    def test_active_products_by_name(self, gateway, create_product):
        create_product(name="Jasmine Rice")
        create_product(name="Brown Rice")
        retired = create_product(name="Rice Flour")
        gateway.update_product(retired.id, {"active": False})
        create_product(name="Black Beans")

        page = gateway.search_products("rice")

        assert [p.name for p in page.items] == ["Brown Rice", "Jasmine Rice"]
        assert page.total_count == 2

    def test_empty_term_pages_everything(self, gateway, create_product):
        for name in ("A", "B", "C"):
            create_product(name=name)

        page = gateway.search_products(page=2, per_page=2)

        assert [p.name for p in page.items] == ["C"]
        assert page.total_count == 3

    def test_bad_per_page(self, gateway):
        with pytest.raises(GatewayError):
            gateway.search_products(per_page=0)


class TestAlerts:
    def test_low_and_out_of_stock(self, gateway, create_product, create_batch):
        low = create_product(name="Black Beans")
        create_batch(low, 3, received_days_ago=2)
        create_batch(low, 2, received_days_ago=1)
        empty = create_product(name="Chickpeas")
        create_batch(empty, 0, received_days_ago=1, status=BatchStatus.DEPLETED)
        stocked = create_product(name="Jasmine Rice")
        create_batch(stocked, 6, received_days_ago=1)

        alerts = gateway.fetch_alerts()

        assert [(a.product_name, a.alert_type, a.current_stock) for a in alerts] == [
            ("Black Beans", AlertType.LOW_STOCK, Decimal("5")),
            ("Chickpeas", AlertType.OUT_OF_STOCK, Decimal("0")),
        ]
        assert alerts[0].min_stock_level == Decimal("5")

    def test_zero_minimum_and_inactive_products_skipped(self, gateway, create_product):
        untracked = create_product(name="Napkins")
        gateway.update_product(untracked.id, {"min_stock_level": Decimal("0")})
        retired = create_product(name="Old Stock")
        gateway.update_product(retired.id, {"active": False})

        assert gateway.fetch_alerts() == []


class TestReceivables:
    def test_create_and_select(self, gateway, clock):
        receivable = gateway.create_receivable(Receivable(
            id=str(uuid4()),
            customer_name="Walk-in Customer",
            amount=Decimal("12.50"),
            due_at=clock.now() + timedelta(days=30),
            description="Payment for POS Sale s-1",
            sale_id="s-1",
            invoice_number="POS-s-1",
        ))

        [row] = gateway.select("receivables", {"sale_id": "s-1"})
        assert receivable.status == "outstanding"
        assert row["amount"] == Decimal("12.50")
        assert row["invoice_number"] == "POS-s-1"
