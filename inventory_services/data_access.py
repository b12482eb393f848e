"""
inventory_services.data_access -- Cached read/write facade over the gateway.

Responsibility:
    Per-entity read accessors that try the CacheStore first, fall back to
    the RemoteDataGateway on a miss and populate the cache with the
    entity's configured TTL; mutation helpers that write through the
    gateway and then invalidate every cache namespace the write can stale.

Architecture position:
    Services -- the single entry point the deduction engine, expiry
    tracker, receiving service and offline replay use for remote data.

Invariants enforced:
    - Cache-then-fetch: a read with ``force_refresh=False`` never calls the
      gateway while a fresh entry exists.
    - Freshness over availability: a gateway error propagates unchanged.
      There is no fallback to an expired entry.
    - Invalidation after mutation: once a mutation succeeds, the next read
      of every affected entity is a cache miss. Invalidation is coarse
      (whole namespace by prefix, including per-product batch keys).
    - A failed mutation invalidates nothing.

Failure modes:
    - NotFoundError subclasses and GatewayError propagate from the gateway.
    - Cache failures never surface; CacheStore downgrades them to misses.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from inventory_config.schema import CacheConfig
from inventory_kernel.domain.entities import (
    DashboardKpis,
    InventoryBatch,
    MovementType,
    Page,
    Payable,
    Product,
    PurchaseOrder,
    PurchaseOrderStatus,
    Receivable,
    SalesOrder,
    StockAlert,
    StockMovement,
    Supplier,
    Warehouse,
)
from inventory_kernel.exceptions import InventoryCoreError
from inventory_kernel.logging_config import get_logger
from inventory_services.cache_store import CacheStore
from inventory_services.gateway import InventorySearch, RemoteDataGateway

logger = get_logger("services.data_access")


@dataclass(frozen=True)
class EntitySpec:
    """How one cached entity collection is fetched and (de)serialized."""

    name: str
    fetch: Callable[[RemoteDataGateway], Any]
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


def _list_spec(name: str, fetch: Callable[[RemoteDataGateway], Any], entity: type) -> EntitySpec:
    return EntitySpec(
        name=name,
        fetch=fetch,
        encode=lambda items: [item.to_dict() for item in items],
        decode=lambda raw: [entity.from_dict(item) for item in raw],
    )


ENTITY_SPECS: dict[str, EntitySpec] = {
    "products": _list_spec("products", lambda g: g.fetch_products(), Product),
    "warehouses": _list_spec("warehouses", lambda g: g.fetch_warehouses(), Warehouse),
    "suppliers": _list_spec("suppliers", lambda g: g.fetch_suppliers(), Supplier),
    "purchase_orders": _list_spec(
        "purchase_orders", lambda g: g.fetch_purchase_orders(), PurchaseOrder
    ),
    "sales_orders": _list_spec("sales_orders", lambda g: g.fetch_sales_orders(), SalesOrder),
    "inventory": _list_spec("inventory", lambda g: g.fetch_inventory_items(), InventoryBatch),
    "dashboard": EntitySpec(
        name="dashboard",
        fetch=lambda g: g.fetch_dashboard_kpis(),
        encode=lambda kpis: kpis.to_dict(),
        decode=DashboardKpis.from_dict,
    ),
    "alerts": _list_spec("alerts", lambda g: g.fetch_alerts(), StockAlert),
}

PRELOAD_ENTITIES = ("products", "warehouses", "inventory", "dashboard")


@dataclass(frozen=True)
class PreloadOutcome:
    """Result of one independent preload read: data or the error it raised."""

    entity: str
    data: Any = None
    error: InventoryCoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DataAccessLayer:
    """
    Cached facade over a RemoteDataGateway.

    Contract:
        Read accessors return domain entities. Mutations return the stored
        entity and invalidate the affected cache namespaces.
    """

    def __init__(
        self,
        gateway: RemoteDataGateway,
        cache: CacheStore,
        cache_config: CacheConfig,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._cache_config = cache_config

    @property
    def gateway(self) -> RemoteDataGateway:
        return self._gateway

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def cache_key(self, entity: str) -> str:
        return self._cache_config.entity(entity).key

    def batches_cache_key(self, product_id: str) -> str:
        return f"{self.cache_key('inventory')}:product:{product_id}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(
        self,
        entity: str,
        force_refresh: bool,
        key: str | None = None,
        fetch: Callable[[RemoteDataGateway], Any] | None = None,
    ) -> Any:
        spec = ENTITY_SPECS[entity]
        settings = self._cache_config.entity(entity)
        key = key or settings.key

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                try:
                    return spec.decode(cached)
                except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
                    logger.warning("cache_payload_undecodable", extra={
                        "entity": entity,
                        "cache_key": key,
                        "error": str(exc),
                    })
                    self._cache.remove(key)

        data = (fetch or spec.fetch)(self._gateway)
        self._cache.set(key, spec.encode(data), settings.ttl_seconds)
        logger.debug("entity_fetched", extra={
            "entity": entity,
            "cache_key": key,
            "force_refresh": force_refresh,
        })
        return data

    def get_products(self, force_refresh: bool = False) -> list[Product]:
        return self._read("products", force_refresh)

    def get_warehouses(self, force_refresh: bool = False) -> list[Warehouse]:
        return self._read("warehouses", force_refresh)

    def get_suppliers(self, force_refresh: bool = False) -> list[Supplier]:
        return self._read("suppliers", force_refresh)

    def get_purchase_orders(self, force_refresh: bool = False) -> list[PurchaseOrder]:
        return self._read("purchase_orders", force_refresh)

    def get_sales_orders(self, force_refresh: bool = False) -> list[SalesOrder]:
        return self._read("sales_orders", force_refresh)

    def get_inventory_items(self, force_refresh: bool = False) -> list[InventoryBatch]:
        return self._read("inventory", force_refresh)

    def get_dashboard_kpis(self, force_refresh: bool = False) -> DashboardKpis:
        return self._read("dashboard", force_refresh)

    def get_batches_for_product(
        self,
        product_id: str,
        force_refresh: bool = False,
    ) -> list[InventoryBatch]:
        """Active batches of one product, unordered, cached per product."""
        return self._read(
            "inventory",
            force_refresh,
            key=self.batches_cache_key(product_id),
            fetch=lambda g: g.fetch_batches_by_product(product_id),
        )

    def get_product(self, product_id: str) -> Product:
        """Single product straight from the gateway (uncached)."""
        return self._gateway.fetch_product(product_id)

    def get_purchase_order(self, purchase_order_id: str) -> PurchaseOrder:
        return self._gateway.fetch_purchase_order(purchase_order_id)

    def get_supplier(self, supplier_id: str) -> Supplier:
        return self._gateway.fetch_supplier(supplier_id)

    def get_alerts(self, force_refresh: bool = False) -> list[StockAlert]:
        """Low and out-of-stock products; short TTL, dropped on any stock write."""
        return self._read("alerts", force_refresh)

    def find_batches_by_number(self, batch_numbers: Sequence[str]) -> list[InventoryBatch]:
        return self._gateway.fetch_batches_by_number(batch_numbers)

    def get_stock_movements(
        self,
        reference_id: str,
        movement_type: MovementType | None = None,
    ) -> list[StockMovement]:
        return self._gateway.fetch_stock_movements(reference_id, movement_type)

    # Searches are paged and filter-specific, so they always go to the gateway.

    def search_inventory(
        self,
        term: str = "",
        warehouse_id: str | None = None,
        product_id: str | None = None,
        expiry_from: datetime | None = None,
        expiry_to: datetime | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        """One page of active batches matching every given filter."""
        return self._gateway.search_inventory(
            InventorySearch(
                term=term.strip(),
                warehouse_id=warehouse_id,
                product_id=product_id,
                expiry_from=expiry_from,
                expiry_to=expiry_to,
                page=page,
                per_page=per_page,
            )
        )

    def search_products(self, term: str = "", page: int = 1, per_page: int = 20) -> Page:
        return self._gateway.search_products(term.strip(), page, per_page)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _invalidate(self, *entities: str) -> None:
        for entity in entities:
            self._cache.remove_by_prefix(self.cache_key(entity))
        logger.debug("cache_namespaces_invalidated", extra={"entities": list(entities)})

    def update_batch_quantity(
        self,
        batch_id: str,
        new_quantity: Decimal,
        expected_quantity: Decimal | None = None,
    ) -> InventoryBatch:
        batch = self._gateway.update_batch_quantity(batch_id, new_quantity, expected_quantity)
        self._invalidate("inventory", "dashboard", "alerts")
        return batch

    def create_batch(self, batch: InventoryBatch) -> InventoryBatch:
        created = self._gateway.create_batch(batch)
        self._invalidate("inventory", "dashboard", "alerts")
        return created

    def create_stock_movement(self, movement: StockMovement) -> StockMovement:
        created = self._gateway.create_stock_movement(movement)
        self._invalidate("inventory", "dashboard", "alerts")
        return created

    def create_product(self, product: Product) -> Product:
        created = self._gateway.create_product(product)
        self._invalidate("products", "dashboard", "alerts")
        return created

    def update_product(self, product_id: str, changes: Mapping[str, Any]) -> Product:
        updated = self._gateway.update_product(product_id, changes)
        self._invalidate("products", "dashboard", "alerts")
        return updated

    def create_warehouse(self, warehouse: Warehouse) -> Warehouse:
        created = self._gateway.create_warehouse(warehouse)
        self._invalidate("warehouses", "dashboard")
        return created

    def create_supplier(self, supplier: Supplier) -> Supplier:
        created = self._gateway.create_supplier(supplier)
        self._invalidate("suppliers")
        return created

    def update_supplier(self, supplier_id: str, changes: Mapping[str, Any]) -> Supplier:
        updated = self._gateway.update_supplier(supplier_id, changes)
        self._invalidate("suppliers")
        return updated

    def update_purchase_order_status(
        self,
        purchase_order_id: str,
        status: PurchaseOrderStatus,
        delivered_at: datetime | None = None,
    ) -> PurchaseOrder:
        updated = self._gateway.update_purchase_order_status(
            purchase_order_id, status, delivered_at
        )
        self._invalidate("purchase_orders", "dashboard")
        return updated

    def create_payable(self, payable: Payable) -> Payable:
        created = self._gateway.create_payable(payable)
        self._invalidate("dashboard")
        return created

    def create_receivable(self, receivable: Receivable) -> Receivable:
        created = self._gateway.create_receivable(receivable)
        self._invalidate("dashboard")
        return created

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    def preload_critical_data(self) -> dict[str, PreloadOutcome]:
        """
        Warm the cache for the entities a sale screen needs first.

        Each read is independent: a failure is captured in its outcome and
        the remaining reads still run.
        """
        outcomes: dict[str, PreloadOutcome] = {}
        for entity in PRELOAD_ENTITIES:
            try:
                data = self._read(entity, force_refresh=False)
            except InventoryCoreError as exc:
                logger.warning("preload_entity_failed", extra={
                    "entity": entity,
                    "error_code": exc.code,
                    "error": str(exc),
                })
                outcomes[entity] = PreloadOutcome(entity=entity, error=exc)
            else:
                outcomes[entity] = PreloadOutcome(entity=entity, data=data)

        logger.info("preload_completed", extra={
            "loaded": [e for e, o in outcomes.items() if o.ok],
            "failed": [e for e, o in outcomes.items() if not o.ok],
        })
        return outcomes

    def clear_all_data(self) -> None:
        """Drop every cached entry (logout / reset)."""
        self._cache.clear_all()
