"""
inventory_services.session -- Explicit lifecycle for the inventory core.

Responsibility:
    Build the cache, gateway, data access layer, offline queue, deduction
    engine, expiry tracker, receiving service and receivables service as
    plain objects wired by constructor injection, and tear them down
    together. There are no module-level singletons: two sessions never
    share a cache or a queue.

Usage:
    config = get_active_config()
    with InventorySession.open(config, gateway=gateway) as session:
        session.preload()
        completed = session.complete_sale(sale)
    # or, on logout:
    session.close(clear_local_state=True)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.engine import Engine

from inventory_config import InventoryConfig, get_active_config
from inventory_kernel.db.engine import create_engine_from_url, create_session_factory
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import Sale
from inventory_kernel.exceptions import ConfigurationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.local_state import LocalStateModel
from inventory_services.cache_store import CacheStore
from inventory_services.data_access import DataAccessLayer, PreloadOutcome
from inventory_services.deduction_service import DeductionResult, FIFODeductionEngine
from inventory_services.expiry_tracker import BatchExpiryTracker
from inventory_services.gateway import RemoteDataGateway, SqlAlchemyGateway
from inventory_services.local_store import LocalStore, SqlLocalStore
from inventory_services.offline_queue import OfflineActionQueue
from inventory_services.receivables import ReceivableResult, ReceivablesService
from inventory_services.receiving_service import ReceivingService

logger = get_logger("services.session")


@dataclass(frozen=True)
class CompletedSale:
    deduction: DeductionResult
    receivable: ReceivableResult | None = None


class InventorySession:
    """All inventory core components for one signed-in session."""

    def __init__(
        self,
        config: InventoryConfig,
        store: LocalStore,
        gateway: RemoteDataGateway,
        clock: Clock,
        owned_engines: tuple[Engine, ...] = (),
    ) -> None:
        self.config = config
        self.clock = clock
        self.store = store
        self.gateway = gateway
        self.cache = CacheStore(store, clock, config.cache.schema_version)
        self.data_access = DataAccessLayer(gateway, self.cache, config.cache)
        self.queue = OfflineActionQueue(store, self.data_access, config.offline, clock)
        self.deduction = FIFODeductionEngine(self.data_access, config.deduction, clock)
        self.expiry = BatchExpiryTracker(self.data_access, clock, config.expiry)
        self.receiving = ReceivingService(self.data_access, config.receiving, clock)
        self.receivables = ReceivablesService(
            self.data_access, config.receivables, clock, self.queue
        )
        self._owned_engines = owned_engines
        self._closed = False

    @classmethod
    def open(
        cls,
        config: InventoryConfig | None = None,
        gateway: RemoteDataGateway | None = None,
        store: LocalStore | None = None,
        clock: Clock | None = None,
    ) -> InventorySession:
        """
        Construct a session.

        Missing collaborators are built from ``config.storage``: the local
        store on ``local_url`` and a SqlAlchemyGateway on ``remote_url``.

        Raises:
            ConfigurationError: No gateway given and no ``remote_url`` set.
        """
        config = config or get_active_config()
        clock = clock or SystemClock()
        engines: list[Engine] = []

        if store is None:
            local_engine = create_engine_from_url(config.storage.local_url)
            LocalStateModel.__table__.create(local_engine, checkfirst=True)
            engines.append(local_engine)
            store = SqlLocalStore(create_session_factory(local_engine), clock)

        if gateway is None:
            if not config.storage.remote_url:
                for engine in engines:
                    engine.dispose()
                raise ConfigurationError(
                    "storage.remote_url", "required when no gateway is supplied"
                )
            remote_engine = create_engine_from_url(config.storage.remote_url)
            engines.append(remote_engine)
            gateway = SqlAlchemyGateway(create_session_factory(remote_engine), clock)

        LogContext.set(device_id=config.offline.device_id)
        session = cls(config, store, gateway, clock, tuple(engines))
        logger.info("inventory_session_opened", extra={
            "config_checksum": config.checksum,
            "owned_engines": len(engines),
        })
        return session

    @property
    def closed(self) -> bool:
        return self._closed

    def preload(self) -> dict[str, PreloadOutcome]:
        return self.data_access.preload_critical_data()

    def complete_sale(self, sale: Sale) -> CompletedSale:
        """Deduct the sale's stock; on success raise any receivable it owes."""
        deduction = self.deduction.deduct_for_sale(sale)
        if not deduction.success:
            return CompletedSale(deduction=deduction)
        return CompletedSale(deduction=deduction, receivable=self.receivables.raise_for_sale(sale))

    def close(self, clear_local_state: bool = False) -> None:
        """
        Tear the session down.

        With ``clear_local_state`` (logout) the cache and the offline log
        are wiped first; otherwise both survive for the next session.
        """
        if self._closed:
            return
        if clear_local_state:
            pending = self.queue.pending_count()
            if pending:
                logger.warning("session_closed_with_pending_actions", extra={"pending": pending})
            self.data_access.clear_all_data()
            self.queue.clear()
        for engine in self._owned_engines:
            engine.dispose()
        self._closed = True
        logger.info("inventory_session_closed", extra={"cleared_local_state": clear_local_state})

    def logout(self) -> None:
        self.close(clear_local_state=True)

    def __enter__(self) -> InventorySession:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
