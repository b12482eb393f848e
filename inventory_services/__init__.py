"""
inventory_services -- stateful orchestration over engines and kernel.

Cache, remote gateway, data access facade, offline action queue, FIFO
deduction, expiry tracking, purchase receiving, sale receivables and the
session that wires them together.
"""

from inventory_services.cache_store import CacheEntry, CacheStore
from inventory_services.data_access import DataAccessLayer, PreloadOutcome
from inventory_services.deduction_service import (
    BatchDeduction,
    DeductionResult,
    FIFODeductionEngine,
)
from inventory_services.expiry_tracker import BatchExpiryTracker
from inventory_services.gateway import InventorySearch, RemoteDataGateway, SqlAlchemyGateway
from inventory_services.local_store import LocalStore, MemoryLocalStore, SqlLocalStore
from inventory_services.offline_queue import ExecuteOutcome, OfflineActionQueue, SyncReport
from inventory_services.receivables import ReceivableResult, ReceivablesService
from inventory_services.receiving_service import ReceiptResult, ReceivingService
from inventory_services.session import CompletedSale, InventorySession

__all__ = [
    "BatchDeduction",
    "BatchExpiryTracker",
    "CacheEntry",
    "CacheStore",
    "CompletedSale",
    "DataAccessLayer",
    "DeductionResult",
    "ExecuteOutcome",
    "FIFODeductionEngine",
    "InventorySearch",
    "InventorySession",
    "LocalStore",
    "MemoryLocalStore",
    "OfflineActionQueue",
    "PreloadOutcome",
    "ReceiptResult",
    "ReceivableResult",
    "ReceivablesService",
    "ReceivingService",
    "RemoteDataGateway",
    "SqlAlchemyGateway",
    "SqlLocalStore",
    "SyncReport",
]
