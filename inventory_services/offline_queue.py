"""
inventory_services.offline_queue -- Durable log of writes made while offline.

Responsibility:
    Record mutating calls that could not reach the remote store, and
    replay them later, in enqueue order, through the DataAccessLayer so
    the usual cache invalidation happens on success.

Architecture position:
    Services -- stateful, one instance per session. The log lives in the
    device-local LocalStore under ``offline.storage_key``; the time of the
    last replay pass under ``offline.last_sync_key``.

Invariants enforced:
    - Replay order equals enqueue order.
    - No short-circuit: a failing action is marked failed with its error
      and the pass continues with the next one. Nothing is rolled back.
    - Failed actions stay in the log until an operator requeues or
      discards them; only ``clear_completed`` prunes completed ones.
    - Every action carries an idempotency key (caller-assigned or
      ``device:action_type:action_id``). Replay skips a key the gateway
      already applied and records the key after a successful apply.
    - An action type without a handler fails with UnknownActionTypeError;
      it is never silently skipped.
    - The log is written once per pass, after the last action.

Failure modes:
    - OfflineActionNotFoundError from discard / requeue for an unknown id.
    - CacheError from the LocalStore propagates: losing the action log is
      not something to hide.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import InvalidOperation
from datetime import datetime
from typing import Any
from uuid import uuid4

from inventory_config.schema import OfflineConfig
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import (
    ActionStatus,
    InventoryBatch,
    OfflineAction,
    Payable,
    Product,
    PurchaseOrderStatus,
    Receivable,
    StockMovement,
    Supplier,
    Warehouse,
    json_default,
    to_decimal,
    to_utc,
)
from inventory_kernel.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    InvalidActionPayloadError,
    InventoryCoreError,
    OfflineActionNotFoundError,
    UnknownActionTypeError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.utils.idempotency import generate_idempotency_key
from inventory_services.data_access import DataAccessLayer
from inventory_services.local_store import LocalStore

logger = get_logger("services.offline_queue")

ActionHandler = Callable[[DataAccessLayer, Mapping[str, Any]], Any]

INVALID_PAYLOAD_CODE = InvalidActionPayloadError.code

_DECIMAL_PRODUCT_FIELDS = ("min_stock_level", "base_price")


# ---------------------------------------------------------------------------
# Replay handlers: JSON payload in, JSON-native result out
# ---------------------------------------------------------------------------


def _update_batch_quantity(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    expected = payload.get("expected_quantity")
    batch = dal.update_batch_quantity(
        payload["batch_id"],
        to_decimal(payload["new_quantity"]),
        to_decimal(expected) if expected is not None else None,
    )
    return batch.to_dict()


def _create_batch(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_batch(InventoryBatch.from_dict(dict(payload))).to_dict()


def _create_stock_movement(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_stock_movement(StockMovement.from_dict(dict(payload))).to_dict()


def _create_product(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_product(Product.from_dict(dict(payload))).to_dict()


def _update_product(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    changes = dict(payload["changes"])
    for name in _DECIMAL_PRODUCT_FIELDS:
        if name in changes:
            changes[name] = to_decimal(changes[name])
    return dal.update_product(payload["product_id"], changes).to_dict()


def _create_warehouse(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_warehouse(Warehouse.from_dict(dict(payload))).to_dict()


def _create_supplier(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_supplier(Supplier.from_dict(dict(payload))).to_dict()


def _update_supplier(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.update_supplier(payload["supplier_id"], dict(payload["changes"])).to_dict()


def _update_purchase_order_status(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    order = dal.update_purchase_order_status(
        payload["purchase_order_id"],
        PurchaseOrderStatus(payload["status"]),
        to_utc(payload.get("delivered_at")),
    )
    return order.to_dict()


def _create_payable(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_payable(Payable.from_dict(dict(payload))).to_dict()


def _create_receivable(dal: DataAccessLayer, payload: Mapping[str, Any]) -> Any:
    return dal.create_receivable(Receivable.from_dict(dict(payload))).to_dict()


def _json_native(action_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    The payload as it will read back from the offline log.

    Decimal, datetime, Enum and entity values are rendered as their
    ``to_dict`` forms, so the online and the replayed call see the same data.
    """
    if not isinstance(payload, Mapping):
        raise InvalidActionPayloadError(action_type, f"expected a mapping, got {type(payload).__name__}")
    try:
        return json.loads(json.dumps(dict(payload), default=json_default))
    except (TypeError, ValueError) as exc:
        raise InvalidActionPayloadError(action_type, str(exc)) from exc


DEFAULT_HANDLERS: dict[str, ActionHandler] = {
    "update_batch_quantity": _update_batch_quantity,
    "create_batch": _create_batch,
    "create_stock_movement": _create_stock_movement,
    "create_product": _create_product,
    "update_product": _update_product,
    "create_warehouse": _create_warehouse,
    "create_supplier": _create_supplier,
    "update_supplier": _update_supplier,
    "update_purchase_order_status": _update_purchase_order_status,
    "create_payable": _create_payable,
    "create_receivable": _create_receivable,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncReport:
    """Outcome of one replay pass."""

    started_at: datetime
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    duplicates: int = 0
    actions: tuple[OfflineAction, ...] = field(default=())

    @property
    def failed_actions(self) -> tuple[OfflineAction, ...]:
        return tuple(a for a in self.actions if a.status == ActionStatus.FAILED)


@dataclass(frozen=True)
class ExecuteOutcome:
    """Either the action ran now (``result``) or it was queued (``queued``)."""

    executed: bool
    result: Any = None
    queued: OfflineAction | None = None


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class OfflineActionQueue:
    """
    Ordered, durable offline action log with at-least-once replay.

    Contract:
        ``enqueue`` appends a pending action. ``sync`` attempts every
        pending action once, in order, and returns a SyncReport.

    Non-goals:
        No automatic retry of failed actions and no background replay; the
        caller decides when to sync.
    """

    def __init__(
        self,
        store: LocalStore,
        data_access: DataAccessLayer,
        config: OfflineConfig | None = None,
        clock: Clock | None = None,
        handlers: Mapping[str, ActionHandler] | None = None,
    ) -> None:
        self._store = store
        self._data_access = data_access
        self._config = config or OfflineConfig()
        self._clock = clock or SystemClock()
        self._handlers: dict[str, ActionHandler] = dict(
            DEFAULT_HANDLERS if handlers is None else handlers
        )

    def register_handler(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    @property
    def device_id(self) -> str:
        return self._config.device_id

    @property
    def action_types(self) -> list[str]:
        return sorted(self._handlers)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> list[OfflineAction]:
        raw = self._store.get(self._config.storage_key)
        if not raw:
            return []
        return [OfflineAction.from_dict(item) for item in json.loads(raw)]

    def _save(self, actions: list[OfflineAction]) -> None:
        self._store.set(
            self._config.storage_key,
            json.dumps([a.to_dict() for a in actions]),
        )

    # ------------------------------------------------------------------
    # Log management
    # ------------------------------------------------------------------

    def enqueue(
        self,
        action_type: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> OfflineAction:
        """
        Append a pending action.

        Raises:
            InvalidActionPayloadError: The payload cannot be stored as JSON.
        """
        payload = _json_native(action_type, payload)
        action_id = str(uuid4())
        action = OfflineAction(
            id=action_id,
            action_type=action_type,
            payload=payload,
            created_at=self._clock.now(),
            idempotency_key=idempotency_key
            or generate_idempotency_key(self._config.device_id, action_type, action_id),
        )
        actions = self._load()
        actions.append(action)
        self._save(actions)

        logger.info("offline_action_enqueued", extra={
            "action_id": action.id,
            "action_type": action_type,
            "idempotency_key": action.idempotency_key,
            "queue_length": len(actions),
        })
        return action

    def list_all(self) -> list[OfflineAction]:
        return self._load()

    def list_pending(self) -> list[OfflineAction]:
        return [a for a in self._load() if a.is_pending]

    def pending_count(self) -> int:
        return len(self.list_pending())

    def clear_completed(self) -> int:
        actions = self._load()
        kept = [a for a in actions if a.status != ActionStatus.COMPLETED]
        self._save(kept)
        removed = len(actions) - len(kept)
        logger.info("offline_completed_cleared", extra={"removed": removed})
        return removed

    def discard(self, action_id: str) -> OfflineAction:
        actions = self._load()
        for index, action in enumerate(actions):
            if action.id == action_id:
                del actions[index]
                self._save(actions)
                logger.info("offline_action_discarded", extra={
                    "action_id": action_id,
                    "action_type": action.action_type,
                    "status": action.status.value,
                })
                return action
        raise OfflineActionNotFoundError(action_id)

    def requeue(self, action_id: str) -> OfflineAction:
        """Move a failed action back to pending, keeping its queue position."""
        actions = self._load()
        for index, action in enumerate(actions):
            if action.id == action_id:
                requeued = action.requeued()
                actions[index] = requeued
                self._save(actions)
                logger.info("offline_action_requeued", extra={
                    "action_id": action_id,
                    "action_type": action.action_type,
                    "attempts": action.attempts,
                })
                return requeued
        raise OfflineActionNotFoundError(action_id)

    def clear(self) -> None:
        """Drop the whole log (logout / reset)."""
        self._store.delete(self._config.storage_key)
        self._store.delete(self._config.last_sync_key)
        logger.info("offline_queue_cleared")

    def last_sync_at(self) -> datetime | None:
        raw = self._store.get(self._config.last_sync_key)
        return to_utc(raw) if raw else None

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _apply(self, action_type: str, payload: Mapping[str, Any]) -> Any:
        handler = self._handlers.get(action_type)
        if handler is None:
            raise UnknownActionTypeError(action_type)
        return handler(self._data_access, payload)

    def _replay_one(self, action: OfflineAction) -> tuple[OfflineAction, bool]:
        """Attempt one action. Returns the updated action and whether it was a duplicate."""
        gateway = self._data_access.gateway
        try:
            if action.idempotency_key and gateway.is_action_applied(action.idempotency_key):
                logger.info("offline_action_duplicate_skipped", extra={
                    "action_id": action.id,
                    "idempotency_key": action.idempotency_key,
                })
                return action.mark_completed(self._clock.now()), True

            result = self._apply(action.action_type, action.payload)
        except InventoryCoreError as exc:
            logger.warning("offline_action_failed", extra={
                "action_id": action.id,
                "action_type": action.action_type,
                "error_code": exc.code,
                "error": str(exc),
            })
            return action.mark_failed(self._clock.now(), str(exc), exc.code), False
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            logger.warning("offline_action_failed", extra={
                "action_id": action.id,
                "action_type": action.action_type,
                "error_code": INVALID_PAYLOAD_CODE,
                "error": repr(exc),
            })
            return (
                action.mark_failed(self._clock.now(), f"invalid payload: {exc!r}", INVALID_PAYLOAD_CODE),
                False,
            )

        if action.idempotency_key:
            self._record_applied(action.idempotency_key, action.action_type)

        logger.info("offline_action_completed", extra={
            "action_id": action.id,
            "action_type": action.action_type,
        })
        return action.mark_completed(self._clock.now(), result), False

    def _record_applied(self, idempotency_key: str, action_type: str) -> None:
        try:
            self._data_access.gateway.record_applied_action(idempotency_key, action_type)
        except GatewayError as exc:
            # The write itself landed; a later replay may apply it again.
            logger.warning("offline_idempotency_record_failed", extra={
                "idempotency_key": idempotency_key,
                "error": str(exc),
            })

    def sync(self) -> SyncReport:
        """Replay every pending action once, in enqueue order."""
        started_at = self._clock.now()
        actions = self._load()
        pending_total = sum(1 for a in actions if a.is_pending)

        logger.info("offline_sync_started", extra={"pending": pending_total})

        attempted = completed = failed = duplicates = 0
        updated: list[OfflineAction] = []
        replayed: list[OfflineAction] = []
        for action in actions:
            if not action.is_pending:
                updated.append(action)
                continue

            with LogContext.bind(action_id=action.id, device_id=self._config.device_id):
                result, duplicate = self._replay_one(action)

            attempted += 1
            if result.status == ActionStatus.COMPLETED:
                completed += 1
                duplicates += int(duplicate)
            else:
                failed += 1
            updated.append(result)
            replayed.append(result)

        self._save(updated)
        self._store.set(self._config.last_sync_key, self._clock.now().isoformat())

        report = SyncReport(
            started_at=started_at,
            attempted=attempted,
            completed=completed,
            failed=failed,
            duplicates=duplicates,
            actions=tuple(replayed),
        )
        logger.info("offline_sync_completed", extra={
            "attempted": attempted,
            "completed": completed,
            "failed": failed,
            "duplicates": duplicates,
        })
        return report

    def execute_or_enqueue(
        self,
        action_type: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> ExecuteOutcome:
        """
        Run the action now; queue it if the remote store is unreachable.

        Only GatewayUnavailableError queues. Any other error propagates to
        the caller, since replaying it later would fail the same way.
        """
        payload = _json_native(action_type, payload)
        try:
            result = self._apply(action_type, payload)
        except GatewayUnavailableError as exc:
            logger.warning("offline_action_deferred", extra={
                "action_type": action_type,
                "error": str(exc),
            })
            return ExecuteOutcome(
                executed=False,
                queued=self.enqueue(action_type, payload, idempotency_key),
            )

        if idempotency_key:
            self._record_applied(idempotency_key, action_type)
        return ExecuteOutcome(executed=True, result=result)
