"""
Tests for the offline action queue.

Covers:
- Durable log: enqueue order, persistence across queue instances
- Replay: order, no short-circuit, unknown types, invalid payloads
- Idempotency keys: duplicates skipped, keys recorded on success
- Cache invalidation through the data access layer on replay
- Operator actions: requeue, discard, clear_completed
- execute_or_enqueue
"""

import json
from decimal import Decimal

import pytest

from inventory_kernel.domain.entities import ActionStatus, PurchaseOrderStatus, Warehouse
from inventory_kernel.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    InvalidActionPayloadError,
    OfflineActionNotFoundError,
)
from inventory_services.offline_queue import INVALID_PAYLOAD_CODE, OfflineActionQueue


def _warehouse_payload(warehouse_id: str, name: str = "Back Store") -> dict:
    return Warehouse(id=warehouse_id, name=name).to_dict()


class TestEnqueue:
    def test_enqueue_appends_pending(self, offline_queue, clock):
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))

        assert action.is_pending
        assert action.created_at == clock.now()
        assert offline_queue.pending_count() == 1
        assert offline_queue.list_all() == [action]

    def test_default_idempotency_key(self, offline_queue, config):
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        assert action.idempotency_key == f"{config.offline.device_id}:create_warehouse:{action.id}"

    def test_caller_idempotency_key(self, offline_queue):
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"), "sale-9:wh")
        assert action.idempotency_key == "sale-9:wh"

    def test_order_preserved(self, offline_queue):
        ids = [offline_queue.enqueue("create_warehouse", _warehouse_payload(f"wh-{i}")).id for i in range(3)]
        assert [a.id for a in offline_queue.list_pending()] == ids

    def test_log_survives_new_queue_instance(self, offline_queue, local_store, data_access, config, clock):
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))

        reopened = OfflineActionQueue(local_store, data_access, config.offline, clock)

        assert reopened.list_pending() == [action]

    def test_stored_as_json_under_configured_key(self, offline_queue, local_store, config):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        stored = json.loads(local_store.get(config.offline.storage_key))
        assert stored[0]["action_type"] == "create_warehouse"

    def test_default_handlers_cover_every_mutation(self, offline_queue):
        assert offline_queue.action_types == sorted([
            "create_batch",
            "create_payable",
            "create_product",
            "create_receivable",
            "create_stock_movement",
            "create_supplier",
            "create_warehouse",
            "update_batch_quantity",
            "update_product",
            "update_purchase_order_status",
            "update_supplier",
        ])


class TestSync:
    def test_replays_in_order_and_applies(self, offline_queue, gateway, clock):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1", "A"))
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-2", "B"))

        report = offline_queue.sync()

        assert (report.attempted, report.completed, report.failed) == (2, 2, 0)
        assert [a.payload["id"] for a in report.actions] == ["wh-1", "wh-2"]
        assert {w.id for w in gateway.fetch_warehouses()} == {"wh-1", "wh-2"}
        assert offline_queue.pending_count() == 0
        assert offline_queue.last_sync_at() == clock.now()

    def test_failure_does_not_stop_the_pass(self, offline_queue, gateway):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        offline_queue.enqueue("update_batch_quantity", {"batch_id": "missing", "new_quantity": "3"})
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-3"))

        report = offline_queue.sync()

        assert (report.completed, report.failed) == (2, 1)
        [failed] = report.failed_actions
        assert failed.error_code == "BATCH_NOT_FOUND"
        assert failed.attempts == 1
        assert {w.id for w in gateway.fetch_warehouses()} == {"wh-1", "wh-3"}

    def test_failed_actions_stay_and_are_not_retried(self, offline_queue, gateway):
        offline_queue.enqueue("update_batch_quantity", {"batch_id": "missing", "new_quantity": "3"})
        offline_queue.sync()
        gateway.reset_calls()

        report = offline_queue.sync()

        assert report.attempted == 0
        assert gateway.calls["update_batch_quantity"] == 0
        assert offline_queue.list_all()[0].status == ActionStatus.FAILED

    def test_unknown_action_type_fails(self, offline_queue):
        offline_queue.enqueue("teleport_stock", {"batch_id": "b-1"})

        report = offline_queue.sync()

        assert report.failed == 1
        assert report.failed_actions[0].error_code == "UNKNOWN_ACTION_TYPE"

    def test_invalid_payload_fails(self, offline_queue):
        offline_queue.enqueue("update_batch_quantity", {"new_quantity": "3"})
        offline_queue.enqueue("update_batch_quantity", {"batch_id": "b", "new_quantity": "three"})

        report = offline_queue.sync()

        assert report.failed == 2
        assert {a.error_code for a in report.failed_actions} == {INVALID_PAYLOAD_CODE}

    def test_replay_invalidates_cache(self, offline_queue, data_access, gateway, fifo_batches):
        b1, _ = fifo_batches
        data_access.get_inventory_items()
        offline_queue.enqueue("update_batch_quantity", {
            "batch_id": b1.id,
            "new_quantity": "6",
            "expected_quantity": "10",
        })
        gateway.reset_calls()

        offline_queue.sync()
        items = data_access.get_inventory_items()

        assert gateway.calls["fetch_inventory_items"] == 1
        assert {b.id: b.quantity for b in items}[b1.id] == Decimal("6")

    def test_completed_result_is_json_native(self, offline_queue, local_store, config):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        offline_queue.sync()

        stored = json.loads(local_store.get(config.offline.storage_key))
        assert stored[0]["status"] == "completed"
        assert stored[0]["result"]["id"] == "wh-1"

    def test_log_context_carries_action_id(self, offline_queue, captured_logs):
        action = offline_queue.enqueue("teleport_stock", {})
        offline_queue.sync()

        failures = [r for r in captured_logs() if r["message"] == "offline_action_failed"]
        assert failures[0]["action_id"] == action.id
        assert failures[0]["device_id"] == "device-local"

    def test_empty_queue(self, offline_queue):
        report = offline_queue.sync()
        assert report.attempted == 0
        assert report.actions == ()


class TestIdempotency:
    def test_successful_replay_records_key(self, offline_queue, gateway):
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        offline_queue.sync()
        assert gateway.is_action_applied(action.idempotency_key)

    def test_already_applied_key_is_skipped(self, offline_queue, gateway):
        gateway.record_applied_action("till-01:create_warehouse:a-1", "create_warehouse")
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"), "till-01:create_warehouse:a-1")
        gateway.reset_calls()

        report = offline_queue.sync()

        assert (report.completed, report.duplicates) == (1, 1)
        assert gateway.calls["create_warehouse"] == 0

    def test_requeued_completed_write_not_applied_twice(self, offline_queue, gateway):
        """A crash after apply but before the log write replays the same key."""
        action = offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        offline_queue.sync()
        offline_queue.requeue(action.id)

        report = offline_queue.sync()

        assert report.duplicates == 1
        assert len(gateway.fetch_warehouses()) == 1

    def test_key_recording_failure_does_not_fail_action(self, offline_queue, gateway):
        gateway.fail("record_applied_action", GatewayError("record_applied_action", "down"))
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))

        report = offline_queue.sync()

        assert report.completed == 1


class TestOperatorActions:
    def test_requeue_failed_action(self, offline_queue):
        action = offline_queue.enqueue("update_batch_quantity", {"batch_id": "missing", "new_quantity": "3"})
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-2"))
        offline_queue.sync()

        requeued = offline_queue.requeue(action.id)

        assert requeued.is_pending
        assert requeued.error is None
        assert [a.id for a in offline_queue.list_pending()] == [action.id]
        assert offline_queue.list_all()[0].id == action.id

    def test_discard(self, offline_queue):
        action = offline_queue.enqueue("teleport_stock", {})
        offline_queue.sync()

        discarded = offline_queue.discard(action.id)

        assert discarded.status == ActionStatus.FAILED
        assert offline_queue.list_all() == []

    def test_unknown_action_id(self, offline_queue):
        with pytest.raises(OfflineActionNotFoundError):
            offline_queue.requeue("nope")
        with pytest.raises(OfflineActionNotFoundError):
            offline_queue.discard("nope")

    def test_clear_completed_keeps_failed(self, offline_queue):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        failing = offline_queue.enqueue("teleport_stock", {})
        offline_queue.sync()

        assert offline_queue.clear_completed() == 1
        assert [a.id for a in offline_queue.list_all()] == [failing.id]

    def test_clear(self, offline_queue):
        offline_queue.enqueue("create_warehouse", _warehouse_payload("wh-1"))
        offline_queue.sync()

        offline_queue.clear()

        assert offline_queue.list_all() == []
        assert offline_queue.last_sync_at() is None

    def test_register_handler(self, offline_queue):
        seen = []
        offline_queue.register_handler("note", lambda dal, payload: seen.append(payload["text"]))
        offline_queue.enqueue("note", {"text": "hello"})

        offline_queue.sync()

        assert seen == ["hello"]


class TestExecuteOrEnqueue:
    def test_executes_when_online(self, offline_queue, gateway):
        outcome = offline_queue.execute_or_enqueue("create_warehouse", _warehouse_payload("wh-1"), "k-1")

        assert outcome.executed
        assert outcome.result["id"] == "wh-1"
        assert offline_queue.pending_count() == 0
        assert gateway.is_action_applied("k-1")

    def test_queues_when_unreachable(self, offline_queue, gateway):
        gateway.fail("create_warehouse", GatewayUnavailableError("create_warehouse", "no route"))

        outcome = offline_queue.execute_or_enqueue("create_warehouse", _warehouse_payload("wh-1"), "k-1")

        assert not outcome.executed
        assert outcome.queued.idempotency_key == "k-1"
        assert offline_queue.pending_count() == 1

        report = offline_queue.sync()
        assert report.completed == 1
        assert [w.id for w in gateway.fetch_warehouses()] == ["wh-1"]

    def test_other_errors_propagate(self, offline_queue):
        with pytest.raises(GatewayError):
            offline_queue.execute_or_enqueue("update_batch_quantity", {
                "batch_id": "b-1", "new_quantity": "-1",
            })
        assert offline_queue.pending_count() == 0

    def test_decimal_payload_deferred_then_replayed(self, offline_queue, gateway, fifo_batches):
        b1, _ = fifo_batches
        gateway.fail("update_batch_quantity", GatewayUnavailableError("update_batch_quantity", "no route"))

        outcome = offline_queue.execute_or_enqueue("update_batch_quantity", {
            "batch_id": b1.id,
            "new_quantity": Decimal("4"),
            "expected_quantity": b1.quantity,
        })

        assert not outcome.executed
        assert outcome.queued.payload["new_quantity"] == "4"
        assert offline_queue.pending_count() == 1

        report = offline_queue.sync()

        assert report.completed == 1
        assert gateway.fetch_batch(b1.id).quantity == Decimal("4")

    def test_online_call_sees_the_stored_payload_shape(self, offline_queue, fifo_batches):
        b1, _ = fifo_batches

        outcome = offline_queue.execute_or_enqueue("update_batch_quantity", {
            "batch_id": b1.id,
            "new_quantity": Decimal("7.5"),
        })

        assert outcome.executed
        assert Decimal(outcome.result["quantity"]) == Decimal("7.5")

    def test_non_json_payload_rejected_before_any_attempt(self, offline_queue, gateway):
        with pytest.raises(InvalidActionPayloadError) as exc_info:
            offline_queue.execute_or_enqueue("create_warehouse", {"id": "wh-1", "name": object()})

        assert exc_info.value.code == "INVALID_PAYLOAD"
        assert gateway.calls["create_warehouse"] == 0
        assert offline_queue.pending_count() == 0


class TestPayloadEncoding:
    def test_entities_and_enums_stored_as_dicts(self, offline_queue, clock):
        warehouse = Warehouse(id="wh-1", name="A", capacity=Decimal("250.5"))

        action = offline_queue.enqueue("create_warehouse", {**warehouse.to_dict(), "active": True})
        stored = offline_queue.enqueue("update_purchase_order_status", {
            "purchase_order_id": "po-1",
            "status": PurchaseOrderStatus.RECEIVED,
            "delivered_at": clock.now(),
        })

        assert action.payload["capacity"] == "250.5"
        assert stored.payload == {
            "purchase_order_id": "po-1",
            "status": "received",
            "delivered_at": clock.now().isoformat(),
        }

    def test_enqueue_rejects_non_mapping(self, offline_queue):
        with pytest.raises(InvalidActionPayloadError):
            offline_queue.enqueue("create_warehouse", ["wh-1"])
        assert offline_queue.list_all() == []
