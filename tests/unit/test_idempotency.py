"""Tests for offline action idempotency keys."""

from uuid import UUID

import pytest

from inventory_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)


def test_key_format():
    action_id = UUID("550e8400-e29b-41d4-a716-446655440000")
    key = generate_idempotency_key("till-01", "create_batch", action_id)
    assert key == "till-01:create_batch:550e8400-e29b-41d4-a716-446655440000"


def test_parse_inverts_generate():
    key = generate_idempotency_key("till-01", "update_batch_quantity", "a-1")
    assert parse_idempotency_key(key) == ("till-01", "update_batch_quantity", "a-1")


def test_action_id_may_contain_colons():
    assert parse_idempotency_key("dev:create_product:x:y") == ("dev", "create_product", "x:y")


@pytest.mark.parametrize("bad", ["", "dev", "dev:type", "dev::id", ":type:id"])
def test_malformed_key_rejected(bad):
    with pytest.raises(ValueError, match="Invalid idempotency key"):
        parse_idempotency_key(bad)
