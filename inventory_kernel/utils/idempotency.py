"""
Idempotency key generation utilities.

Offline actions may be replayed more than once (at-least-once replay).
Each action carries a key so the remote store can recognise a write it
has already applied and short-circuit the duplicate.
"""

from uuid import UUID


def generate_idempotency_key(
    device_id: str,
    action_type: str,
    action_id: UUID | str,
) -> str:
    """
    Generate an idempotency key for an offline action.

    Format: device_id:action_type:action_id

    Example:
        >>> generate_idempotency_key("till-01", "create_batch", uuid)
        "till-01:create_batch:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{device_id}:{action_type}:{action_id}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into (device_id, action_type, action_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
