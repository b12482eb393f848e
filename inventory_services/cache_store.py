"""
inventory_services.cache_store -- TTL cache over the device-local store.

Responsibility:
    Keep JSON-native payloads (lists and dicts produced by entity
    ``to_dict()``) under string keys with a per-entry time-to-live and
    schema version, in front of the remote gateway.

Architecture position:
    Services -- stateful, constructed per session and passed to the
    DataAccessLayer. Owns the ``cache:`` namespace of its LocalStore; the
    offline queue shares the same store under its own keys, so clearing
    the cache never touches the action log.

Invariants enforced:
    - Freshness: an entry written at ``t`` with ttl ``T`` is returned for
      ``now - t < T`` and is absent for ``now - t >= T``.
    - Format versioning: an entry whose version differs from the session's
      schema version is absent.
    - Lazy expiry: expired and version-mismatched entries are evicted on
      the read that finds them. There is no background sweep.
    - ``set`` always overwrites the whole entry.

Failure modes:
    - None escape. Substrate errors and (de)serialization errors are
      logged as ``cache_read_failed`` / ``cache_write_failed`` and treated
      as a miss or a no-op. The cache is never the source of truth.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import to_utc
from inventory_kernel.exceptions import CacheError
from inventory_kernel.logging_config import get_logger
from inventory_services.local_store import LocalStore

logger = get_logger("services.cache")

CACHE_NAMESPACE = "cache:"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Envelope persisted for every cached payload."""

    payload: Any
    written_at: datetime
    ttl_seconds: float
    version: str

    def age_seconds(self, now: datetime) -> float:
        return (now - self.written_at).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.age_seconds(now) >= self.ttl_seconds

    def to_json(self) -> str:
        return json.dumps(
            {
                "payload": self.payload,
                "written_at": self.written_at.isoformat(),
                "ttl_seconds": self.ttl_seconds,
                "version": self.version,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> CacheEntry:
        data = json.loads(raw)
        return cls(
            payload=data["payload"],
            written_at=to_utc(data["written_at"]),
            ttl_seconds=float(data["ttl_seconds"]),
            version=str(data["version"]),
        )


class CacheStore:
    """
    Best-effort TTL cache.

    Contract:
        ``get`` returns the stored payload or None. Payloads must be
        JSON-serializable; None itself is not cacheable since it reads
        back as a miss.

    Guarantees:
        No method raises on a substrate or serialization failure.
    """

    def __init__(
        self,
        store: LocalStore,
        clock: Clock | None = None,
        schema_version: str = "1.0.0",
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._schema_version = schema_version

    @property
    def schema_version(self) -> str:
        return self._schema_version

    @staticmethod
    def _storage_key(key: str) -> str:
        return f"{CACHE_NAMESPACE}{key}"

    def get(self, key: str) -> Any | None:
        storage_key = self._storage_key(key)
        try:
            raw = self._store.get(storage_key)
            if raw is None:
                logger.debug("cache_miss", extra={"cache_key": key, "reason": "absent"})
                return None
            entry = CacheEntry.from_json(raw)
        except (CacheError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("cache_read_failed", extra={"cache_key": key, "error": str(exc)})
            self._evict_quietly(key)
            return None

        if entry.version != self._schema_version:
            logger.info("cache_version_mismatch", extra={
                "cache_key": key,
                "entry_version": entry.version,
                "schema_version": self._schema_version,
            })
            self._evict_quietly(key)
            return None

        now = self._clock.now()
        if entry.is_expired(now):
            logger.debug("cache_expired", extra={
                "cache_key": key,
                "age_seconds": entry.age_seconds(now),
                "ttl_seconds": entry.ttl_seconds,
            })
            self._evict_quietly(key)
            return None

        logger.debug("cache_hit", extra={"cache_key": key})
        return entry.payload

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        entry = CacheEntry(
            payload=value,
            written_at=self._clock.now(),
            ttl_seconds=ttl_seconds,
            version=self._schema_version,
        )
        try:
            self._store.set(self._storage_key(key), entry.to_json())
        except (CacheError, TypeError, ValueError) as exc:
            logger.warning("cache_write_failed", extra={"cache_key": key, "error": str(exc)})
            return
        logger.debug("cache_set", extra={"cache_key": key, "ttl_seconds": ttl_seconds})

    def remove(self, key: str) -> None:
        try:
            self._store.delete(self._storage_key(key))
        except CacheError as exc:
            logger.warning("cache_write_failed", extra={"cache_key": key, "error": str(exc)})

    def remove_by_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        try:
            removed = self._store.delete_prefix(self._storage_key(prefix))
        except CacheError as exc:
            logger.warning("cache_write_failed", extra={"cache_key": prefix, "error": str(exc)})
            return 0
        logger.debug("cache_invalidated", extra={"prefix": prefix, "removed": removed})
        return removed

    def clear_all(self) -> int:
        removed = self.remove_by_prefix("")
        logger.info("cache_cleared", extra={"removed": removed})
        return removed

    def _evict_quietly(self, key: str) -> None:
        try:
            self._store.delete(self._storage_key(key))
        except CacheError as exc:
            logger.warning("cache_write_failed", extra={"cache_key": key, "error": str(exc)})
