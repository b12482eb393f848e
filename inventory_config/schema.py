"""
Configuration Schema (``inventory_config.schema``).

Frozen dataclasses describing every tunable of the inventory core. TTLs,
cache keys and storage locations are configuration, not behavior: changing
them never changes correctness as long as each entity keeps a stable key.

Validation happens in ``__post_init__`` and raises ``ConfigurationError``
naming the offending field.
"""

from __future__ import annotations

from dataclasses import dataclass

from inventory_kernel.exceptions import ConfigurationError

CACHED_ENTITIES = (
    "products",
    "warehouses",
    "suppliers",
    "purchase_orders",
    "sales_orders",
    "inventory",
    "dashboard",
    "alerts",
)

VALID_UNKNOWN_UNIT_POLICIES = {"fallback", "reject"}


@dataclass(frozen=True)
class EntityCacheConfig:
    """Cache key and time-to-live for one entity collection."""

    name: str
    key: str
    ttl_seconds: float

    def __post_init__(self):
        if not self.key:
            raise ConfigurationError(f"cache.entities.{self.name}.key", "must not be empty")
        if self.ttl_seconds <= 0:
            raise ConfigurationError(
                f"cache.entities.{self.name}.ttl_seconds",
                f"must be positive, got {self.ttl_seconds}",
            )


@dataclass(frozen=True)
class CacheConfig:
    schema_version: str
    entities: tuple[EntityCacheConfig, ...]

    def __post_init__(self):
        names = [e.name for e in self.entities]
        missing = [n for n in CACHED_ENTITIES if n not in names]
        if missing:
            raise ConfigurationError("cache.entities", f"missing entries for {missing}")
        keys = [e.key for e in self.entities]
        if len(set(keys)) != len(keys):
            raise ConfigurationError("cache.entities", "cache keys must be unique")
        # A key that prefixes another would be wiped by its invalidation.
        for a in keys:
            for b in keys:
                if a != b and b.startswith(a):
                    raise ConfigurationError(
                        "cache.entities", f"key {a!r} is a prefix of {b!r}"
                    )

    def entity(self, name: str) -> EntityCacheConfig:
        for entry in self.entities:
            if entry.name == name:
                return entry
        raise KeyError(name)


@dataclass(frozen=True)
class DeductionConfig:
    unknown_unit_policy: str = "fallback"
    compensate_on_failure: bool = True
    max_conflict_retries: int = 3

    def __post_init__(self):
        if self.unknown_unit_policy not in VALID_UNKNOWN_UNIT_POLICIES:
            raise ConfigurationError(
                "deduction.unknown_unit_policy",
                f"must be one of {sorted(VALID_UNKNOWN_UNIT_POLICIES)}, "
                f"got {self.unknown_unit_policy!r}",
            )
        if self.max_conflict_retries < 0:
            raise ConfigurationError("deduction.max_conflict_retries", "must be >= 0")


@dataclass(frozen=True)
class ExpiryConfig:
    expiring_within_days: int = 30

    def __post_init__(self):
        if self.expiring_within_days < 0:
            raise ConfigurationError("expiry.expiring_within_days", "must be >= 0")


@dataclass(frozen=True)
class ReceivingConfig:
    default_shelf_life_days: int = 30
    payable_terms_days: int = 30

    def __post_init__(self):
        if self.default_shelf_life_days <= 0:
            raise ConfigurationError("receiving.default_shelf_life_days", "must be positive")
        if self.payable_terms_days < 0:
            raise ConfigurationError("receiving.payable_terms_days", "must be >= 0")


@dataclass(frozen=True)
class ReceivablesConfig:
    terms_days: int = 30
    credit_payment_methods: tuple[str, ...] = ("check", "transfer")

    def __post_init__(self):
        if self.terms_days < 0:
            raise ConfigurationError("receivables.terms_days", "must be >= 0")
        if any(not method for method in self.credit_payment_methods):
            raise ConfigurationError(
                "receivables.credit_payment_methods", "entries must not be empty"
            )


@dataclass(frozen=True)
class OfflineConfig:
    storage_key: str = "inventory_offline_actions"
    last_sync_key: str = "inventory_last_sync"
    device_id: str = "device-local"

    def __post_init__(self):
        if not self.storage_key or not self.last_sync_key:
            raise ConfigurationError("offline", "storage keys must not be empty")
        if self.storage_key == self.last_sync_key:
            raise ConfigurationError("offline", "storage_key and last_sync_key must differ")
        if not self.device_id or ":" in self.device_id:
            raise ConfigurationError("offline.device_id", "must be non-empty and contain no ':'")


@dataclass(frozen=True)
class StorageConfig:
    local_url: str = "sqlite:///inventory_local.db"
    remote_url: str | None = None


@dataclass(frozen=True)
class InventoryConfig:
    """Root settings object handed to InventorySession.open()."""

    cache: CacheConfig
    deduction: DeductionConfig
    expiry: ExpiryConfig
    receiving: ReceivingConfig
    offline: OfflineConfig
    storage: StorageConfig
    receivables: ReceivablesConfig = ReceivablesConfig()
    checksum: str = ""
