"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads YAML files, merges deployment overrides over the packaged defaults,
and parses the merged mapping into the frozen dataclasses of
``inventory_config.schema``. Runtime callers go through
``inventory_config.get_active_config()`` instead of calling this module.

Invariants enforced
-------------------
* Overrides are deep-merged: a file that sets only
  ``deduction.unknown_unit_policy`` keeps every other default.
* Parse errors raise ``ConfigurationError`` naming the dotted field.
* ``compute_checksum`` is deterministic for identical merged mappings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    CacheConfig,
    DeductionConfig,
    EntityCacheConfig,
    ExpiryConfig,
    InventoryConfig,
    OfflineConfig,
    ReceivablesConfig,
    ReceivingConfig,
    StorageConfig,
)
from inventory_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with ``overrides`` merged recursively over ``base``."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(name, "must be a mapping")
    return section


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(field, f"expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(field, f"expected an integer, got {value!r}") from exc


def _as_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(field, f"expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(field, f"expected a number, got {value!r}") from exc


def _as_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(field, f"expected true/false, got {value!r}")
    return value


def parse_cache(data: dict[str, Any]) -> CacheConfig:
    entities_raw = data.get("entities")
    if not isinstance(entities_raw, dict):
        raise ConfigurationError("cache.entities", "must be a mapping of entity name to settings")

    entities = []
    for name, settings in entities_raw.items():
        if not isinstance(settings, dict):
            raise ConfigurationError(f"cache.entities.{name}", "must be a mapping")
        if "key" not in settings or "ttl_seconds" not in settings:
            raise ConfigurationError(f"cache.entities.{name}", "requires key and ttl_seconds")
        entities.append(
            EntityCacheConfig(
                name=str(name),
                key=str(settings["key"]),
                ttl_seconds=_as_float(settings["ttl_seconds"], f"cache.entities.{name}.ttl_seconds"),
            )
        )

    if "schema_version" not in data:
        raise ConfigurationError("cache.schema_version", "is required")

    return CacheConfig(
        schema_version=str(data["schema_version"]),
        entities=tuple(entities),
    )


def parse_deduction(data: dict[str, Any]) -> DeductionConfig:
    defaults = DeductionConfig()
    return DeductionConfig(
        unknown_unit_policy=str(data.get("unknown_unit_policy", defaults.unknown_unit_policy)),
        compensate_on_failure=_as_bool(
            data.get("compensate_on_failure", defaults.compensate_on_failure),
            "deduction.compensate_on_failure",
        ),
        max_conflict_retries=_as_int(
            data.get("max_conflict_retries", defaults.max_conflict_retries),
            "deduction.max_conflict_retries",
        ),
    )


def parse_expiry(data: dict[str, Any]) -> ExpiryConfig:
    return ExpiryConfig(
        expiring_within_days=_as_int(
            data.get("expiring_within_days", ExpiryConfig.expiring_within_days),
            "expiry.expiring_within_days",
        ),
    )


def parse_receiving(data: dict[str, Any]) -> ReceivingConfig:
    return ReceivingConfig(
        default_shelf_life_days=_as_int(
            data.get("default_shelf_life_days", ReceivingConfig.default_shelf_life_days),
            "receiving.default_shelf_life_days",
        ),
        payable_terms_days=_as_int(
            data.get("payable_terms_days", ReceivingConfig.payable_terms_days),
            "receiving.payable_terms_days",
        ),
    )


def parse_receivables(data: dict[str, Any]) -> ReceivablesConfig:
    methods = data.get("credit_payment_methods", ReceivablesConfig.credit_payment_methods)
    if isinstance(methods, str) or not isinstance(methods, (list, tuple)):
        raise ConfigurationError(
            "receivables.credit_payment_methods", f"expected a list, got {methods!r}"
        )
    return ReceivablesConfig(
        terms_days=_as_int(
            data.get("terms_days", ReceivablesConfig.terms_days),
            "receivables.terms_days",
        ),
        credit_payment_methods=tuple(str(m).lower() for m in methods),
    )


def parse_offline(data: dict[str, Any]) -> OfflineConfig:
    return OfflineConfig(
        storage_key=str(data.get("storage_key", OfflineConfig.storage_key)),
        last_sync_key=str(data.get("last_sync_key", OfflineConfig.last_sync_key)),
        device_id=str(data.get("device_id", OfflineConfig.device_id)),
    )


def parse_storage(data: dict[str, Any]) -> StorageConfig:
    remote_url = data.get("remote_url")
    return StorageConfig(
        local_url=str(data.get("local_url", StorageConfig.local_url)),
        remote_url=str(remote_url) if remote_url else None,
    )


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """Parse a merged configuration mapping into an ``InventoryConfig``."""
    return InventoryConfig(
        cache=parse_cache(_section(data, "cache")),
        deduction=parse_deduction(_section(data, "deduction")),
        expiry=parse_expiry(_section(data, "expiry")),
        receiving=parse_receiving(_section(data, "receiving")),
        offline=parse_offline(_section(data, "offline")),
        storage=parse_storage(_section(data, "storage")),
        receivables=parse_receivables(_section(data, "receivables")),
        checksum=compute_checksum(data),
    )
