"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    It loads the packaged ``defaults.yaml``, deep-merges an optional
    deployment file and in-process overrides on top, validates the result
    and returns a frozen ``InventoryConfig``.

Architecture position:
    Configuration -- sits above ``inventory_kernel`` and below
    ``inventory_services``. The kernel and engines never import from here;
    services receive the parsed values through their constructors.

Failure modes:
    - ``FileNotFoundError`` -- ``config_path`` does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ConfigurationError`` -- a value fails validation.

Audit relevance:
    Every successful call emits a ``config_loaded`` log entry with the
    checksum of the merged mapping, so any behavior can be traced back to
    the exact settings in force.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from inventory_config.loader import deep_merge, load_yaml_file, parse_config
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
from inventory_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> InventoryConfig:
    """Load, merge and validate the active inventory configuration.

    Args:
        config_path: Optional deployment YAML merged over the defaults.
        overrides: Optional mapping merged last (tests, one-off tweaks).

    Returns:
        A frozen ``InventoryConfig`` whose ``checksum`` identifies the
        merged settings.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
    if overrides:
        data = deep_merge(data, overrides)

    config = parse_config(data)

    logger.info(
        "config_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            "has_overrides": bool(overrides),
            "checksum": config.checksum,
            "schema_version": config.cache.schema_version,
            "unknown_unit_policy": config.deduction.unknown_unit_policy,
        },
    )
    return config


__all__ = [
    "CacheConfig",
    "DeductionConfig",
    "EntityCacheConfig",
    "ExpiryConfig",
    "InventoryConfig",
    "OfflineConfig",
    "ReceivablesConfig",
    "ReceivingConfig",
    "StorageConfig",
    "get_active_config",
]
