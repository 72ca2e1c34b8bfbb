"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.  Bridges in ``stock_config.bridges`` turn the returned
    ``LedgerConfiguration`` into kernel objects.

Architecture position:
    Configuration -- sits above ``stock_kernel`` and below
    ``stock_services``.  The kernel MUST NEVER import from ``stock_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: a configuration with errors is never returned.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or malformed fields.
    - ``ConfigValidationError`` -- the parsed configuration failed validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``STOCK_CONFIG_TRACE`` log entry with the config id, version, checksum
    and the effective movement policy.  This ties every ledger decision to
    the configuration version that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stock_config.loader import load_configuration
from stock_config.schema import (
    DatabaseDef,
    LedgerConfiguration,
    LedgerSettingsDef,
    PolicyDef,
)
from stock_config.validator import ConfigValidationError, validate_configuration

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfiguration:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned configuration has passed validation.
        - A ``STOCK_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - No caching across calls; callers hold the returned object.

    Args:
        path: Configuration file to load.  Defaults to
            ``stock_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    config = load_configuration(config_path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ConfigValidationError(validation.errors)
    for warning in validation.warnings:
        _logger.warning(
            "config_validation_warning",
            extra={"config_id": config.config_id, "warning": warning},
        )

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "supplier_requirement": config.policy.supplier_requirement,
            "max_quantity": config.policy.max_quantity,
            "lock_timeout_seconds": config.ledger.lock_timeout_seconds,
            "commit_timeout_seconds": config.ledger.commit_timeout_seconds,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "LedgerConfiguration",
    "PolicyDef",
    "LedgerSettingsDef",
    "DatabaseDef",
    "ConfigValidationError",
]
