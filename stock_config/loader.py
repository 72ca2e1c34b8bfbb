"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into typed
``stock_config.schema`` dataclass instances.  Runtime callers go through
``stock_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Required fields (``config_id``, ``version``) raise ``KeyError`` when
  missing; optional sections fall back to the schema defaults.
* Unknown keys in a section raise ``ValueError`` so typos are not
  silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value type  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseDef,
    LedgerConfiguration,
    LedgerSettingsDef,
    PolicyDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _check_keys(section: str, data: dict[str, Any], cls: type) -> None:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")


def _as_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{section}.{key}' must be an integer, got {value!r}")
    return value


def _as_float(section: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{section}.{key}' must be a number, got {value!r}")
    return float(value)


def parse_policy(data: dict[str, Any]) -> PolicyDef:
    _check_keys("policy", data, PolicyDef)
    defaults = PolicyDef()
    return PolicyDef(
        supplier_requirement=str(
            data.get("supplier_requirement", defaults.supplier_requirement)
        ).strip().lower(),
        max_quantity=_as_int(
            "policy", "max_quantity", data.get("max_quantity", defaults.max_quantity)
        ),
        note_max_length=_as_int(
            "policy",
            "note_max_length",
            data.get("note_max_length", defaults.note_max_length),
        ),
    )


def parse_ledger_settings(data: dict[str, Any]) -> LedgerSettingsDef:
    _check_keys("ledger", data, LedgerSettingsDef)
    d = LedgerSettingsDef()
    return LedgerSettingsDef(
        lock_timeout_seconds=_as_float(
            "ledger", "lock_timeout_seconds",
            data.get("lock_timeout_seconds", d.lock_timeout_seconds),
        ),
        commit_timeout_seconds=_as_float(
            "ledger", "commit_timeout_seconds",
            data.get("commit_timeout_seconds", d.commit_timeout_seconds),
        ),
        guard_capacity=_as_int(
            "ledger", "guard_capacity", data.get("guard_capacity", d.guard_capacity)
        ),
        monitor_workers=_as_int(
            "ledger", "monitor_workers", data.get("monitor_workers", d.monitor_workers)
        ),
        service_workers=_as_int(
            "ledger", "service_workers", data.get("service_workers", d.service_workers)
        ),
        key_origin=str(data.get("key_origin", d.key_origin)),
    )


def parse_database(data: dict[str, Any]) -> DatabaseDef:
    _check_keys("database", data, DatabaseDef)
    d = DatabaseDef()
    url = data.get("url", d.url)
    return DatabaseDef(
        url=str(url) if url is not None else None,
        pool_size=_as_int("database", "pool_size", data.get("pool_size", d.pool_size)),
        max_overflow=_as_int(
            "database", "max_overflow", data.get("max_overflow", d.max_overflow)
        ),
        echo=bool(data.get("echo", d.echo)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(data: dict[str, Any]) -> LedgerConfiguration:
    """Parse a raw configuration document."""
    return LedgerConfiguration(
        config_id=str(data["config_id"]),
        version=_as_int("root", "version", data["version"]),
        description=str(data.get("description", "")),
        policy=parse_policy(data.get("policy") or {}),
        ledger=parse_ledger_settings(data.get("ledger") or {}),
        database=parse_database(data.get("database") or {}),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> LedgerConfiguration:
    """Load and parse a configuration file."""
    return parse_configuration(load_yaml_file(path))
