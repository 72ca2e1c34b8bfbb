"""
LedgerConfiguration schema.

Defines the human-authored, reviewable configuration for the stock ledger.
YAML files are parsed into these types by the loader, checked by the
validator, and translated into kernel objects by the bridges.
"""

from __future__ import annotations

from dataclasses import dataclass, field

SUPPLIER_REQUIREMENTS = ("optional", "inbound", "outbound", "all")


@dataclass(frozen=True)
class PolicyDef:
    """Movement acceptance policy."""

    supplier_requirement: str = "optional"  # optional | inbound | outbound | all
    max_quantity: int = 999_999
    note_max_length: int = 500


@dataclass(frozen=True)
class LedgerSettingsDef:
    """Runtime limits for ledger, guard, monitor and movement service."""

    lock_timeout_seconds: float = 10.0
    commit_timeout_seconds: float = 30.0
    guard_capacity: int = 10_000
    monitor_workers: int = 2
    service_workers: int = 4
    key_origin: str = "service"


@dataclass(frozen=True)
class DatabaseDef:
    """Database connection settings."""

    url: str | None = None
    pool_size: int = 20
    max_overflow: int = 10
    echo: bool = False


@dataclass(frozen=True)
class LedgerConfiguration:
    """A complete, versioned ledger configuration."""

    config_id: str
    version: int
    policy: PolicyDef = field(default_factory=PolicyDef)
    ledger: LedgerSettingsDef = field(default_factory=LedgerSettingsDef)
    database: DatabaseDef = field(default_factory=DatabaseDef)
    description: str = ""
    checksum: str = ""
