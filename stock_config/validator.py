"""
Configuration Validator (``stock_config.validator``).

Responsibility
--------------
Checks a parsed ``LedgerConfiguration`` before it is bridged into kernel
objects.  Errors block activation; warnings are logged by the caller.

Invariants enforced
-------------------
* ``supplier_requirement`` is one of the known requirement values.
* Quantities, lengths, capacities and worker counts are positive.
* Timeouts are positive.  A commit timeout no longer than the lock
  timeout is a warning: callers would see OUTCOME_UNKNOWN for submissions
  that are merely queued behind the product lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stock_config.schema import SUPPLIER_REQUIREMENTS, LedgerConfiguration


class ConfigValidationError(ValueError):
    """Configuration failed validation and must not be activated."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: LedgerConfiguration) -> ConfigValidationResult:
    """Validate a configuration."""
    result = ConfigValidationResult()

    _validate_identity(config, result)
    _validate_policy(config, result)
    _validate_ledger_settings(config, result)
    _validate_database(config, result)

    return result


def _validate_identity(config: LedgerConfiguration, result: ConfigValidationResult) -> None:
    if not config.config_id.strip():
        result.add_error("config_id must not be empty")
    if config.version <= 0:
        result.add_error(f"version must be positive, got {config.version}")


def _validate_policy(config: LedgerConfiguration, result: ConfigValidationResult) -> None:
    policy = config.policy
    if policy.supplier_requirement not in SUPPLIER_REQUIREMENTS:
        result.add_error(
            f"policy.supplier_requirement must be one of {', '.join(SUPPLIER_REQUIREMENTS)}; "
            f"got {policy.supplier_requirement!r}"
        )
    if policy.max_quantity <= 0:
        result.add_error(f"policy.max_quantity must be positive, got {policy.max_quantity}")
    if policy.note_max_length <= 0:
        result.add_error(
            f"policy.note_max_length must be positive, got {policy.note_max_length}"
        )


def _validate_ledger_settings(
    config: LedgerConfiguration, result: ConfigValidationResult
) -> None:
    ledger = config.ledger
    for name in ("lock_timeout_seconds", "commit_timeout_seconds"):
        if getattr(ledger, name) <= 0:
            result.add_error(f"ledger.{name} must be positive, got {getattr(ledger, name)}")
    for name in ("guard_capacity", "monitor_workers", "service_workers"):
        if getattr(ledger, name) <= 0:
            result.add_error(f"ledger.{name} must be positive, got {getattr(ledger, name)}")
    if not ledger.key_origin or ":" in ledger.key_origin:
        result.add_error(
            f"ledger.key_origin must be non-empty and contain no ':', got {ledger.key_origin!r}"
        )
    if 0 < ledger.commit_timeout_seconds <= ledger.lock_timeout_seconds:
        result.add_warning(
            "ledger.commit_timeout_seconds is not greater than lock_timeout_seconds; "
            "queued submissions may report OUTCOME_UNKNOWN"
        )


def _validate_database(config: LedgerConfiguration, result: ConfigValidationResult) -> None:
    database = config.database
    if database.pool_size <= 0:
        result.add_error(f"database.pool_size must be positive, got {database.pool_size}")
    if database.max_overflow < 0:
        result.add_error(
            f"database.max_overflow must not be negative, got {database.max_overflow}"
        )
    url = database.url
    if url is not None and url.startswith("sqlite") and (
        ":memory:" in url or url.rstrip("/").endswith("sqlite:")
    ):
        result.add_error(
            "database.url must not be an in-memory SQLite database; "
            "each pooled connection would see its own empty database"
        )
