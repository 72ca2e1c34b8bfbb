"""
Config -> Kernel Bridges.

Functions that convert a LedgerConfiguration into kernel objects.  They live
in stock_config (the producer) because the kernel must NEVER import
stock_config.

Usage:
    from stock_config import get_active_config
    from stock_config.bridges import build_stock_ledger, init_engine_from_config

    config = get_active_config()
    init_engine_from_config(config)
    ledger = build_stock_ledger(config, get_session_factory())
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stock_config.schema import LedgerConfiguration
from stock_kernel.db.engine import init_engine_from_url
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.validation import MovementPolicy
from stock_kernel.domain.values import SupplierRequirement
from stock_kernel.services.ledger_service import StockLedger
from stock_kernel.services.product_locks import ProductLockRegistry
from stock_kernel.services.reconciliation_monitor import ReconciliationMonitor, Sink
from stock_kernel.services.submission_guard import SubmissionGuard


def build_movement_policy(config: LedgerConfiguration) -> MovementPolicy:
    """Build the MovementPolicy shared by both gate call sites."""
    return MovementPolicy(
        supplier_requirement=SupplierRequirement(config.policy.supplier_requirement),
        max_quantity=config.policy.max_quantity,
        note_max_length=config.policy.note_max_length,
    )


def build_lock_registry(config: LedgerConfiguration) -> ProductLockRegistry:
    return ProductLockRegistry(timeout_seconds=config.ledger.lock_timeout_seconds)


def build_submission_guard(config: LedgerConfiguration) -> SubmissionGuard:
    return SubmissionGuard(capacity=config.ledger.guard_capacity)


def build_reconciliation_monitor(
    config: LedgerConfiguration,
    sinks: list[Sink] | None = None,
    clock: Clock | None = None,
) -> ReconciliationMonitor:
    return ReconciliationMonitor(
        sinks=sinks, clock=clock, max_workers=config.ledger.monitor_workers
    )


def build_stock_ledger(
    config: LedgerConfiguration,
    session_factory: sessionmaker[Session],
    clock: Clock | None = None,
    monitor: ReconciliationMonitor | None = None,
) -> StockLedger:
    """Wire a StockLedger from configuration."""
    return StockLedger(
        session_factory=session_factory,
        policy=build_movement_policy(config),
        clock=clock,
        lock_registry=build_lock_registry(config),
        monitor=monitor,
    )


def init_engine_from_config(
    config: LedgerConfiguration,
    database_url: str | None = None,
) -> Engine:
    """
    Initialize the kernel engine from the database section.

    Args:
        database_url: Overrides ``config.database.url`` when given.

    Raises:
        ValueError: If neither the override nor the config supplies a URL.
    """
    url = database_url or config.database.url
    if not url:
        raise ValueError(f"Configuration {config.config_id!r} has no database.url")
    return init_engine_from_url(
        url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
