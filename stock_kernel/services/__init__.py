"""Kernel services - ledger, guard, monitor and quantity store."""

from stock_kernel.services.ledger_service import StockLedger
from stock_kernel.services.product_locks import ProductLockRegistry
from stock_kernel.services.quantity_store import QuantityStore, SqlQuantityStore
from stock_kernel.services.reconciliation_monitor import (
    CorruptionDetected,
    LedgerImbalanceDetected,
    ReconciliationMonitor,
)
from stock_kernel.services.submission_guard import (
    Lease,
    SubmissionGuard,
    SubmissionState,
)

__all__ = [
    "StockLedger",
    "ProductLockRegistry",
    "QuantityStore",
    "SqlQuantityStore",
    "ReconciliationMonitor",
    "CorruptionDetected",
    "LedgerImbalanceDetected",
    "SubmissionGuard",
    "SubmissionState",
    "Lease",
]
