"""
Stock Kernel - movement ledger core

An append-only stock movement ledger with:
- Per-product serialized check-and-apply
- Atomic movement append + quantity adjust
- Idempotent submission via persisted tokens
- Post-commit reconciliation monitoring
"""

__version__ = "0.1.0"
