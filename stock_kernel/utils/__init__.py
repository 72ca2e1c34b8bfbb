"""Utility modules for the stock kernel."""

from stock_kernel.utils.idempotency import (
    generate_idempotency_key,
    new_idempotency_key,
    parse_idempotency_key,
)

__all__ = [
    "generate_idempotency_key",
    "new_idempotency_key",
    "parse_idempotency_key",
]
