"""
ProductLockRegistry -- in-process serialization point per product.

Responsibility:
    Hands out one ``threading.Lock`` per product id so that submissions
    against the same product execute their check-and-apply one at a time
    within this process.  Submissions against different products never
    share a lock.

Architecture position:
    Kernel > Services.  Used by StockLedger around each atomic section.
    Cross-process serialization is the database's job (SELECT ... FOR
    UPDATE plus the conditional UPDATE); this registry keeps in-process
    threads from piling up on the same row lock.

Failure modes:
    - ProductLockTimeoutError if the lock is not acquired within the
      configured timeout.  Nothing has been read or written at that point.
"""

import threading
from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from stock_kernel.exceptions import ProductLockTimeoutError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.product_locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ProductLockRegistry:
    """
    Registry of per-product locks with bounded wait.

    Guarantees:
        - At most one holder per product id at a time.
        - Entries are dropped once no thread holds or waits on them, so the
          registry does not grow with the product catalogue.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self._timeout = timeout_seconds
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(
        self,
        product_id: UUID | str,
        timeout_seconds: float | None = None,
    ) -> Generator[None, None, None]:
        """
        Hold the lock for ``product_id`` for the duration of the block.

        Raises:
            ProductLockTimeoutError: If not acquired within the timeout.
        """
        key = str(product_id)
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning(
                    "product_lock_timeout",
                    extra={"product_id": key, "timeout_seconds": timeout},
                )
                raise ProductLockTimeoutError(key, timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def is_locked(self, product_id: UUID | str) -> bool:
        with self._guard:
            entry = self._entries.get(str(product_id))
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
