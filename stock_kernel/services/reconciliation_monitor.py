"""
ReconciliationMonitor -- post-commit consistency check.

Responsibility:
    After each committed movement, compares the quantity change actually
    observed on the product row against the change the movement should have
    caused.  A mismatch means some writer bypassed the ledger's
    serialization point.  The monitor also audits a product's full history
    (stored quantity vs initial quantity plus signed movements) on demand.

Architecture position:
    Kernel > Services.  Invoked by StockLedger after commit, off the
    submission's thread.  Diagnostic only: it never raises into the caller
    and never rolls anything back.

Failure modes:
    - A mismatch is emitted as a CorruptionDetected / LedgerImbalanceDetected
      event to every registered sink and logged at ERROR.
    - A failing sink is logged and skipped; the remaining sinks still run.
    - A check that cannot be scheduled, or that receives an unknown
      direction, is logged at ERROR and dropped.

Audit relevance:
    ``reconciliation_mismatch`` and ``ledger_imbalance_detected`` log
    entries are the evidence trail for corrupted stock, with the product,
    movement and both quantities attached.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.values import Direction
from stock_kernel.exceptions import InvalidDirectionError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.product import Product
from stock_kernel.selectors.movement_selector import MovementSelector

logger = get_logger("services.reconciliation_monitor")


@dataclass(frozen=True)
class CorruptionDetected:
    """A committed movement whose observed delta differs from its expected delta."""

    product_id: UUID
    movement_id: UUID | None
    direction: Direction
    quantity: int
    pre_quantity: int
    post_quantity: int
    detected_at: datetime
    code: str = "RECONCILIATION_MISMATCH"

    @property
    def expected_delta(self) -> int:
        return self.direction.signed(self.quantity)

    @property
    def actual_delta(self) -> int:
        return self.post_quantity - self.pre_quantity


@dataclass(frozen=True)
class LedgerImbalanceDetected:
    """Stored product quantity differs from the quantity implied by its history."""

    product_id: UUID
    stored_quantity: int
    projected_quantity: int
    detected_at: datetime
    code: str = "LEDGER_IMBALANCE"

    @property
    def difference(self) -> int:
        return self.stored_quantity - self.projected_quantity


ReconciliationEvent = CorruptionDetected | LedgerImbalanceDetected
Sink = Callable[[ReconciliationEvent], None]


class ReconciliationMonitor:
    """
    Advisory consistency checker.

    Contract:
        ``check`` and ``audit_product`` return the detected event (or None)
        and never raise.  ``submit_check`` runs ``check`` on a background
        pool and returns the Future, or None once the pool is shut down.

    Non-goals:
        - Repairing data.  Corruption is reported, not fixed.
    """

    def __init__(
        self,
        sinks: list[Sink] | None = None,
        clock: Clock | None = None,
        max_workers: int = 2,
    ):
        self._sinks: list[Sink] = list(sinks or [])
        self._clock = clock if clock is not None else SystemClock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reconciliation"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def add_sink(self, sink: Sink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def check(
        self,
        product_id: UUID,
        pre_quantity: int,
        post_quantity: int,
        direction: Direction | str,
        quantity: int,
        movement_id: UUID | None = None,
    ) -> CorruptionDetected | None:
        try:
            direction = Direction.parse(direction)
        except InvalidDirectionError as exc:
            logger.error(
                "reconciliation_check_invalid",
                extra={
                    "code": exc.code,
                    "product_id": str(product_id),
                    "movement_id": str(movement_id) if movement_id else None,
                    "direction": str(exc.direction),
                },
            )
            return None
        if post_quantity - pre_quantity == direction.signed(quantity):
            logger.debug(
                "reconciliation_ok",
                extra={
                    "product_id": str(product_id),
                    "movement_id": str(movement_id) if movement_id else None,
                },
            )
            return None

        detected = CorruptionDetected(
            product_id=product_id,
            movement_id=movement_id,
            direction=direction,
            quantity=quantity,
            pre_quantity=pre_quantity,
            post_quantity=post_quantity,
            detected_at=self._clock.now(),
        )
        logger.error(
            "reconciliation_mismatch",
            extra={
                "code": detected.code,
                "product_id": str(product_id),
                "movement_id": str(movement_id) if movement_id else None,
                "direction": direction.value,
                "quantity": quantity,
                "pre_quantity": pre_quantity,
                "post_quantity": post_quantity,
                "expected_delta": detected.expected_delta,
                "actual_delta": detected.actual_delta,
            },
        )
        self._emit(detected)
        return detected

    def submit_check(
        self,
        product_id: UUID,
        pre_quantity: int,
        post_quantity: int,
        direction: Direction | str,
        quantity: int,
        movement_id: UUID | None = None,
    ) -> Future | None:
        """
        Queue ``check`` on the background pool.

        Returns None when the check cannot be scheduled (the monitor was
        shut down); the committed movement is unaffected.
        """
        try:
            future = self._executor.submit(
                self.check,
                product_id,
                pre_quantity,
                post_quantity,
                direction,
                quantity,
                movement_id,
            )
        except RuntimeError as exc:
            logger.error(
                "reconciliation_schedule_failed",
                extra={
                    "product_id": str(product_id),
                    "movement_id": str(movement_id) if movement_id else None,
                    "error": str(exc),
                },
            )
            return None
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def audit_product(
        self, session: Session, product_id: UUID
    ) -> LedgerImbalanceDetected | None:
        """
        Check the ledger balance for one product over its full history.

        Read-only; the caller owns the session.
        """
        stored = session.execute(
            select(Product.quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stored is None:
            logger.warning("audit_product_not_found", extra={"product_id": str(product_id)})
            return None

        projected = MovementSelector(session).projected_quantity(product_id)
        if projected == stored:
            logger.info(
                "ledger_balance_verified",
                extra={"product_id": str(product_id), "quantity": int(stored)},
            )
            return None

        detected = LedgerImbalanceDetected(
            product_id=product_id,
            stored_quantity=int(stored),
            projected_quantity=int(projected),
            detected_at=self._clock.now(),
        )
        logger.error(
            "ledger_imbalance_detected",
            extra={
                "code": detected.code,
                "product_id": str(product_id),
                "stored_quantity": detected.stored_quantity,
                "projected_quantity": detected.projected_quantity,
                "difference": detected.difference,
            },
        )
        self._emit(detected)
        return detected

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued checks.  Returns True if all finished in time."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _emit(self, event: ReconciliationEvent) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(event)
            except Exception:
                logger.exception(
                    "reconciliation_sink_failed",
                    extra={"sink": getattr(sink, "__name__", repr(sink))},
                )
