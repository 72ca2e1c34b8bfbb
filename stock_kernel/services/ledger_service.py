"""
StockLedger -- authoritative check-and-apply for stock movements.

Responsibility:
    Accepts a movement request for a product, decides against a fresh
    serialized read whether it may be applied, and if so appends the
    immutable movement row and adjusts the product quantity in one
    transaction.  The only component allowed to change product quantity.

Architecture position:
    Kernel > Services -- imperative shell.  Owns its transaction boundary:
    opens a session per submission from the injected session factory and
    commits or rolls back itself.

Invariants enforced:
    - Ledger balance: movement insert and quantity adjustment commit
      together or not at all.
    - Non-negative stock: authoritative gate check on a locked read, then a
      conditional UPDATE, then the products CHECK constraint.
    - Idempotency: lookup by key before applying, and the UNIQUE constraint
      catches a concurrent duplicate that slipped past the lookup.
    - Per-product linearizability: ProductLockRegistry in-process,
      SELECT ... FOR UPDATE across processes.  Each movement records the
      quantity_before / quantity_after and per-product sequence it observed.

Failure modes:
    Returned, never raised:
    - REJECTED with the gate's reason (shape, metadata, stock, product).
    - DUPLICATE_IGNORED with the original movement's id and quantities.
    - FAILED / LOCK_TIMEOUT if the per-product lock was not acquired.
    - FAILED / PERSISTENCE_FAILURE on any other database error.  The
      transaction is rolled back, so nothing was applied.

Audit relevance:
    Every outcome is logged with the submission key, product and reason.
    Committed movements are handed to the ReconciliationMonitor.
"""

from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LedgerResult, LedgerStatus, MovementMetadata
from stock_kernel.domain.validation import (
    DEFAULT_POLICY,
    MovementPolicy,
    evaluate,
    evaluate_request,
    normalize_quantity,
)
from stock_kernel.domain.values import Direction, RejectReason
from stock_kernel.exceptions import (
    PersistenceFailureError,
    ProductLockTimeoutError,
    ProductNotFoundError,
    StockRejectionError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.movement import Movement
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.product_locks import ProductLockRegistry
from stock_kernel.services.quantity_store import QuantityStore, SqlQuantityStore
from stock_kernel.services.reconciliation_monitor import ReconciliationMonitor

logger = get_logger("services.ledger")

QuantityStoreFactory = Callable[[Session], QuantityStore]


def _parse_product_id(product_id: UUID | str) -> UUID | None:
    if isinstance(product_id, UUID):
        return product_id
    try:
        return UUID(str(product_id))
    except ValueError:
        return None


class StockLedger:
    """
    Serializes and applies stock movements.

    Contract:
        ``submit`` always returns a LedgerResult.  A COMMITTED result means
        the movement row and the quantity change are durable.

    Guarantees:
        - Malformed requests are rejected before any lock is taken.
        - The same MovementPolicy instance drives the pre-check and the
          authoritative check.
        - An idempotency key applies its delta at most once.

    Non-goals:
        - Duplicate suppression of in-flight submissions; that is
          SubmissionGuard's job.
        - Caller-facing timeouts and cancellation; see MovementService.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: MovementPolicy = DEFAULT_POLICY,
        clock: Clock | None = None,
        lock_registry: ProductLockRegistry | None = None,
        monitor: ReconciliationMonitor | None = None,
        store_factory: QuantityStoreFactory = SqlQuantityStore,
    ):
        self._session_factory = session_factory
        self._policy = policy
        self._clock = clock if clock is not None else SystemClock()
        self._locks = (
            lock_registry if lock_registry is not None else ProductLockRegistry()
        )
        self._monitor = monitor
        self._store_factory = store_factory

    @property
    def policy(self) -> MovementPolicy:
        return self._policy

    @property
    def lock_registry(self) -> ProductLockRegistry:
        return self._locks

    def submit(
        self,
        product_id: UUID | str,
        quantity: object,
        direction: Direction | str,
        metadata: MovementMetadata,
    ) -> LedgerResult:
        """
        Submit one movement.

        Args:
            product_id: Product to move stock for.
            quantity: Positive integer quantity (integral floats accepted).
            direction: "in" or "out".
            metadata: Idempotency key plus optional supplier, note, actor.

        Returns:
            LedgerResult with status COMMITTED, DUPLICATE_IGNORED,
            REJECTED or FAILED.
        """
        key = metadata.idempotency_key
        with LogContext.bind(
            submission_key=key,
            product_id=product_id,
            actor_id=metadata.actor_id,
        ):
            logger.info(
                "movement_submitted",
                extra={"direction": str(direction), "quantity": str(quantity)},
            )

            decision = evaluate_request(
                quantity, direction, metadata.supplier_ref, metadata.note, self._policy
            )
            if decision.rejected:
                return self._rejected(product_id, key, decision.reason, decision.message)

            parsed_id = _parse_product_id(product_id)
            if parsed_id is None:
                error = ProductNotFoundError(str(product_id))
                return self._rejected(product_id, key, RejectReason(error.code), str(error))

            amount = normalize_quantity(quantity, self._policy)
            parsed_direction = Direction.parse(direction)

            try:
                with self._locks.hold(parsed_id):
                    result = self._apply(parsed_id, amount, parsed_direction, metadata)
            except ProductLockTimeoutError as exc:
                logger.warning("movement_failed", extra={"reason": exc.code})
                return LedgerResult(
                    status=LedgerStatus.FAILED,
                    product_id=parsed_id,
                    idempotency_key=key,
                    reason=RejectReason.LOCK_TIMEOUT,
                    message=str(exc),
                )

            if result.status is LedgerStatus.COMMITTED and self._monitor is not None:
                self._monitor.submit_check(
                    parsed_id,
                    result.quantity_before,
                    result.observed_quantity,
                    parsed_direction,
                    amount,
                    result.movement_id,
                )
            return result.to_result()

    # ------------------------------------------------------------------
    # Atomic section
    # ------------------------------------------------------------------

    def _apply(
        self,
        product_id: UUID,
        quantity: int,
        direction: Direction,
        metadata: MovementMetadata,
    ) -> "_Outcome":
        key = metadata.idempotency_key
        session = self._session_factory()
        try:
            selector = MovementSelector(session)
            store = self._store_factory(session)

            existing = selector.get_by_idempotency_key(key)
            if existing is not None:
                session.rollback()
                return self._duplicate(existing, product_id, quantity, direction)

            try:
                current = store.read_quantity_for_update(product_id)
            except ProductNotFoundError as exc:
                session.rollback()
                return _Outcome.rejected(product_id, key, RejectReason(exc.code), str(exc))

            decision = evaluate(
                current, quantity, direction, self._policy, product_id=str(product_id)
            )
            if decision.rejected:
                session.rollback()
                return _Outcome.rejected(product_id, key, decision.reason, decision.message)

            signed = direction.signed(quantity)
            # Safe under the product row lock held since read_quantity_for_update
            sequence = selector.last_sequence(product_id) + 1
            movement = Movement(
                id=uuid4(),
                product_id=product_id,
                quantity=quantity,
                direction=direction.value,
                occurred_at=self._clock.now(),
                supplier_ref=metadata.supplier_ref,
                note=metadata.note,
                actor_id=metadata.actor_id,
                idempotency_key=key,
                quantity_before=current,
                quantity_after=current + signed,
                sequence=sequence,
            )
            session.add(movement)
            session.flush()

            observed = store.atomic_adjust(product_id, signed)
            minimum_stock = store.read_minimum_stock(product_id)
            session.commit()

        except (StockRejectionError, ProductNotFoundError) as exc:
            # Conditional UPDATE refused: another writer moved stock underneath us.
            session.rollback()
            return _Outcome.rejected(product_id, key, RejectReason(exc.code), str(exc))
        except IntegrityError as exc:
            session.rollback()
            return self._resolve_integrity_error(exc, product_id, quantity, direction, key)
        except SQLAlchemyError as exc:
            session.rollback()
            return self._persistence_failure(exc, product_id, key)
        finally:
            session.close()

        below_minimum = minimum_stock is not None and observed <= minimum_stock
        with LogContext.bind(movement_id=movement.id):
            logger.info(
                "movement_committed",
                extra={
                    "direction": direction.value,
                    "quantity": quantity,
                    "quantity_before": current,
                    "quantity_after": observed,
                    "sequence": sequence,
                },
            )
            if below_minimum:
                logger.warning(
                    "stock_below_minimum",
                    extra={"quantity_after": observed, "minimum_stock": minimum_stock},
                )

        return _Outcome(
            status=LedgerStatus.COMMITTED,
            product_id=product_id,
            idempotency_key=key,
            movement_id=movement.id,
            quantity_before=current,
            quantity_after=current + signed,
            observed_quantity=observed,
            below_minimum=below_minimum,
        )

    def _resolve_integrity_error(
        self,
        exc: IntegrityError,
        product_id: UUID,
        quantity: int,
        direction: Direction,
        key: str,
    ) -> "_Outcome":
        """A concurrent duplicate loses on the UNIQUE key; anything else is a failure."""
        session = self._session_factory()
        try:
            existing = MovementSelector(session).get_by_idempotency_key(key)
            session.rollback()
        except SQLAlchemyError as lookup_exc:
            session.rollback()
            return self._persistence_failure(lookup_exc, product_id, key)
        finally:
            session.close()

        if existing is not None:
            return self._duplicate(existing, product_id, quantity, direction)
        return self._persistence_failure(exc, product_id, key)

    def _duplicate(self, existing, product_id, quantity, direction) -> "_Outcome":
        if (
            existing.product_id != product_id
            or existing.quantity != quantity
            or existing.direction is not direction
        ):
            logger.warning(
                "idempotency_key_payload_mismatch",
                extra={
                    "original_movement_id": str(existing.id),
                    "original_product_id": str(existing.product_id),
                    "original_quantity": existing.quantity,
                    "original_direction": existing.direction.value,
                },
            )
        logger.info(
            "movement_duplicate_ignored",
            extra={"original_movement_id": str(existing.id)},
        )
        return _Outcome(
            status=LedgerStatus.DUPLICATE_IGNORED,
            product_id=existing.product_id,
            idempotency_key=existing.idempotency_key,
            movement_id=existing.id,
            message=f"Movement already recorded as {existing.id}",
            quantity_before=existing.quantity_before,
            quantity_after=existing.quantity_after,
        )

    def _persistence_failure(
        self, exc: Exception, product_id: UUID, key: str
    ) -> "_Outcome":
        error = PersistenceFailureError(str(product_id), type(exc).__name__)
        logger.error(
            "movement_persistence_failed",
            exc_info=exc,
            extra={"reason": error.code, "detail": error.detail},
        )
        return _Outcome(
            status=LedgerStatus.FAILED,
            product_id=product_id,
            idempotency_key=key,
            reason=RejectReason.PERSISTENCE_FAILURE,
            message=str(error),
        )

    def _rejected(self, product_id, key, reason, message) -> LedgerResult:
        logger.info(
            "movement_rejected",
            extra={"reason": reason.value, "detail": message},
        )
        return LedgerResult(
            status=LedgerStatus.REJECTED,
            product_id=product_id,
            idempotency_key=key,
            reason=reason,
            message=message,
        )


class _Outcome:
    """Internal result of the atomic section, carrying the observed quantity."""

    __slots__ = (
        "status",
        "product_id",
        "idempotency_key",
        "movement_id",
        "reason",
        "message",
        "quantity_before",
        "quantity_after",
        "observed_quantity",
        "below_minimum",
    )

    def __init__(
        self,
        status: LedgerStatus,
        product_id: UUID,
        idempotency_key: str,
        movement_id: UUID | None = None,
        reason: RejectReason | None = None,
        message: str | None = None,
        quantity_before: int | None = None,
        quantity_after: int | None = None,
        observed_quantity: int | None = None,
        below_minimum: bool = False,
    ):
        self.status = status
        self.product_id = product_id
        self.idempotency_key = idempotency_key
        self.movement_id = movement_id
        self.reason = reason
        self.message = message
        self.quantity_before = quantity_before
        self.quantity_after = quantity_after
        self.observed_quantity = observed_quantity
        self.below_minimum = below_minimum

    @classmethod
    def rejected(cls, product_id, key, reason, message) -> "_Outcome":
        logger.info(
            "movement_rejected",
            extra={"reason": reason.value, "detail": message},
        )
        return cls(
            status=LedgerStatus.REJECTED,
            product_id=product_id,
            idempotency_key=key,
            reason=reason,
            message=message,
        )

    def to_result(self) -> LedgerResult:
        return LedgerResult(
            status=self.status,
            product_id=self.product_id,
            idempotency_key=self.idempotency_key,
            movement_id=self.movement_id,
            reason=self.reason,
            message=self.message,
            quantity_before=self.quantity_before,
            quantity_after=(
                self.observed_quantity
                if self.observed_quantity is not None
                else self.quantity_after
            ),
            below_minimum=self.below_minimum,
        )
