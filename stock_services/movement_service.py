"""
MovementService -- caller-facing movement submission.

Responsibility:
    Accepts transport-neutral movement requests, drives each submission
    through its lifecycle, and turns ledger outcomes into responses:

        IDLE -> VALIDATING -> COMMITTING -> COMMITTED | REJECTED | FAILED

    A submission refused by the SubmissionGuard is answered with
    DUPLICATE_SUPPRESSED and never reaches the ledger.  A submission may be
    cancelled while IDLE or VALIDATING; once COMMITTING it always runs to a
    terminal state.

Architecture position:
    Services -- orchestration over stock_kernel.  May import stock_kernel and
    stock_config; neither may import this package.

Invariants enforced:
    - Advisory vs authoritative: VALIDATING runs only the shape and
      metadata checks.  Stock sufficiency is decided by StockLedger inside
      its atomic section.  ``preview()`` is a separate, read-only call.
    - Outcome-unknown safety: if the commit does not finish within
      ``commit_timeout_seconds`` the caller gets FAILED / OUTCOME_UNKNOWN,
      the worker keeps running, and the submission key stays pending until
      it does.  A retry with the same idempotency key is always safe.

Failure modes:
    - CancellationNotAllowedError from ``cancel()`` once COMMITTING.
    - ValueError from ``MovementRequest.from_dict`` on missing fields.
    - Unexpected exceptions from the ledger propagate to the caller after
      the lease is released.
"""

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import LedgerResult, LedgerStatus, MovementMetadata
from stock_kernel.domain.validation import evaluate, evaluate_request
from stock_kernel.domain.values import RejectReason
from stock_kernel.exceptions import (
    CancellationNotAllowedError,
    CommitTimeoutError,
    ProductNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.ledger_service import StockLedger
from stock_kernel.services.quantity_store import SqlQuantityStore
from stock_kernel.services.reconciliation_monitor import ReconciliationMonitor
from stock_kernel.services.submission_guard import Lease, SubmissionGuard
from stock_kernel.utils.idempotency import new_idempotency_key

logger = get_logger("services.movement")

_MAX_TRACKED_SUBMISSIONS = 10_000


class SubmissionPhase(str, Enum):
    """Lifecycle state of one submission."""

    IDLE = "idle"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (
            SubmissionPhase.IDLE,
            SubmissionPhase.VALIDATING,
            SubmissionPhase.COMMITTING,
        )


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class MovementRequest:
    """A movement submission as received from a caller."""

    product_id: str
    quantity: Any
    direction: str
    note: str | None = None
    supplier_ref: str | None = None
    idempotency_key: str | None = None
    actor_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MovementRequest":
        """
        Build a request from its dict form.

        ``quantity`` is passed through untouched so the gate can reject
        non-numeric values with INVALID_QUANTITY.

        Raises:
            ValueError: If product_id, quantity or direction is missing.
        """
        missing = [k for k in ("product_id", "quantity", "direction") if data.get(k) is None]
        if missing:
            raise ValueError(f"Missing required field(s): {', '.join(missing)}")
        return cls(
            product_id=str(data["product_id"]).strip(),
            quantity=data["quantity"],
            direction=str(data["direction"]),
            note=_clean(data.get("note")),
            supplier_ref=_clean(data.get("supplier_ref")),
            idempotency_key=_clean(data.get("idempotency_key")),
            actor_id=_clean(data.get("actor_id")),
        )


@dataclass(frozen=True)
class MovementResponse:
    """Outcome of a submission as returned to the caller."""

    accepted: bool
    status: str
    state: SubmissionPhase
    idempotency_key: str
    movement_id: UUID | None = None
    reason: RejectReason | None = None
    message: str | None = None
    quantity_after: int | None = None
    below_minimum: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "status": self.status,
            "state": self.state.value,
            "idempotency_key": self.idempotency_key,
            "movement_id": str(self.movement_id) if self.movement_id else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "quantity_after": self.quantity_after,
            "below_minimum": self.below_minimum,
        }


@dataclass(frozen=True)
class MovementPreview:
    """Advisory answer for a request.  Never authorizes a commit."""

    accepted: bool
    reason: RejectReason | None = None
    message: str | None = None
    current_quantity: int | None = None


_LEDGER_PHASE = {
    LedgerStatus.COMMITTED: SubmissionPhase.COMMITTED,
    LedgerStatus.DUPLICATE_IGNORED: SubmissionPhase.COMMITTED,
    LedgerStatus.REJECTED: SubmissionPhase.REJECTED,
    LedgerStatus.FAILED: SubmissionPhase.FAILED,
}


class MovementService:
    """
    Drives movement submissions through guard, ledger and timeout handling.

    Contract:
        ``submit`` returns a MovementResponse for every business outcome.

    Guarantees:
        - One in-flight attempt per idempotency key in this process.
        - ``cancel`` succeeds only before COMMITTING.

    Non-goals:
        - Authentication, authorization, and transport.
    """

    def __init__(
        self,
        ledger: StockLedger,
        session_factory: sessionmaker[Session],
        guard: SubmissionGuard | None = None,
        commit_timeout_seconds: float = 30.0,
        max_workers: int = 4,
        key_origin: str = "service",
    ):
        if commit_timeout_seconds <= 0:
            raise ValueError(
                f"commit_timeout_seconds must be positive, got {commit_timeout_seconds}"
            )
        self._ledger = ledger
        self._session_factory = session_factory
        self._guard = guard if guard is not None else SubmissionGuard()
        self._commit_timeout = commit_timeout_seconds
        self._key_origin = key_origin
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="movement-commit"
        )
        self._phases: OrderedDict[str, SubmissionPhase] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        monitor: ReconciliationMonitor | None = None,
    ) -> "MovementService":
        """Wire the service and its ledger from a LedgerConfiguration."""
        from stock_config.bridges import build_stock_ledger, build_submission_guard

        return cls(
            ledger=build_stock_ledger(config, session_factory, clock=clock, monitor=monitor),
            session_factory=session_factory,
            guard=build_submission_guard(config),
            commit_timeout_seconds=config.ledger.commit_timeout_seconds,
            max_workers=config.ledger.service_workers,
            key_origin=config.ledger.key_origin,
        )

    @property
    def guard(self) -> SubmissionGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Lifecycle bookkeeping
    # ------------------------------------------------------------------

    def state(self, submission_key: str) -> SubmissionPhase:
        with self._lock:
            return self._phases.get(submission_key, SubmissionPhase.IDLE)

    def _set_phase(self, submission_key: str, phase: SubmissionPhase) -> None:
        with self._lock:
            self._set_phase_locked(submission_key, phase)

    def _set_phase_locked(self, submission_key: str, phase: SubmissionPhase) -> None:
        self._phases[submission_key] = phase
        self._phases.move_to_end(submission_key)
        overflow = len(self._phases) - _MAX_TRACKED_SUBMISSIONS
        if overflow > 0:
            stale = [k for k, p in self._phases.items() if p.is_terminal][:overflow]
            for key in stale:
                del self._phases[key]

    def prepare(self, request: MovementRequest) -> MovementRequest:
        """
        Register a submission in IDLE, assigning an idempotency key if needed.

        Returns the request carrying its key.  Submitting the returned
        request (even more than once) always refers to the same submission.
        """
        if request.idempotency_key is None:
            request = replace(
                request,
                idempotency_key=new_idempotency_key(self._key_origin, request.product_id),
            )
        with self._lock:
            if request.idempotency_key not in self._phases:
                self._set_phase_locked(request.idempotency_key, SubmissionPhase.IDLE)
        return request

    def cancel(self, submission_key: str) -> bool:
        """
        Cancel a submission that has not started committing.

        Returns True if cancelled, False if the key is unknown or already
        finished.

        Raises:
            CancellationNotAllowedError: If the submission is COMMITTING.
        """
        with self._lock:
            phase = self._phases.get(submission_key)
            if phase is SubmissionPhase.COMMITTING:
                raise CancellationNotAllowedError(submission_key, phase.value)
            if phase not in (SubmissionPhase.IDLE, SubmissionPhase.VALIDATING):
                return False
            self._set_phase_locked(submission_key, SubmissionPhase.CANCELLED)
        logger.info("submission_cancelled", extra={"submission_key": submission_key})
        return True

    def _enter_committing(self, submission_key: str) -> bool:
        """VALIDATING -> COMMITTING, unless cancelled in between."""
        with self._lock:
            if self._phases.get(submission_key) is SubmissionPhase.CANCELLED:
                return False
            self._set_phase_locked(submission_key, SubmissionPhase.COMMITTING)
            return True

    def _consume_cancellation(self, submission_key: str) -> bool:
        with self._lock:
            if self._phases.get(submission_key) is SubmissionPhase.CANCELLED:
                del self._phases[submission_key]
                return True
            return False

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: MovementRequest) -> MovementResponse:
        request = self.prepare(request)
        key = request.idempotency_key

        with LogContext.bind(
            submission_key=key,
            product_id=request.product_id,
            actor_id=request.actor_id,
        ):
            lease = self._guard.acquire(key)
            if lease is None:
                return MovementResponse(
                    accepted=False,
                    status=SubmissionPhase.DUPLICATE_SUPPRESSED.value,
                    state=SubmissionPhase.DUPLICATE_SUPPRESSED,
                    idempotency_key=key,
                    reason=RejectReason.DUPLICATE_SUPPRESSED,
                    message="Submission already in progress or completed",
                )

            if self._consume_cancellation(key):
                lease.release()
                return self._cancelled(key)

            self._set_phase(key, SubmissionPhase.VALIDATING)
            decision = evaluate_request(
                request.quantity,
                request.direction,
                request.supplier_ref,
                request.note,
                self._ledger.policy,
            )
            if decision.rejected:
                lease.release()
                self._set_phase(key, SubmissionPhase.REJECTED)
                logger.info(
                    "submission_rejected",
                    extra={"reason": decision.reason.value, "detail": decision.message},
                )
                return MovementResponse(
                    accepted=False,
                    status=LedgerStatus.REJECTED.value,
                    state=SubmissionPhase.REJECTED,
                    idempotency_key=key,
                    reason=decision.reason,
                    message=decision.message,
                )

            if not self._enter_committing(key):
                self._consume_cancellation(key)
                lease.release()
                return self._cancelled(key)

            return self._commit(request, lease)

    def _commit(self, request: MovementRequest, lease: Lease) -> MovementResponse:
        key = request.idempotency_key
        metadata = MovementMetadata(
            idempotency_key=key,
            supplier_ref=request.supplier_ref,
            note=request.note,
            actor_id=request.actor_id,
        )
        future = self._executor.submit(self._run, request, metadata, lease)

        try:
            result = future.result(timeout=self._commit_timeout)
        except FutureTimeoutError:
            error = CommitTimeoutError(key, self._commit_timeout)
            logger.warning(
                "submission_outcome_unknown",
                extra={"reason": error.code, "timeout_seconds": self._commit_timeout},
            )
            return MovementResponse(
                accepted=False,
                status=LedgerStatus.FAILED.value,
                state=SubmissionPhase.FAILED,
                idempotency_key=key,
                reason=RejectReason.OUTCOME_UNKNOWN,
                message=str(error),
            )

        return self._response(result)

    def _run(
        self, request: MovementRequest, metadata: MovementMetadata, lease: Lease
    ) -> LedgerResult:
        """Worker body: call the ledger, then settle phase and lease before returning."""
        key = metadata.idempotency_key
        try:
            result = self._ledger.submit(
                request.product_id, request.quantity, request.direction, metadata
            )
        except Exception:
            self._set_phase(key, SubmissionPhase.FAILED)
            lease.release()
            raise

        # Phase first: once the lease is released a retry may start a new attempt.
        self._set_phase(key, _LEDGER_PHASE[result.status])
        if result.is_success:
            lease.commit()
        else:
            lease.release()
        return result

    def _response(self, result: LedgerResult) -> MovementResponse:
        return MovementResponse(
            accepted=result.is_success,
            status=result.status.value,
            state=_LEDGER_PHASE[result.status],
            idempotency_key=result.idempotency_key,
            movement_id=result.movement_id,
            reason=result.reason,
            message=result.message,
            quantity_after=result.quantity_after,
            below_minimum=result.below_minimum,
        )

    def _cancelled(self, key: str) -> MovementResponse:
        return MovementResponse(
            accepted=False,
            status=SubmissionPhase.CANCELLED.value,
            state=SubmissionPhase.CANCELLED,
            idempotency_key=key,
            message="Submission cancelled before commit",
        )

    # ------------------------------------------------------------------
    # Advisory preview
    # ------------------------------------------------------------------

    def preview(self, request: MovementRequest) -> MovementPreview:
        """
        Evaluate a request against an unserialized stock read.

        For immediate feedback only.  The answer may be stale by the time
        the request is submitted; the ledger re-checks authoritatively.
        """
        policy = self._ledger.policy
        decision = evaluate_request(
            request.quantity, request.direction, request.supplier_ref, request.note, policy
        )
        if decision.rejected:
            return MovementPreview(False, decision.reason, decision.message)

        try:
            product_id = UUID(str(request.product_id))
        except ValueError:
            error = ProductNotFoundError(str(request.product_id))
            return MovementPreview(False, RejectReason(error.code), str(error))

        session = self._session_factory()
        try:
            current = SqlQuantityStore(session).read_quantity(product_id)
        except ProductNotFoundError as exc:
            return MovementPreview(False, RejectReason(exc.code), str(exc))
        finally:
            session.rollback()
            session.close()

        decision = evaluate(
            current, request.quantity, request.direction, policy, product_id=str(product_id)
        )
        return MovementPreview(
            accepted=decision.accepted,
            reason=decision.reason,
            message=decision.message,
            current_quantity=current,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
