"""
SubmissionGuard -- per-submission duplicate suppression.

Responsibility:
    Makes sure one logical submission is in flight at most once.  A
    double-click, a retried request racing the original, or a replay after
    a successful commit is refused here before it reaches the ledger.

Architecture position:
    Kernel > Services.  Sits in front of StockLedger.  The guard is an
    in-memory fast path; the durable protection is the ledger's unique
    idempotency key, which still holds across processes and restarts.

Per-key states:

    IDLE --acquire--> PENDING --commit--> COMMITTED   (terminal, refuses forever)
                        |
                        +----release--> RELEASED     (may be acquired again)

Failure modes:
    - A refused acquisition returns None and logs
      ``submission_duplicate_suppressed``.  It never raises.
    - LeaseStateError when a lease is committed after it was released,
      released after it was committed, or finished after its key was
      re-acquired by another caller.
"""

import itertools
import threading
from collections import OrderedDict
from enum import Enum

from stock_kernel.exceptions import LeaseStateError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.submission_guard")

DEFAULT_GUARD_CAPACITY = 10_000


class SubmissionState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    RELEASED = "released"


class Lease:
    """
    Exclusive right to submit one logical submission.

    Each acquisition gets its own token.  Only the lease holding the key's
    current token can move it out of PENDING; a lease that already finished
    keeps reporting its own outcome even after another caller re-acquires
    the key.

    Usable as a context manager: on exit the lease is released unless it
    was committed.
    """

    def __init__(self, guard: "SubmissionGuard", key: str, token: int):
        self._guard = guard
        self._key = key
        self._token = token
        self._outcome: SubmissionState | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def token(self) -> int:
        return self._token

    @property
    def state(self) -> SubmissionState:
        return self._guard._lease_state(self)

    def commit(self) -> None:
        """Consume the key permanently.  Later acquisitions are refused."""
        self._guard._finish(self, SubmissionState.COMMITTED)

    def release(self) -> None:
        """Give the key back so the submission may be attempted again."""
        self._guard._finish(self, SubmissionState.RELEASED)

    def __enter__(self) -> "Lease":
        return self

    def __exit__(self, *exc) -> None:
        if self.state is SubmissionState.PENDING:
            self.release()

    def __repr__(self) -> str:
        return f"<Lease {self._key}#{self._token} {self.state.value}>"


class SubmissionGuard:
    """
    Thread-safe registry of submission keys.

    Contract:
        ``acquire`` returns a Lease only when the key is IDLE or RELEASED.

    Guarantees:
        - Two threads acquiring the same key concurrently: exactly one gets
          a lease.
        - Only the current holder finishes a PENDING key.  A stale lease
          from an earlier acquisition raises LeaseStateError instead.
        - COMMITTED keys are refused until evicted.
        - At most ``capacity`` terminal keys are tracked.  The oldest
          RELEASED keys are evicted first, then the oldest COMMITTED keys.
          PENDING keys are never evicted.
    """

    def __init__(self, capacity: int = DEFAULT_GUARD_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._states: OrderedDict[str, SubmissionState] = OrderedDict()
        # PENDING key -> token of the lease allowed to finish it
        self._holders: dict[str, int] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def acquire(self, submission_key: str) -> Lease | None:
        with self._lock:
            state = self._states.get(submission_key, SubmissionState.IDLE)
            if state in (SubmissionState.PENDING, SubmissionState.COMMITTED):
                token = None
            else:
                token = next(self._tokens)
                self._states[submission_key] = SubmissionState.PENDING
                self._states.move_to_end(submission_key)
                self._holders[submission_key] = token

        if token is None:
            logger.info(
                "submission_duplicate_suppressed",
                extra={"submission_key": submission_key, "state": state.value},
            )
            return None

        logger.debug(
            "submission_lease_acquired",
            extra={"submission_key": submission_key, "token": token},
        )
        return Lease(self, submission_key, token)

    def state(self, submission_key: str) -> SubmissionState:
        with self._lock:
            return self._states.get(submission_key, SubmissionState.IDLE)

    def _lease_state(self, lease: Lease) -> SubmissionState:
        with self._lock:
            if self._holders.get(lease.key) == lease.token:
                return SubmissionState.PENDING
            return lease._outcome or SubmissionState.RELEASED

    def _finish(self, lease: Lease, target: SubmissionState) -> None:
        action = "commit" if target is SubmissionState.COMMITTED else "release"
        key = lease.key
        with self._lock:
            if self._holders.get(key) != lease.token:
                if lease._outcome is target:
                    return
                finished = lease._outcome or SubmissionState.RELEASED
                raise LeaseStateError(key, finished.value, action)
            del self._holders[key]
            lease._outcome = target
            self._states[key] = target
            self._states.move_to_end(key)
            self._evict_locked()

        logger.debug(
            "submission_lease_finished",
            extra={"submission_key": key, "token": lease.token, "state": target.value},
        )

    def _evict_locked(self) -> None:
        overflow = len(self._states) - self._capacity
        if overflow <= 0:
            return
        for preferred in (SubmissionState.RELEASED, SubmissionState.COMMITTED):
            victims = [k for k, s in self._states.items() if s is preferred][:overflow]
            for key in victims:
                del self._states[key]
            overflow -= len(victims)
            if overflow <= 0:
                return

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
