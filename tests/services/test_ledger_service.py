"""
StockLedger tests.

Every test drives the real ledger against the database and then reads the
outcome back in a fresh, short-lived session.
"""

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from stock_kernel.domain.dtos import LedgerStatus
from stock_kernel.domain.validation import MovementPolicy
from stock_kernel.domain.values import Direction, RejectReason, SupplierRequirement
from stock_kernel.services.ledger_service import StockLedger
from stock_kernel.services.product_locks import ProductLockRegistry
from stock_kernel.services.quantity_store import SqlQuantityStore
from stock_kernel.services.reconciliation_monitor import ReconciliationMonitor


class _FailingStore(SqlQuantityStore):
    """Quantity store whose adjust step fails with a database error."""

    def atomic_adjust(self, product_id, signed_delta):
        raise OperationalError("UPDATE products", {}, Exception("disk I/O error"))


class _ConstraintStore(SqlQuantityStore):
    def atomic_adjust(self, product_id, signed_delta):
        raise IntegrityError("UPDATE products", {}, Exception("constraint failed"))


class _StaleReadStore(SqlQuantityStore):
    """Reports more stock than the row holds, as a writer outside the lock would cause."""

    def read_quantity_for_update(self, product_id):
        return super().read_quantity_for_update(product_id) + 5


class TestCommit:
    def test_in_movement_commits_and_adjusts_quantity(
        self, ledger, create_product, make_metadata, current_quantity, movement_history
    ):
        product = create_product(quantity=0)

        result = ledger.submit(product.id, 50, "in", make_metadata())

        assert result.status is LedgerStatus.COMMITTED
        assert result.is_success
        assert result.movement_id is not None
        assert result.quantity_before == 0
        assert result.quantity_after == 50
        assert current_quantity(product.id) == 50

        history = movement_history(product.id)
        assert len(history) == 1
        assert history[0].id == result.movement_id
        assert history[0].direction is Direction.IN
        assert history[0].quantity == 50
        assert history[0].sequence == 1

    def test_out_exactly_available_reaches_zero(
        self, ledger, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=7)

        result = ledger.submit(product.id, 7, "out", make_metadata())

        assert result.status is LedgerStatus.COMMITTED
        assert result.quantity_after == 0
        assert current_quantity(product.id) == 0

    def test_sequential_outs_second_rejected(
        self, ledger, create_product, make_metadata, current_quantity, movement_history
    ):
        """Stock 10: out 5 commits, then out 10 sees 5 and is rejected."""
        product = create_product(quantity=10)

        first = ledger.submit(product.id, 5, "out", make_metadata())
        second = ledger.submit(product.id, 10, "out", make_metadata())

        assert first.status is LedgerStatus.COMMITTED
        assert second.status is LedgerStatus.REJECTED
        assert second.reason is RejectReason.INSUFFICIENT_STOCK
        assert "Available: 5" in second.message
        assert current_quantity(product.id) == 5
        assert len(movement_history(product.id)) == 1

    def test_movement_records_metadata(
        self, ledger, create_product, make_metadata, movement_history, deterministic_clock
    ):
        product = create_product(quantity=0)
        metadata = make_metadata(supplier_ref="ACME", note="pallet 4", actor_id="clerk-1")

        ledger.submit(product.id, 3, "in", metadata)

        record = movement_history(product.id)[0]
        assert record.supplier_ref == "ACME"
        assert record.note == "pallet 4"
        assert record.actor_id == "clerk-1"
        assert record.idempotency_key == metadata.idempotency_key
        assert record.occurred_at.replace(tzinfo=None) == (
            deterministic_clock.now().replace(tzinfo=None)
        )

    def test_each_movement_stamped_from_clock(
        self, ledger, create_product, make_metadata, movement_history, deterministic_clock
    ):
        product = create_product(quantity=0)

        first_at = deterministic_clock.now()
        ledger.submit(product.id, 1, "in", make_metadata())
        second_at = deterministic_clock.advance(90)
        ledger.submit(product.id, 1, "in", make_metadata())

        newest, oldest = movement_history(product.id)
        assert oldest.occurred_at.replace(tzinfo=None) == first_at.replace(tzinfo=None)
        assert newest.occurred_at.replace(tzinfo=None) == second_at.replace(tzinfo=None)

    def test_sequence_and_quantity_chain(
        self, ledger, create_product, make_metadata, movement_history
    ):
        product = create_product(quantity=10)

        for quantity, direction in [(5, "in"), (3, "out"), (12, "out"), (1, "in")]:
            ledger.submit(product.id, quantity, direction, make_metadata())

        history = list(reversed(movement_history(product.id)))
        assert [m.sequence for m in history] == [1, 2, 3, 4]
        assert history[0].quantity_before == 10
        for prev, nxt in zip(history, history[1:]):
            assert nxt.quantity_before == prev.quantity_after
        assert history[-1].quantity_after == 1

    def test_integral_float_quantity_is_accepted(
        self, ledger, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=0)

        result = ledger.submit(product.id, 4.0, "IN", make_metadata())

        assert result.status is LedgerStatus.COMMITTED
        assert current_quantity(product.id) == 4


class TestRejections:
    def test_out_from_empty_product_is_zero_stock(
        self, ledger, create_product, make_metadata, movement_history
    ):
        product = create_product(quantity=0)

        result = ledger.submit(product.id, 1, "out", make_metadata())

        assert result.status is LedgerStatus.REJECTED
        assert result.reason is RejectReason.ZERO_STOCK
        assert not result.is_retryable
        assert movement_history(product.id) == []

    @pytest.mark.parametrize("quantity", [0, -5, 1.5, "ten", True])
    def test_invalid_quantity(
        self, ledger, create_product, make_metadata, current_quantity, quantity
    ):
        product = create_product(quantity=10)

        result = ledger.submit(product.id, quantity, "in", make_metadata())

        assert result.status is LedgerStatus.REJECTED
        assert result.reason is RejectReason.INVALID_QUANTITY
        assert current_quantity(product.id) == 10

    def test_invalid_direction(self, ledger, create_product, make_metadata):
        product = create_product(quantity=10)

        result = ledger.submit(product.id, 1, "transfer", make_metadata())

        assert result.reason is RejectReason.INVALID_DIRECTION

    def test_unknown_product(self, ledger, make_metadata):
        result = ledger.submit(uuid4(), 1, "in", make_metadata())

        assert result.status is LedgerStatus.REJECTED
        assert result.reason is RejectReason.PRODUCT_NOT_FOUND

    def test_malformed_product_id(self, ledger, make_metadata):
        result = ledger.submit("not-a-uuid", 1, "in", make_metadata())

        assert result.reason is RejectReason.PRODUCT_NOT_FOUND

    def test_missing_supplier_rejected_before_any_lock(
        self, session_factory, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=10)
        locks = ProductLockRegistry(timeout_seconds=0.05)
        ledger = StockLedger(
            session_factory=session_factory,
            policy=MovementPolicy(supplier_requirement=SupplierRequirement.ALL),
            lock_registry=locks,
        )

        # Holding the product lock would time out any submission that took it.
        with locks.hold(product.id):
            result = ledger.submit(product.id, 1, "in", make_metadata())

        assert result.reason is RejectReason.MISSING_SUPPLIER
        assert current_quantity(product.id) == 10

    def test_supplier_required_for_inbound_only(
        self, session_factory, create_product, make_metadata
    ):
        product = create_product(quantity=10)
        ledger = StockLedger(
            session_factory=session_factory,
            policy=MovementPolicy(supplier_requirement=SupplierRequirement.INBOUND),
        )

        inbound = ledger.submit(product.id, 1, "in", make_metadata())
        outbound = ledger.submit(product.id, 1, "out", make_metadata())

        assert inbound.reason is RejectReason.MISSING_SUPPLIER
        assert outbound.status is LedgerStatus.COMMITTED

    def test_quantity_above_policy_cap(self, session_factory, create_product, make_metadata):
        product = create_product(quantity=0)
        ledger = StockLedger(
            session_factory=session_factory, policy=MovementPolicy(max_quantity=100)
        )

        result = ledger.submit(product.id, 101, "in", make_metadata())

        assert result.reason is RejectReason.INVALID_QUANTITY

    @pytest.mark.parametrize(
        "on_hand, requested, reason",
        [
            (0, 3, RejectReason.ZERO_STOCK),
            (2, 3, RejectReason.INSUFFICIENT_STOCK),
        ],
    )
    def test_refused_adjust_keeps_zero_and_short_apart(
        self, session_factory, create_product, make_metadata, current_quantity,
        movement_history, on_hand, requested, reason,
    ):
        product = create_product(quantity=on_hand)
        ledger = StockLedger(session_factory=session_factory, store_factory=_StaleReadStore)

        result = ledger.submit(product.id, requested, "out", make_metadata())

        assert result.status is LedgerStatus.REJECTED
        assert result.reason is reason
        assert current_quantity(product.id) == on_hand
        assert movement_history(product.id) == []


class TestIdempotency:
    def test_same_key_applies_once(
        self, ledger, create_product, make_metadata, current_quantity, movement_history
    ):
        product = create_product(quantity=0)
        metadata = make_metadata(key="pos:till-3:sale-881")

        first = ledger.submit(product.id, 10, "in", metadata)
        second = ledger.submit(product.id, 10, "in", metadata)

        assert first.status is LedgerStatus.COMMITTED
        assert second.status is LedgerStatus.DUPLICATE_IGNORED
        assert second.is_success
        assert second.reason is None
        assert second.movement_id == first.movement_id
        assert second.quantity_after == 10
        assert current_quantity(product.id) == 10
        assert len(movement_history(product.id)) == 1

    def test_retry_after_lost_response_does_not_double_apply(
        self, ledger, create_product, make_metadata, current_quantity
    ):
        """Commit succeeded but the caller never saw it; the retry is a no-op."""
        product = create_product(quantity=10)
        metadata = make_metadata()

        ledger.submit(product.id, 4, "out", metadata)
        retry = ledger.submit(product.id, 4, "out", metadata)

        assert retry.status is LedgerStatus.DUPLICATE_IGNORED
        assert current_quantity(product.id) == 6

    def test_duplicate_skips_stock_check(
        self, ledger, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=5)
        metadata = make_metadata()

        ledger.submit(product.id, 5, "out", metadata)
        # Stock is now 0; a replay must still report the original commit.
        retry = ledger.submit(product.id, 5, "out", metadata)

        assert retry.status is LedgerStatus.DUPLICATE_IGNORED
        assert current_quantity(product.id) == 0

    def test_reused_key_with_different_payload_logs_mismatch(
        self, ledger, create_product, make_metadata, current_quantity, captured_logs
    ):
        product = create_product(quantity=0)
        metadata = make_metadata()

        ledger.submit(product.id, 10, "in", metadata)
        result = ledger.submit(product.id, 99, "in", metadata)

        assert result.status is LedgerStatus.DUPLICATE_IGNORED
        assert current_quantity(product.id) == 10
        messages = [r["message"] for r in captured_logs()]
        assert "idempotency_key_payload_mismatch" in messages

    def test_rejected_key_can_be_resubmitted(
        self, ledger, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=0)
        metadata = make_metadata()

        rejected = ledger.submit(product.id, 3, "out", metadata)
        ledger.submit(product.id, 10, "in", make_metadata())
        retried = ledger.submit(product.id, 3, "out", metadata)

        assert rejected.status is LedgerStatus.REJECTED
        assert retried.status is LedgerStatus.COMMITTED
        assert current_quantity(product.id) == 7


class TestFailures:
    def test_persistence_failure_rolls_back(
        self, session_factory, create_product, make_metadata, current_quantity, movement_history
    ):
        product = create_product(quantity=10)
        ledger = StockLedger(session_factory=session_factory, store_factory=_FailingStore)

        result = ledger.submit(product.id, 3, "out", make_metadata())

        assert result.status is LedgerStatus.FAILED
        assert result.reason is RejectReason.PERSISTENCE_FAILURE
        assert result.is_retryable
        assert current_quantity(product.id) == 10
        assert movement_history(product.id) == []

    def test_integrity_error_without_duplicate_is_persistence_failure(
        self, session_factory, create_product, make_metadata, movement_history
    ):
        product = create_product(quantity=10)
        ledger = StockLedger(session_factory=session_factory, store_factory=_ConstraintStore)

        result = ledger.submit(product.id, 3, "in", make_metadata())

        assert result.status is LedgerStatus.FAILED
        assert result.reason is RejectReason.PERSISTENCE_FAILURE
        assert movement_history(product.id) == []

    def test_retry_after_failure_with_same_key_commits(
        self, session_factory, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=10)
        metadata = make_metadata()
        failing = StockLedger(session_factory=session_factory, store_factory=_FailingStore)
        healthy = StockLedger(session_factory=session_factory)

        failed = failing.submit(product.id, 3, "out", metadata)
        retried = healthy.submit(product.id, 3, "out", metadata)

        assert failed.status is LedgerStatus.FAILED
        assert retried.status is LedgerStatus.COMMITTED
        assert current_quantity(product.id) == 7

    def test_lock_timeout(self, session_factory, create_product, make_metadata, current_quantity):
        product = create_product(quantity=10)
        locks = ProductLockRegistry(timeout_seconds=0.05)
        ledger = StockLedger(session_factory=session_factory, lock_registry=locks)

        with locks.hold(product.id):
            result = ledger.submit(product.id, 1, "out", make_metadata())

        assert result.status is LedgerStatus.FAILED
        assert result.reason is RejectReason.LOCK_TIMEOUT
        assert result.is_retryable
        assert current_quantity(product.id) == 10


class TestCollaborators:
    def test_empty_injected_registry_is_used(self, session_factory):
        locks = ProductLockRegistry(timeout_seconds=0.5)

        ledger = StockLedger(session_factory=session_factory, lock_registry=locks)

        assert len(locks) == 0
        assert ledger.lock_registry is locks
        assert ledger.lock_registry.timeout_seconds == 0.5

    def test_ledgers_sharing_registry_serialize(
        self, session_factory, create_product, make_metadata, current_quantity
    ):
        product = create_product(quantity=3)
        locks = ProductLockRegistry(timeout_seconds=0.05)
        first = StockLedger(session_factory=session_factory, lock_registry=locks)
        second = StockLedger(session_factory=session_factory, lock_registry=locks)

        with first.lock_registry.hold(product.id):
            result = second.submit(product.id, 1, "in", make_metadata())

        assert result.reason is RejectReason.LOCK_TIMEOUT
        assert current_quantity(product.id) == 3

class TestMinimumStock:
    def test_below_minimum_flagged(self, ledger, create_product, make_metadata, captured_logs):
        product = create_product(quantity=10, minimum_stock=5)

        above = ledger.submit(product.id, 2, "out", make_metadata())
        below = ledger.submit(product.id, 4, "out", make_metadata())

        assert above.below_minimum is False
        assert below.below_minimum is True
        assert below.quantity_after == 4
        warnings = [r for r in captured_logs() if r["message"] == "stock_below_minimum"]
        assert len(warnings) == 1
        assert warnings[0]["minimum_stock"] == 5

    def test_no_minimum_never_flags(self, ledger, create_product, make_metadata):
        product = create_product(quantity=1)

        result = ledger.submit(product.id, 1, "out", make_metadata())

        assert result.below_minimum is False


class TestReconciliationHook:
    def test_committed_movement_is_checked(
        self, ledger, monitor, create_product, make_metadata, reconciliation_events, captured_logs
    ):
        product = create_product(quantity=10)

        ledger.submit(product.id, 3, "out", make_metadata())
        assert monitor.drain(timeout=5)

        assert reconciliation_events == []
        messages = [r["message"] for r in captured_logs()]
        assert "reconciliation_ok" in messages

    def test_rejected_movement_is_not_checked(
        self, ledger, monitor, create_product, make_metadata, captured_logs
    ):
        product = create_product(quantity=0)

        ledger.submit(product.id, 3, "out", make_metadata())
        assert monitor.drain(timeout=5)

        messages = [r["message"] for r in captured_logs()]
        assert "reconciliation_ok" not in messages

    def test_stopped_monitor_does_not_fail_committed_movement(
        self, session_factory, deterministic_clock, create_product, make_metadata,
        current_quantity, captured_logs,
    ):
        stopped = ReconciliationMonitor(clock=deterministic_clock)
        stopped.shutdown()
        ledger = StockLedger(
            session_factory=session_factory, clock=deterministic_clock, monitor=stopped
        )
        product = create_product(quantity=10)

        result = ledger.submit(product.id, 1, "in", make_metadata())

        assert result.status is LedgerStatus.COMMITTED
        assert current_quantity(product.id) == 11
        messages = [r["message"] for r in captured_logs()]
        assert "reconciliation_schedule_failed" in messages


class TestLogging:
    def test_commit_logs_carry_submission_context(
        self, ledger, create_product, make_metadata, captured_logs
    ):
        product = create_product(quantity=0)
        metadata = make_metadata(actor_id="clerk-7")

        result = ledger.submit(product.id, 2, "in", metadata)

        records = captured_logs()
        submitted = next(r for r in records if r["message"] == "movement_submitted")
        committed = next(r for r in records if r["message"] == "movement_committed")
        assert submitted["submission_key"] == metadata.idempotency_key
        assert submitted["actor_id"] == "clerk-7"
        assert committed["product_id"] == str(product.id)
        assert committed["movement_id"] == str(result.movement_id)
        assert committed["quantity_before"] == 0
        assert committed["quantity_after"] == 2
        assert committed["sequence"] == 1

    def test_rejection_logs_reason(self, ledger, create_product, make_metadata, captured_logs):
        product = create_product(quantity=0)

        ledger.submit(product.id, 1, "out", make_metadata())

        rejected = [r for r in captured_logs() if r["message"] == "movement_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["reason"] == "ZERO_STOCK"

    def test_persistence_failure_logs_exception(
        self, session_factory, create_product, make_metadata, captured_logs
    ):
        product = create_product(quantity=10)
        ledger = StockLedger(session_factory=session_factory, store_factory=_FailingStore)

        ledger.submit(product.id, 1, "out", make_metadata())

        failed = next(
            r for r in captured_logs() if r["message"] == "movement_persistence_failed"
        )
        assert failed["level"] == "ERROR"
        assert failed["reason"] == "PERSISTENCE_FAILURE"
        assert failed["exc_type"] == "OperationalError"
