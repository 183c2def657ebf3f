"""Unit tests for ledger errors, the API error shape, keyed locks and the mutation context."""

import logging
import threading

from snt_ledger.api.errors import Forbidden, error_response
from snt_ledger.services.context import SYSTEM, MutationContext
from snt_ledger.services.errors import (
    AlreadyClosed,
    InsufficientRemaining,
    InvalidTransition,
    LedgerError,
    NotFound,
    PeriodClosedRequiresReason,
    ValidationError,
)
from snt_ledger.services.locks import KeyedLocks
from snt_ledger.services.logging import resolve_level, setup_server_logging


class TestLedgerErrors:
    """Test error codes and HTTP statuses."""

    def test_codes_and_statuses(self):
        cases = [
            (ValidationError("bad"), "validation_error", 400),
            (NotFound("Payment", 7), "not_found", 404),
            (InsufficientRemaining(1, "10.00", "5.00"), "insufficient_remaining", 400),
            (PeriodClosedRequiresReason(["2025-02", "2025-01"]), "period_closed_requires_reason", 409),
            (AlreadyClosed("2025-01"), "already_closed", 409),
            (InvalidTransition("penalty", 3, "voided", "freeze"), "invalid_transition", 409),
            (Forbidden(), "forbidden", 403),
        ]
        for error, code, http_status in cases:
            assert isinstance(error, LedgerError)
            assert error.code == code
            assert error.http_status == http_status

    def test_closed_periods_sorted_in_message(self):
        error = PeriodClosedRequiresReason(["2025-02", "2025-01"])

        assert error.periods == ["2025-01", "2025-02"]
        assert "2025-01, 2025-02" in error.message

    def test_error_response_shape(self):
        assert error_response(NotFound("Payment", 7)) == {
            "error": {"code": "not_found", "message": "Payment 7 not found"}
        }


class TestMutationContext:
    """Test reason handling."""

    def test_blank_reason_is_no_reason(self):
        assert not MutationContext("a", "   ").has_reason
        assert not MutationContext("a").has_reason
        assert MutationContext("a", "typo in statement").has_reason

    def test_system_context(self):
        assert SYSTEM.actor_id == "system"
        assert not SYSTEM.has_reason


class TestKeyedLocks:
    """Test per-key locking."""

    def test_reentrant_for_same_thread(self):
        locks = KeyedLocks()
        with locks.hold([1, 2]):
            with locks.hold([2]):
                pass

    def test_blocks_other_thread_on_same_key(self):
        locks = KeyedLocks()
        acquired = threading.Event()

        def worker():
            with locks.hold([1]):
                acquired.set()

        with locks.hold([3, 1]):
            thread = threading.Thread(target=worker)
            thread.start()
            assert not acquired.wait(0.1)
        thread.join(timeout=2)
        assert acquired.is_set()

    def test_other_keys_not_blocked(self):
        locks = KeyedLocks()
        acquired = threading.Event()

        def worker():
            with locks.hold([2]):
                acquired.set()

        with locks.hold([1]):
            thread = threading.Thread(target=worker)
            thread.start()
            assert acquired.wait(2)
        thread.join(timeout=2)

    def test_released_keys_are_evicted(self):
        locks = KeyedLocks()

        with locks.hold([1, 2]):
            with locks.hold([2]):
                assert len(locks) == 2
            assert len(locks) == 2

        assert len(locks) == 0

    def test_entry_kept_while_another_thread_waits(self):
        locks = KeyedLocks()
        waiting = threading.Event()
        done = threading.Event()

        def worker():
            waiting.set()
            with locks.hold([(12, 1)]):
                done.set()

        with locks.hold([(12, 1)]):
            thread = threading.Thread(target=worker)
            thread.start()
            assert waiting.wait(2)
            assert not done.wait(0.05)
        thread.join(timeout=2)

        assert done.is_set()
        assert len(locks) == 0

    def test_tuple_keys_for_plot_periods(self):
        locks = KeyedLocks()

        with locks.hold([(7, 2), (3, 5), (7, 1)]):
            assert len(locks) == 3


class TestLoggingSetup:
    """Test root logger configuration."""

    def test_resolve_level(self):
        assert resolve_level("debug") == logging.DEBUG
        assert resolve_level("WARNING") == logging.WARNING
        assert resolve_level("chatty") == logging.INFO
        assert resolve_level(None) == logging.INFO

    def test_setup_writes_to_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        log_file = tmp_path / "logs" / "worker.log"
        try:
            setup_server_logging(str(log_file), level="INFO")
            logging.getLogger("snt_ledger.test").info("worker started")
            for handler in root.handlers:
                handler.flush()

            assert len(root.handlers) == 2
            assert "snt_ledger.test - INFO - worker started" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
