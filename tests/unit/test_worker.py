"""
Unit tests for the background worker pool and keyed locks.

Tests cover:
- Task completion and failure accounting
- Retry of retryable errors only
- Shutdown rejects new tasks
- Per-key mutual exclusion
"""

import threading
import time

import pytest

from sdlc.modelvcs_core.errors import ConflictError, StorageFailureError, UnavailableError
from sdlc.modelvcs_core.locks import KeyedLock
from sdlc.modelvcs_core.worker import BackgroundTaskProcessor


@pytest.fixture
def worker():
    processor = BackgroundTaskProcessor(max_workers=2, retry_delay_ms=1, max_retries=2)
    yield processor
    processor.shutdown()


class TestBackgroundTaskProcessor:
    """Tests for BackgroundTaskProcessor."""

    def test_runs_task(self, worker):
        future = worker.submit_task(lambda: 42, "answer")
        assert future.result(timeout=5) == 42
        assert worker.wait_idle(timeout=5)
        assert worker.completed_count == 1
        assert worker.pending_count == 0

    def test_retryable_error_is_retried(self, worker):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StorageFailureError("transient")
            return "done"

        assert worker.submit_retryable_task(flaky, "flaky").result(timeout=5) == "done"
        assert len(attempts) == 3

    def test_retries_are_bounded(self, worker):
        attempts = []

        def broken():
            attempts.append(1)
            raise StorageFailureError("still down")

        future = worker.submit_retryable_task(broken, "broken", max_retries=1)
        with pytest.raises(StorageFailureError):
            future.result(timeout=5)
        assert len(attempts) == 2
        assert worker.wait_idle(timeout=5)
        assert worker.failed_count == 1

    def test_non_retryable_error_fails_once(self, worker):
        attempts = []

        def conflicting():
            attempts.append(1)
            raise ConflictError("nope")

        with pytest.raises(ConflictError):
            worker.submit_retryable_task(conflicting, "conflicting").result(timeout=5)
        assert len(attempts) == 1

    def test_submit_task_never_retries(self, worker):
        attempts = []

        def broken():
            attempts.append(1)
            raise StorageFailureError("down")

        with pytest.raises(StorageFailureError):
            worker.submit_task(broken, "once").result(timeout=5)
        assert len(attempts) == 1

    def test_shutdown_rejects_new_tasks(self):
        processor = BackgroundTaskProcessor()
        processor.shutdown()
        with pytest.raises(UnavailableError):
            processor.submit_task(lambda: None, "late")


class TestKeyedLock:
    """Tests for KeyedLock."""

    def test_same_key_is_exclusive(self):
        locks = KeyedLock()
        inside = []
        overlaps = []

        def hold():
            with locks.hold(("p1", "alice")):
                if inside:
                    overlaps.append(1)
                inside.append(1)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=hold) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        assert overlaps == []
        assert len(locks) == 0

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered = threading.Event()

        def other():
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=5)
            thread.join(timeout=5)

    def test_reentrant(self):
        locks = KeyedLock()
        with locks.hold("a"):
            with locks.hold("a"):
                assert len(locks) == 1
        assert len(locks) == 0
