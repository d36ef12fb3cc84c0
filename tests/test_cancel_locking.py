"""Tests for ralph.runner.cancel and ralph.runner.locking."""

import os
import signal
import threading
import time

import pytest

from ralph.runner.cancel import CancelToken, cancel_on_signals
from ralph.runner.locking import LockTimeout, run_lock


class TestCancelToken:
    def test_first_reason_wins(self):
        token = CancelToken()
        token.cancel("received SIGINT")
        token.cancel("received SIGTERM")
        assert token.cancelled
        assert token.reason == "received SIGINT"

    def test_sleep_returns_false_when_not_cancelled(self):
        assert CancelToken().sleep(0.01) is False

    def test_sleep_zero(self):
        token = CancelToken()
        assert token.sleep(0) is False
        token.cancel()
        assert token.sleep(0) is True

    def test_sleep_wakes_on_cancel(self):
        token = CancelToken()
        threading.Timer(0.1, token.cancel).start()
        start = time.monotonic()
        assert token.sleep(30) is True
        assert time.monotonic() - start < 10


class TestCancelOnSignals:
    def test_sigterm_sets_token(self):
        token = CancelToken()
        with cancel_on_signals(token):
            os.kill(os.getpid(), signal.SIGTERM)
            token.sleep(1)
        assert token.cancelled
        assert token.reason == "received SIGTERM"

    def test_handlers_restored(self):
        before = signal.getsignal(signal.SIGINT)
        with cancel_on_signals(CancelToken()):
            assert signal.getsignal(signal.SIGINT) is not before
        assert signal.getsignal(signal.SIGINT) is before


class TestRunLock:
    def test_lock_held_for_block(self, tmp_path):
        lock = tmp_path / ".ralph" / "run.lock"
        with run_lock(lock):
            assert lock.read_text().strip() == str(os.getpid())
        assert lock.exists()

    def test_released_after_block(self, tmp_path):
        lock = tmp_path / "run.lock"
        with run_lock(lock):
            pass
        with run_lock(lock):
            pass

    def test_second_holder_rejected(self, tmp_path):
        lock = tmp_path / "run.lock"
        with run_lock(lock):
            with pytest.raises(LockTimeout, match="Another ralph run"):
                with run_lock(lock):
                    pass
