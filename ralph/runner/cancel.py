"""
Cooperative cancellation for a run.

SIGINT and SIGTERM set a CancelToken instead of raising. The agent invoker
and every sleep in the loop poll the token, so an interrupt kills the agent
subprocess and lets the controller record and restore before exiting.
"""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Optional

logger = logging.getLogger(__name__)


class CancelToken:
    """Thread-safe one-shot cancellation flag."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to seconds. Returns True if cancelled before or during the wait."""
        if seconds <= 0:
            return self.cancelled
        return self._event.wait(seconds)


@contextmanager
def cancel_on_signals(token: CancelToken, signals=(signal.SIGINT, signal.SIGTERM)):
    """
    Route signals to token.cancel() for the duration of the block.

    Previous handlers are restored on exit. Off the main thread signal
    handlers can't be installed, so the block runs without them.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on main thread; signal handlers not installed")
        yield token
        return

    def handler(signum, _frame):
        name = signal.Signals(signum).name
        logger.warning(f"Received {name}, stopping after cleanup")
        token.cancel(f"received {name}")

    originals = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield token
    finally:
        for sig, original in originals.items():
            signal.signal(sig, original)
