# pping/engine/shutdown.py
import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """
    One-shot cancellation token shared by every long-running task.

    trigger() flips it exactly once; each consumer polls is_set()/wait() at its
    iteration boundary and calls acknowledge() on the way out. The coordinator
    waits for `consumers` acknowledgements (or a timeout) before tearing down
    what those consumers write to.
    """

    def __init__(self, consumers: int):
        self.consumers = consumers
        self.reason: Optional[str] = None
        self._event = threading.Event()
        self._cond = threading.Condition()
        self._acked: list[str] = []

    def trigger(self, reason: str = "quit") -> bool:
        with self._cond:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
        logger.info("shutdown requested: %s", reason)
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to timeout; True as soon as shutdown has been triggered."""
        return self._event.wait(timeout)

    def acknowledge(self, name: str) -> None:
        with self._cond:
            self._acked.append(name)
            self._cond.notify_all()
        logger.debug("%s stopped (%d/%d)", name, len(self._acked), self.consumers)

    @property
    def acknowledged(self) -> list[str]:
        with self._cond:
            return list(self._acked)

    def wait_for_acknowledgements(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while len(self._acked) < self.consumers:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True
