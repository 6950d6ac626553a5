# pping/engine/scheduler.py
import logging
import threading
import time
from concurrent.futures import Executor
from typing import Callable, Optional, Sequence

from pping.engine.correlator import Correlator
from pping.engine.rules import sweep_position
from pping.engine.shutdown import ShutdownSignal
from pping.engine.state import Target
from pping.errors import PpingError
from pping.schemas import PendingNotice, Probe, ProbeFailure
from pping.transport.base import Transceiver

logger = logging.getLogger(__name__)


class Scheduler:
    """Round-robin sweep: one probe per target per pass, a fixed pause between dispatches."""

    def __init__(self,
                 targets: Sequence[Target],
                 transceiver: Transceiver,
                 correlator: Correlator,
                 executor: Executor,
                 interval_s: float = 0.001,
                 max_in_flight: int = 64,
                 clock: Callable[[], float] = time.monotonic):
        if not targets:
            raise ValueError("scheduler needs at least one target")
        self.targets = list(targets)
        self.transceiver = transceiver
        self.correlator = correlator
        self.executor = executor
        self.interval_s = interval_s
        self.clock = clock
        self.max_in_flight = max(1, max_in_flight)
        self.index = 0
        self._in_flight = 0
        self._cond = threading.Condition()
        self._shutdown: Optional[ShutdownSignal] = None
        self._thread: Optional[threading.Thread] = None

    def next_probe(self) -> Probe:
        target_id, seq = sweep_position(self.index, len(self.targets))
        self.index += 1
        return Probe(target_id, seq, self.targets[target_id].address)

    def probe(self, probe: Probe) -> None:
        """
        Body of one probe task. The pending notice is queued before the write,
        so the correlator always sees it ahead of the matching reply.
        A task that only gets a worker after shutdown sends nothing.
        """
        if self._shutdown is not None and self._shutdown.is_set():
            return
        self.correlator.submit(PendingNotice(probe.target_id, probe.sequence, self.clock()))
        try:
            self.transceiver.send(probe)
        except PpingError as e:
            self.correlator.submit(ProbeFailure(probe.target_id, probe.sequence, e))

    # ----- in-flight accounting -----

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    def _reserve(self, shutdown: ShutdownSignal) -> bool:
        """Block while max_in_flight tasks are queued or running; False once shutdown fires."""
        poll = max(self.interval_s, 0.01)
        with self._cond:
            while self._in_flight >= self.max_in_flight:
                if shutdown.is_set():
                    return False
                self._cond.wait(poll)
            if shutdown.is_set():
                return False
            self._in_flight += 1
            return True

    def _release(self, _future=None) -> None:
        # done callback: also fires for futures cancelled before they ran
        with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    # ----- sweep loop -----

    def run(self, shutdown: ShutdownSignal) -> None:
        self._shutdown = shutdown
        try:
            while not shutdown.is_set():
                if not self._reserve(shutdown):
                    break
                try:
                    future = self.executor.submit(self.probe, self.next_probe())
                except RuntimeError:
                    self._release()
                    # pool already shut down underneath us
                    if shutdown.is_set():
                        break
                    raise
                future.add_done_callback(self._release)
                if shutdown.wait(self.interval_s):
                    break
        finally:
            logger.debug("sweep stopped after %d probes", self.index)
            shutdown.acknowledge("scheduler")

    def start(self, shutdown: ShutdownSignal) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, args=(shutdown,),
                                        name="pping-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
