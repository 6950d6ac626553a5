# pping/engine/session.py

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

from pping.config import Settings
from pping.engine.aggregator import Aggregator, Listener
from pping.engine.correlator import Correlator
from pping.engine.rules import SEQUENCE_SPACE
from pping.engine.scheduler import Scheduler
from pping.engine.shutdown import ShutdownSignal
from pping.engine.state import SweepState, Target
from pping.errors import NoTargetsError, PpingError, ReadError, TransportError
from pping.schemas import Probe, ReceiveFailure, Reply, Summary
from pping.transport.base import Transceiver

logger = logging.getLogger(__name__)

# warm-up probes use an identifier no sweep target can have, so a late
# warm-up reply shows up as an out-of-range id instead of a false match
WARMUP_IDENTIFIER = 0xFFFF


class SweepSession:
    """
    Wires the pieces together and owns their lifetime:

        open()     socket + receive thread, blocks until the reader is ready
        warm_up()  one probe per candidate; silent/unroutable ones are dropped
        run()      sweep until the shutdown signal fires, then stop()
        stop()     coordinated teardown, returns the Summary

    Long-running consumers of the shutdown signal are the scheduler, the
    receive loop, and `extra_consumers` more registered by the caller
    (e.g. a quit-key reader).
    """

    def __init__(self,
                 transceiver: Transceiver,
                 settings: Optional[Settings] = None,
                 listener: Optional[Listener] = None,
                 clock=time.monotonic,
                 extra_consumers: int = 0):
        self.transceiver = transceiver
        self.s = settings or Settings()
        self.listener = listener
        self.clock = clock
        self.shutdown = ShutdownSignal(consumers=2 + extra_consumers)

        # the receive loop writes here from the start; it becomes the correlator mailbox
        self.inbox: queue.Queue = queue.Queue()
        self.excluded: list[tuple[str, str, str]] = []

        self.state: Optional[SweepState] = None
        self.correlator: Optional[Correlator] = None
        self.aggregator: Optional[Aggregator] = None
        self.scheduler: Optional[Scheduler] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._receiver: Optional[threading.Thread] = None
        self.summary: Optional[Summary] = None

    def __enter__(self) -> "SweepSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop("exit" if exc_type is None else f"error: {exc}")

    # -------------------------------
    # startup
    # -------------------------------
    def open(self) -> None:
        if self._receiver is not None:
            return
        self.transceiver.open()
        ready = threading.Event()
        self._receiver = threading.Thread(
            target=self.transceiver.receive_loop,
            args=(self.inbox.put, self.shutdown, ready),
            name="pping-receiver",
            daemon=True,
        )
        self._receiver.start()
        # no probe may leave before the reader is up, or its reply could be missed
        if not ready.wait(max(1.0, self.s.warmup_timeout)):
            raise TransportError("receive loop did not become ready")

    def warm_up(self, candidates: Sequence[tuple[str, str]]) -> list[Target]:
        """
        Probe each (label, address) once, one at a time. Candidates that fail to
        send or stay silent for warmup_timeout are left out of the sweep.
        """
        self.open()
        targets: list[Target] = []
        for index, (label, address) in enumerate(candidates):
            if self.shutdown.is_set():
                logger.info("warm-up interrupted after %d of %d candidates", index, len(candidates))
                break
            probe = Probe(WARMUP_IDENTIFIER, index % SEQUENCE_SPACE, address)
            sent_at = self.clock()
            try:
                self.transceiver.send(probe)
            except PpingError as e:
                self._exclude(label, address, str(e))
                continue

            rtt = self._await_warmup_reply(probe.sequence, sent_at)
            if rtt is None and self.shutdown.is_set():
                continue
            if rtt is None:
                self._exclude(label, address, f"no reply within {self.s.warmup_timeout:.1f}s")
                continue
            logger.debug("warm-up %s (%s) answered in %.2f ms", label, address, rtt * 1000.0)
            targets.append(Target(len(targets), label, address))

        if not targets:
            if self.shutdown.is_set():
                raise NoTargetsError("interrupted before any target answered")
            raise NoTargetsError("Unable to find ips for any of the provided urls.")
        return targets

    def _exclude(self, label: str, address: str, reason: str) -> None:
        logger.warning("Failed to ping IP %s for %s: %s", address, label, reason)
        self.excluded.append((label, address, reason))

    def _await_warmup_reply(self, sequence: int, sent_at: float) -> Optional[float]:
        deadline = time.monotonic() + self.s.warmup_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or self.shutdown.is_set():
                return None
            try:
                # short waits so an interrupt is noticed
                ev = self.inbox.get(timeout=min(remaining, 0.05))
            except queue.Empty:
                continue
            if isinstance(ev, ReceiveFailure):
                raise ReadError(f"receive loop died during warm-up: {ev.error}")
            if isinstance(ev, Reply) and ev.identifier == WARMUP_IDENTIFIER and ev.sequence == sequence:
                return ev.arrived_at - sent_at
            logger.debug("dropping %r during warm-up", ev)

    # -------------------------------
    # sweep
    # -------------------------------
    def start(self, targets: Sequence[Target]) -> None:
        if not targets:
            raise NoTargetsError("nothing to sweep")
        self.open()
        self.state = SweepState(list(targets), started_at=self.clock())
        self.aggregator = Aggregator(self.state, self.s, self.listener)
        self.correlator = Correlator(
            len(targets),
            mailbox=self.inbox,
            on_outcome=self.aggregator.record,
            on_fatal=self._on_fatal,
        )
        self._executor = ThreadPoolExecutor(max_workers=self.s.send_workers,
                                            thread_name_prefix="pping-send")
        self.scheduler = Scheduler(targets, self.transceiver, self.correlator, self._executor,
                                   interval_s=self.s.interval_s,
                                   max_in_flight=self.s.max_in_flight,
                                   clock=self.clock)
        self.correlator.start()
        self.scheduler.start(self.shutdown)
        logger.info("Pinging %d URLs...", len(targets))

    def _on_fatal(self, error: Exception) -> None:
        # runs on the correlator thread: only flag it, teardown happens in stop()
        if isinstance(error, ReadError):
            self.shutdown.trigger(f"read error: {error}")
        else:
            self.shutdown.trigger(f"correlator error: {error!r}")

    def run(self, targets: Sequence[Target]) -> Summary:
        self.start(targets)
        self.shutdown.wait()
        return self.stop()

    # -------------------------------
    # teardown
    # -------------------------------
    def stop(self, reason: str = "quit") -> Summary:
        if self.summary is not None:
            return self.summary

        # one deadline for the whole teardown, every step gets what is left of it
        deadline = time.monotonic() + self.s.shutdown_grace

        def remaining() -> float:
            return max(0.0, deadline - time.monotonic())

        self.shutdown.trigger(reason)
        if self.scheduler is None:
            self.shutdown.acknowledge("scheduler")
        if self._receiver is None:
            self.shutdown.acknowledge("receiver")

        # 1) every consumer has left its loop (or we give up waiting)
        if not self.shutdown.wait_for_acknowledgements(remaining()):
            logger.warning("gave up waiting after %.1fs; stopped so far: %s",
                           self.s.shutdown_grace, ", ".join(self.shutdown.acknowledged) or "none")

        # 2) queued probe tasks are dropped, the ones already writing get the rest of the grace
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self.scheduler is not None and not self.scheduler.wait_idle(remaining()):
            logger.warning("%d probe sends still running at shutdown", self.scheduler.in_flight)

        # 3) correlator drains whatever is already in the mailbox
        drained = True
        if self.correlator is not None and not self.correlator.stop(remaining()):
            drained = False
            logger.warning("correlator still draining after %.1fs; summary is partial",
                           self.s.shutdown_grace)

        # 4) only now is nobody reading or writing the socket
        self.transceiver.close()
        if self._receiver is not None:
            self._receiver.join(remaining())

        if self.aggregator is not None:
            self.summary = self.aggregator.summary(self.clock(), partial=not drained)
        else:
            self.summary = Summary(total_matched=0, elapsed=0.0, rate=0.0)
        logger.info("Pinged %d times in %.4f seconds (%.2f pings/sec).",
                    self.summary.total_matched, self.summary.elapsed, self.summary.rate)
        return self.summary

    def rows(self) -> list[list[str]]:
        return self.aggregator.rows() if self.aggregator is not None else []

    def pending_count(self) -> int:
        return self.correlator.pending_count() if self.correlator is not None else 0
