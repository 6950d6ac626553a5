# pping/engine/correlator.py
import logging
import queue
import threading
from collections import Counter
from typing import Callable, Optional

from pping.engine.rules import in_range
from pping.engine.state import PendingRequest
from pping.schemas import (
    Event, Failed, Malformed, Matched, NotEchoReply, Notice, Outcome,
    PendingNotice, ProbeFailure, ReceiveFailure, Reply, Unsolicited,
)

logger = logging.getLogger(__name__)

_STOP = object()


class Correlator:
    """
    Sole owner of the pending-request table.

    Producers (probe tasks, the receive loop) only ever put events into the
    mailbox; a single thread drains it through handle(). Outcomes go to
    `on_outcome`, which therefore always runs on the correlator thread.

    Pending entries never expire: a target that stops answering keeps its
    unanswered entries for the life of the process.
    """

    def __init__(self,
                 target_count: int,
                 mailbox: Optional[queue.Queue] = None,
                 on_outcome: Optional[Callable[[Outcome], None]] = None,
                 on_fatal: Optional[Callable[[Exception], None]] = None):
        self.target_count = target_count
        self.on_outcome = on_outcome
        self.on_fatal = on_fatal
        self.mailbox: queue.Queue = mailbox if mailbox is not None else queue.Queue()
        self.anomalies: Counter = Counter()
        self._pending: list[dict[int, PendingRequest]] = [{} for _ in range(target_count)]
        self._thread: Optional[threading.Thread] = None

    # ----- producer side (any thread) -----

    def submit(self, event: Event) -> None:
        self.mailbox.put(event)

    # ----- consumer side (correlator thread only) -----

    def pending_count(self) -> int:
        return sum(len(p) for p in self._pending)

    def is_pending(self, target_id: int, sequence: int) -> bool:
        return in_range(target_id, self.target_count) and sequence in self._pending[target_id]

    def handle(self, event: Event) -> Optional[Outcome]:
        if isinstance(event, PendingNotice):
            outcome = self._on_pending(event)
        elif isinstance(event, Reply):
            outcome = self._on_reply(event)
        elif isinstance(event, ProbeFailure):
            outcome = self._on_failure(event)
        elif isinstance(event, NotEchoReply):
            logger.debug("ignoring icmp type %d code %d from %s", event.icmp_type, event.code, event.peer)
            outcome = Notice("not_echo_reply",
                             f"got icmp type {event.icmp_type} code {event.code} from {event.peer}; want echo reply")
        elif isinstance(event, Malformed):
            logger.warning("unparseable datagram from %s: %s", event.peer, event.error)
            outcome = Notice("parse_error", f"{event.peer}: {event.error}")
        elif isinstance(event, ReceiveFailure):
            outcome = Notice("read_error", str(event.error))
            if self.on_fatal is not None:
                self.on_fatal(event.error)
        else:
            raise TypeError(f"unexpected event {event!r}")

        if outcome is not None and self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    def _reject(self, target_id: int, what: str) -> Notice:
        self.anomalies["out_of_range"] += 1
        logger.warning("%s references invalid id %d", what, target_id)
        return Notice("out_of_range", f"Received invalid id: {target_id}")

    def _on_pending(self, ev: PendingNotice) -> Optional[Outcome]:
        if not in_range(ev.target_id, self.target_count):
            return self._reject(ev.target_id, "pending notice")
        table = self._pending[ev.target_id]
        duplicate = ev.sequence in table
        table[ev.sequence] = PendingRequest(ev.target_id, ev.sequence, ev.sent_at)
        if duplicate:
            self.anomalies["duplicate_pending"] += 1
            logger.warning("overwrote pending request %d/%d", ev.target_id, ev.sequence)
            return Notice("duplicate_pending", f"[{ev.target_id}] sequence {ev.sequence} was already pending")
        return None

    def _on_reply(self, ev: Reply) -> Outcome:
        if not in_range(ev.identifier, self.target_count):
            return self._reject(ev.identifier, f"reply from {ev.peer}")
        req = self._pending[ev.identifier].pop(ev.sequence, None)
        if req is None:
            logger.info("[%d] reply seq %d has no pending request", ev.identifier, ev.sequence)
            return Unsolicited(ev, "Response received without a corresponding request.")
        # monotonic clock + notice-before-send ordering keep this >= 0
        return Matched(ev.identifier, ev.sequence, ev.arrived_at - req.sent_at)

    def _on_failure(self, ev: ProbeFailure) -> Outcome:
        if not in_range(ev.target_id, self.target_count):
            return self._reject(ev.target_id, "probe failure")
        self._pending[ev.target_id].pop(ev.sequence, None)
        logger.warning("[%d] probe seq %d failed: %s", ev.target_id, ev.sequence, ev.cause)
        return Failed(ev.target_id, ev.sequence, ev.cause)

    # ----- event loop -----

    def run(self) -> None:
        """
        Block on the mailbox until stop() is called; everything queued before it is handled.
        A failure while handling one event (including in the outcome listener) is
        logged and reported to on_fatal once; the loop keeps draining so that
        stop() still finds it alive.
        """
        failed = False
        while True:
            event = self.mailbox.get()
            if event is _STOP:
                return
            try:
                self.handle(event)
            except Exception as e:
                logger.exception("correlator failed on %r", event)
                self.anomalies["handler_error"] += 1
                if not failed and self.on_fatal is not None:
                    failed = True
                    self.on_fatal(e)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="pping-correlator", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Queue the stop marker behind pending events and wait for the drain."""
        self.mailbox.put(_STOP)
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
