# pping/transport/fake.py
import queue
import threading
import time
from typing import Callable, Iterable, Optional

from pping.engine.shutdown import ShutdownSignal
from pping.errors import ReadError, SendError, TransportError
from pping.schemas import Probe, ReceiveFailure
from pping.transport import codec
from pping.transport.base import Emit, Transceiver, to_event


class FakeTransceiver(Transceiver):
    """
    In-memory network: every request that makes it onto the "wire" comes back
    as an echo reply, built and parsed by the real codec.

    unreachable: addresses whose sends raise SendError
    silent:      addresses that swallow every request (no reply, no error)
    drop:        (identifier, sequence) keys that never get a reply
    """

    def __init__(self,
                 unreachable: Iterable[str] = (),
                 silent: Iterable[str] = (),
                 drop: Iterable[tuple[int, int]] = (),
                 clock: Callable[[], float] = time.monotonic,
                 poll_interval: float = 0.01):
        self.unreachable = set(unreachable)
        self.silent = set(silent)
        self.drop = set(drop)
        self.clock = clock
        self.poll_interval = poll_interval
        self.sent: list[Probe] = []
        self.opened = False
        self._lock = threading.Lock()
        self._wire: queue.Queue = queue.Queue()

    def open(self) -> None:
        self.opened = True

    def send(self, probe: Probe) -> None:
        packet = codec.encode(probe.target_id, probe.sequence, probe.address)
        if not self.opened:
            raise TransportError("transceiver is not open")
        with self._lock:
            self.sent.append(probe)
        if probe.address in self.unreachable:
            raise SendError(f"no route to host {probe.address}")
        if probe.address in self.silent or (probe.target_id, probe.sequence) in self.drop:
            return
        _type, _code, _csum, ident, seq = codec.HEADER.unpack_from(packet)
        self._wire.put((codec.encode_reply(ident, seq, packet[codec.HEADER.size:]), probe.address))

    def inject(self, message: bytes, peer: Optional[str] = None) -> None:
        """Put an arbitrary ICMP message on the wire."""
        self._wire.put((message, peer))

    def fail_reads(self, error: Optional[Exception] = None) -> None:
        """Make the receive loop hit a socket error on its next read."""
        self._wire.put((error or OSError("socket closed"), None))

    def receive_loop(self, emit: Emit, shutdown: ShutdownSignal,
                     ready: Optional[threading.Event] = None) -> None:
        try:
            if ready is not None:
                ready.set()
            while not shutdown.is_set():
                try:
                    item, peer = self._wire.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue
                arrived_at = self.clock()
                if isinstance(item, Exception):
                    emit(ReceiveFailure(ReadError(str(item))))
                    return
                emit(to_event(item, arrived_at, peer))
        finally:
            shutdown.acknowledge("receiver")

    def close(self) -> None:
        self.opened = False
