# pping/transport/raw.py
import logging
import socket
import threading
import time
from typing import Callable, Optional

from pping.engine.shutdown import ShutdownSignal
from pping.errors import ParseError, ReadError, SendError, TransportError
from pping.schemas import Malformed, Probe, ReceiveFailure
from pping.transport import codec
from pping.transport.base import Emit, Transceiver, to_event

logger = logging.getLogger(__name__)


class RawSocketTransceiver(Transceiver):
    """
    IPv4 raw ICMP socket bound to the wildcard address.
    Needs root or CAP_NET_RAW. Every ICMP message reaching the host shows up
    here, not only replies to our own probes.
    """

    def __init__(self,
                 bind_address: str = "0.0.0.0",
                 recv_buffer: int = 1500,
                 poll_interval: float = 0.1,
                 clock: Callable[[], float] = time.monotonic,
                 sock: Optional[socket.socket] = None):
        self.bind_address = bind_address
        self.recv_buffer = recv_buffer
        self.poll_interval = poll_interval
        self.clock = clock
        self.sock = sock

    def open(self) -> None:
        if self.sock is not None:
            return
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
        except PermissionError as e:
            raise TransportError("raw ICMP sockets need root or CAP_NET_RAW") from e
        except OSError as e:
            raise TransportError(f"could not create ICMP socket: {e}") from e
        try:
            sock.bind((self.bind_address, 0))
        except OSError as e:
            sock.close()
            raise TransportError(f"could not bind ICMP socket to {self.bind_address}: {e}") from e
        self.sock = sock
        logger.debug("listening for icmp on %s", self.bind_address)

    def _require_socket(self) -> socket.socket:
        if self.sock is None:
            raise TransportError("transceiver is not open")
        return self.sock

    def send(self, probe: Probe) -> None:
        packet = codec.encode(probe.target_id, probe.sequence, probe.address)
        sock = self._require_socket()
        try:
            n = sock.sendto(packet, (probe.address, 0))
        except OSError as e:
            raise SendError(f"write to {probe.address} failed: {e}") from e
        if n != len(packet):
            raise SendError(f"short write to {probe.address}: got {n}; want {len(packet)}")

    def receive_loop(self, emit: Emit, shutdown: ShutdownSignal,
                     ready: Optional[threading.Event] = None) -> None:
        try:
            sock = self._require_socket()
            # short timeout so the shutdown flag is checked between reads
            sock.settimeout(self.poll_interval)
            if ready is not None:
                ready.set()

            while not shutdown.is_set():
                try:
                    datagram, peer = sock.recvfrom(self.recv_buffer)
                except socket.timeout:
                    continue
                except OSError as e:
                    if shutdown.is_set():
                        break
                    logger.error("icmp read failed: %s", e)
                    emit(ReceiveFailure(ReadError(str(e))))
                    return
                arrived_at = self.clock()

                peer_ip = peer[0] if peer else None
                try:
                    message = codec.strip_ip_header(datagram)
                except ParseError as e:
                    emit(Malformed(e, arrived_at, peer_ip))
                    continue
                emit(to_event(message, arrived_at, peer_ip))
        finally:
            shutdown.acknowledge("receiver")

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None
