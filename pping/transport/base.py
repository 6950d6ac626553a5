# pping/transport/base.py
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from pping.engine.shutdown import ShutdownSignal
from pping.errors import ParseError
from pping.schemas import Inbound, Malformed, NotEchoReply, Probe, Reply
from pping.transport import codec

Emit = Callable[[Inbound], None]


def to_event(message: bytes, arrived_at: float, peer: Optional[str] = None) -> Inbound:
    """Decode one ICMP message into the event the Correlator expects."""
    try:
        parsed = codec.decode(message)
    except ParseError as e:
        return Malformed(e, arrived_at, peer)
    if isinstance(parsed, codec.NotEchoReply):
        return NotEchoReply(parsed.icmp_type, parsed.code, arrived_at, peer)
    return Reply(parsed.identifier, parsed.sequence, arrived_at, peer)


class Transceiver(ABC):
    """Owns the one ICMP socket: many senders, exactly one reader."""

    @abstractmethod
    def open(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def send(self, probe: Probe) -> None:
        """Encode and write one echo request. Raises SendError (or EncodeError)."""
        raise NotImplementedError

    @abstractmethod
    def receive_loop(self, emit: Emit, shutdown: ShutdownSignal,
                     ready: Optional[threading.Event] = None) -> None:
        """
        Read until a read error or shutdown; emit exactly one event per datagram.
        The arrival time is taken before decoding. Sets `ready` before the first
        read and acknowledges `shutdown` on exit.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError
