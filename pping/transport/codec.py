# pping/transport/codec.py
"""
ICMP echo wire format (RFC 792):

    type(1) code(1) checksum(2) identifier(2) sequence(2) payload...

The checksum is the RFC 1071 ones' complement sum over the whole message.
"""
import struct
from typing import NamedTuple, Union

from pping.errors import EncodeError, ParseError

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
HEADER = struct.Struct("!BBHHH")
MAX_FIELD = 0xFFFF


class ParsedReply(NamedTuple):
    identifier: int
    sequence: int


class NotEchoReply(NamedTuple):
    icmp_type: int
    code: int


def checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"

    total = 0
    for i in range(0, len(data), 2):
        total += (data[i] << 8) + data[i + 1]

    # fold carries back into 16 bits
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def _build(icmp_type: int, identifier: int, sequence: int, payload: bytes) -> bytes:
    header = HEADER.pack(icmp_type, 0, 0, identifier, sequence)
    csum = checksum(header + payload)
    return HEADER.pack(icmp_type, 0, csum, identifier, sequence) + payload


def encode(target_id: int, sequence: int, address: str) -> bytes:
    """Build an echo request with identifier=target_id; the payload carries the address text."""
    if not 0 <= target_id <= MAX_FIELD:
        raise EncodeError(f"identifier {target_id} does not fit in 16 bits")
    if not 0 <= sequence <= MAX_FIELD:
        raise EncodeError(f"sequence {sequence} does not fit in 16 bits")
    try:
        payload = address.encode("ascii")
    except (AttributeError, UnicodeEncodeError) as e:
        raise EncodeError(f"bad payload address {address!r}: {e}") from e
    return _build(ICMP_ECHO_REQUEST, target_id, sequence, payload)


def encode_reply(identifier: int, sequence: int, payload: bytes = b"") -> bytes:
    """Echo reply as a remote host would send it back."""
    return _build(ICMP_ECHO_REPLY, identifier, sequence, payload)


def decode(data: bytes) -> Union[ParsedReply, NotEchoReply]:
    """
    Parse one ICMP message (IP header already removed).
    Echo replies give a ParsedReply, any other type a NotEchoReply.
    Raises ParseError for truncated messages or a checksum mismatch.
    """
    if len(data) < HEADER.size:
        raise ParseError(f"short icmp message: {len(data)} bytes")
    if checksum(data) != 0:
        raise ParseError("icmp checksum mismatch")

    icmp_type, code, _csum, identifier, sequence = HEADER.unpack_from(data)
    if icmp_type != ICMP_ECHO_REPLY:
        return NotEchoReply(icmp_type, code)
    return ParsedReply(identifier, sequence)


def strip_ip_header(datagram: bytes) -> bytes:
    """IPv4 raw sockets hand us the IP header too; drop IHL*4 bytes."""
    if not datagram:
        raise ParseError("empty datagram")
    version = datagram[0] >> 4
    if version != 4:
        raise ParseError(f"not an IPv4 datagram (version {version})")
    ihl = (datagram[0] & 0x0F) * 4
    if ihl < 20 or len(datagram) < ihl:
        raise ParseError(f"truncated IPv4 header (ihl={ihl}, len={len(datagram)})")
    return datagram[ihl:]
