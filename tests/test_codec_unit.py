# tests/test_codec_unit.py
import struct

import pytest

from pping.errors import EncodeError, ParseError
from pping.transport import codec


def test_checksum_rfc1071_example():
    """The worked example from RFC 1071 section 3."""
    assert codec.checksum(bytes.fromhex("0001f203f4f5f6f7")) == 0x220D


def test_encode_builds_echo_request():
    pkt = codec.encode(3, 17, "10.0.0.1")
    icmp_type, code, _csum, ident, seq = struct.unpack("!BBHHH", pkt[:8])
    assert (icmp_type, code, ident, seq) == (8, 0, 3, 17)
    assert pkt[8:] == b"10.0.0.1"
    # a valid message sums to zero including its own checksum
    assert codec.checksum(pkt) == 0


@pytest.mark.parametrize("target_id,seq", [(-1, 0), (0x10000, 0), (0, -1), (0, 0x10000)])
def test_encode_rejects_fields_outside_16_bits(target_id, seq):
    with pytest.raises(EncodeError):
        codec.encode(target_id, seq, "10.0.0.1")


def test_decode_echo_reply():
    parsed = codec.decode(codec.encode_reply(7, 42, b"payload"))
    assert parsed == codec.ParsedReply(identifier=7, sequence=42)


def test_decode_other_types_are_not_echo_replies():
    """Our own requests echoed back on loopback are type 8, not a parse error."""
    parsed = codec.decode(codec.encode(1, 1, "127.0.0.1"))
    assert isinstance(parsed, codec.NotEchoReply)
    assert parsed.icmp_type == 8


def test_decode_truncated_message():
    with pytest.raises(ParseError):
        codec.decode(b"\x00\x00\x00")


def test_decode_bad_checksum():
    pkt = bytearray(codec.encode_reply(1, 2, b"abcd"))
    pkt[-1] ^= 0xFF
    with pytest.raises(ParseError):
        codec.decode(bytes(pkt))


def test_strip_ip_header_uses_ihl():
    message = codec.encode_reply(1, 2)
    ip_header = bytes([0x46]) + bytes(23)   # IHL=6 -> 24 bytes with options
    assert codec.strip_ip_header(ip_header + message) == message


@pytest.mark.parametrize("datagram", [b"", bytes([0x60]) + bytes(40), bytes([0x45]) + bytes(10)])
def test_strip_ip_header_rejects_garbage(datagram):
    with pytest.raises(ParseError):
        codec.strip_ip_header(datagram)
