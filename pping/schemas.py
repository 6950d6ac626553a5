from dataclasses import dataclass
from typing import Literal, Optional, Union

NoticeKind = Literal[
    "not_echo_reply", "parse_error", "out_of_range", "duplicate_pending", "read_error"
]


@dataclass(frozen=True)
class Probe:
    target_id: int
    sequence: int
    address: str


# ---- mailbox events (everything the Correlator consumes) ----

@dataclass(frozen=True)
class PendingNotice:
    target_id: int
    sequence: int
    sent_at: float


@dataclass(frozen=True)
class Reply:
    identifier: int
    sequence: int
    arrived_at: float
    peer: Optional[str] = None


@dataclass(frozen=True)
class NotEchoReply:
    icmp_type: int
    code: int
    arrived_at: float
    peer: Optional[str] = None


@dataclass(frozen=True)
class Malformed:
    error: Exception
    arrived_at: float
    peer: Optional[str] = None


@dataclass(frozen=True)
class ProbeFailure:
    target_id: int
    sequence: int
    cause: Exception


@dataclass(frozen=True)
class ReceiveFailure:
    error: Exception


Inbound = Union[Reply, NotEchoReply, Malformed, ReceiveFailure]
Event = Union[PendingNotice, ProbeFailure, Inbound]


# ---- outcomes (everything the Correlator produces) ----

@dataclass(frozen=True)
class Matched:
    target_id: int
    sequence: int
    round_trip: float   # seconds


@dataclass(frozen=True)
class Unsolicited:
    reply: Reply
    reason: str


@dataclass(frozen=True)
class Failed:
    target_id: int
    sequence: int
    cause: Exception


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    detail: str


Outcome = Union[Matched, Unsolicited, Failed, Notice]


# ---- reporting ----

@dataclass(frozen=True)
class StatusUpdate:
    target_id: int
    label: str
    address: str
    latency_ms: str
    count: int
    min_ms: str
    max_ms: str
    avg_ms: str


@dataclass(frozen=True)
class Summary:
    total_matched: int
    elapsed: float
    rate: float
    partial: bool = False   # correlator was still draining when the counts were taken
