# pping/engine/state.py
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Target:
    target_id: int
    label: str
    address: str


@dataclass
class PendingRequest:
    target_id: int
    sequence: int
    sent_at: float


@dataclass
class TargetStats:
    count: int = 0
    min: Optional[float] = None
    max: Optional[float] = None
    total: float = 0.0
    failures: int = 0

    def add(self, round_trip: float) -> None:
        self.count += 1
        self.total += round_trip
        if self.min is None or round_trip < self.min:
            self.min = round_trip
        if self.max is None or round_trip > self.max:
            self.max = round_trip

    @property
    def mean(self) -> Optional[float]:
        return self.total / self.count if self.count else None


@dataclass
class SweepState:
    targets: list
    started_at: float = 0.0
    # per-target aggregates and persisted rows, indexed by target_id
    stats: list = field(default_factory=list)
    rows: list = field(default_factory=list)

    def __post_init__(self):
        for t in self.targets:
            self.stats.append(TargetStats())
            self.rows.append([t.label, t.address])

    @property
    def total_matched(self) -> int:
        return sum(len(row) - 2 for row in self.rows)
