# pping/engine/aggregator.py
import logging
from typing import Callable, Optional, Union

from pping.config import Settings
from pping.engine.rules import format_ms
from pping.engine.state import SweepState
from pping.schemas import Failed, Matched, Outcome, StatusUpdate, Summary

logger = logging.getLogger(__name__)

Listener = Callable[[Union[Outcome, StatusUpdate]], None]


class Aggregator:
    """
    Per-target statistics and persisted samples.
    Only called from the correlator thread, so no locking.
    """

    def __init__(self, state: SweepState, settings: Settings, listener: Optional[Listener] = None):
        self.state = state
        self.s = settings
        self.listener = listener
        self.failures = 0

    def record(self, outcome: Outcome) -> None:
        if isinstance(outcome, Matched):
            self._on_matched(outcome)
        elif isinstance(outcome, Failed):
            self.failures += 1
            self.state.stats[outcome.target_id].failures += 1

        if self.listener is not None:
            self.listener(outcome)

    def _on_matched(self, m: Matched) -> None:
        stats = self.state.stats[m.target_id]
        stats.add(m.round_trip)
        latency = format_ms(m.round_trip, self.s.sample_decimals)
        self.state.rows[m.target_id].append(latency)

        # only report on the first match and then every status_every matches
        if stats.count == 1 or stats.count % self.s.status_every == 0:
            update = self.status(m.target_id, latency)
            logger.debug("[%d %s] %s ms, %d pings", m.target_id, update.label, latency, update.count)
            if self.listener is not None:
                self.listener(update)

    def status(self, target_id: int, latency_ms: str = "") -> StatusUpdate:
        t = self.state.targets[target_id]
        stats = self.state.stats[target_id]
        d = self.s.status_decimals

        def fmt(v):
            return format_ms(v, d) if v is not None else "-"

        return StatusUpdate(
            target_id=target_id,
            label=t.label,
            address=t.address,
            latency_ms=latency_ms,
            count=stats.count,
            min_ms=fmt(stats.min),
            max_ms=fmt(stats.max),
            avg_ms=fmt(stats.mean),
        )

    def snapshot(self) -> list[StatusUpdate]:
        return [self.status(t.target_id) for t in self.state.targets]

    def summary(self, finished_at: float, partial: bool = False) -> Summary:
        elapsed = max(0.0, finished_at - self.state.started_at)
        total = self.state.total_matched
        rate = total / elapsed if elapsed > 0 else 0.0
        return Summary(total_matched=total, elapsed=elapsed, rate=rate, partial=partial)

    def rows(self) -> list[list[str]]:
        return [list(r) for r in self.state.rows]
