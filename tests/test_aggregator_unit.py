# tests/test_aggregator_unit.py
import pytest

from pping.config import Settings
from pping.engine.aggregator import Aggregator
from pping.engine.state import SweepState, Target
from pping.schemas import Matched, StatusUpdate


def make(status_every=100):
    state = SweepState([Target(0, "a", "10.0.0.1"), Target(1, "b", "10.0.0.2")], started_at=100.0)
    events = []
    agg = Aggregator(state, Settings(status_every=status_every), listener=events.append)
    return agg, state, events


def test_stats_track_min_max_mean():
    agg, state, _ = make()
    for rt in (0.010, 0.030, 0.020):
        agg.record(Matched(0, 0, rt))
    s = state.stats[0]
    assert s.count == 3
    assert s.min == 0.010
    assert s.max == 0.030
    assert abs(s.mean - 0.020) < 1e-12


def test_status_on_first_and_every_nth_match():
    agg, _, events = make(status_every=2)
    for seq in range(5):
        agg.record(Matched(1, seq, 0.001))
    updates = [e for e in events if isinstance(e, StatusUpdate)]
    assert [u.count for u in updates] == [1, 2, 4]
    assert updates[0].label == "b"
    assert updates[0].latency_ms == "1.0000"
    assert updates[0].min_ms == "1.00"


def test_snapshot_for_target_without_samples():
    agg, _, _ = make()
    snap = agg.snapshot()
    assert [u.target_id for u in snap] == [0, 1]
    assert snap[0].count == 0
    assert snap[0].avg_ms == "-"


def test_summary_counts_persisted_samples():
    agg, state, _ = make()
    agg.record(Matched(0, 0, 0.001))
    agg.record(Matched(0, 1, 0.002))
    agg.record(Matched(1, 0, 0.003))
    rows = agg.rows()
    assert rows[0] == ["a", "10.0.0.1", "1.0000", "2.0000"]
    summary = agg.summary(finished_at=102.0)
    assert summary.total_matched == sum(len(r) - 2 for r in rows) == 3
    assert summary.elapsed == 2.0
    assert summary.rate == 1.5


def test_summary_with_zero_elapsed():
    agg, _, _ = make()
    summary = agg.summary(finished_at=100.0)
    assert summary.rate == 0.0


@pytest.mark.parametrize("field", ["status_every", "send_workers", "max_in_flight"])
def test_settings_reject_non_positive_counts(field):
    with pytest.raises(ValueError):
        Settings(**{field: 0})
