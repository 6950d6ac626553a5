# tests/test_scheduler_unit.py
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from pping.engine.correlator import Correlator
from pping.engine.scheduler import Scheduler
from pping.engine.shutdown import ShutdownSignal
from pping.engine.state import Target
from pping.errors import SendError
from pping.schemas import PendingNotice, ProbeFailure
from pping.transport.fake import FakeTransceiver


class InlineExecutor(Executor):
    """Runs each task on submit, so the mailbox order is deterministic."""

    def submit(self, fn, *args, **kwargs):
        f = Future()
        f.set_result(fn(*args, **kwargs))
        return f


def drain(corr):
    out = []
    while not corr.mailbox.empty():
        out.append(corr.mailbox.get_nowait())
    return out


def make(addresses, **fake_kwargs):
    targets = [Target(i, a, a) for i, a in enumerate(addresses)]
    fake = FakeTransceiver(**fake_kwargs)
    fake.open()
    corr = Correlator(len(targets))
    sched = Scheduler(targets, fake, corr, InlineExecutor(), interval_s=0.0, clock=lambda: 1.0)
    return sched, corr, fake


def test_next_probe_round_robin():
    sched, _, _ = make(["10.0.0.1", "10.0.0.2"])
    keys = [(p.target_id, p.sequence) for p in (sched.next_probe() for _ in range(4))]
    assert keys == [(0, 0), (1, 0), (0, 1), (1, 1)]


def test_probe_queues_notice_before_sending():
    sched, corr, fake = make(["10.0.0.1"])
    sched.probe(sched.next_probe())
    events = drain(corr)
    assert events == [PendingNotice(0, 0, 1.0)]
    assert [(p.target_id, p.sequence) for p in fake.sent] == [(0, 0)]


def test_send_failure_reported_after_notice():
    sched, corr, _ = make(["10.0.0.1", "10.0.0.9"], unreachable=["10.0.0.9"])
    sched.probe(sched.next_probe())
    sched.probe(sched.next_probe())
    events = drain(corr)
    assert events[:2] == [PendingNotice(0, 0, 1.0), PendingNotice(1, 0, 1.0)]
    assert isinstance(events[2], ProbeFailure)
    assert (events[2].target_id, events[2].sequence) == (1, 0)
    assert isinstance(events[2].cause, SendError)

    # the sweep keeps going past the failing target
    sched.probe(sched.next_probe())
    assert drain(corr) == [PendingNotice(0, 1, 1.0)]


def test_run_stops_on_shutdown_and_acknowledges():
    targets = [Target(0, "a", "10.0.0.1"), Target(1, "b", "10.0.0.2")]
    fake = FakeTransceiver()
    fake.open()
    corr = Correlator(2)
    shutdown = ShutdownSignal(consumers=1)
    with ThreadPoolExecutor(max_workers=2) as pool:
        sched = Scheduler(targets, fake, corr, pool, interval_s=0.001)
        sched.start(shutdown)
        shutdown.wait(0.05)
        shutdown.trigger("test")
        assert shutdown.wait_for_acknowledgements(timeout=2.0)
        sched.join(1.0)
    assert shutdown.acknowledged == ["scheduler"]
    assert sched.index > 0
    # tasks that only got a worker after the trigger send nothing
    assert len(fake.sent) <= sched.index
    first = sorted(fake.sent, key=lambda p: (p.sequence, p.target_id))[:2]
    assert [(p.target_id, p.sequence) for p in first] == [(0, 0), (1, 0)]


class HoldingExecutor(Executor):
    """Accepts tasks and never runs them, like a pool whose workers are all stuck."""

    def __init__(self):
        self.futures = []

    def submit(self, fn, *args, **kwargs):
        f = Future()
        self.futures.append(f)
        return f


def test_sweep_waits_when_max_in_flight_reached():
    targets = [Target(0, "a", "10.0.0.1")]
    fake = FakeTransceiver()
    fake.open()
    pool = HoldingExecutor()
    shutdown = ShutdownSignal(consumers=1)
    sched = Scheduler(targets, fake, Correlator(1), pool, interval_s=0.0, max_in_flight=3)
    th = threading.Thread(target=sched.run, args=(shutdown,))
    th.start()
    shutdown.wait(0.1)

    assert sched.index == 3
    assert sched.in_flight == 3
    assert not sched.wait_idle(0.01)

    shutdown.trigger("test")
    th.join(1.0)
    assert not th.is_alive()
    assert sched.index == 3

    # cancelled tasks give their slot back
    for f in pool.futures:
        f.cancel()
    assert sched.wait_idle(0.1)
    assert sched.in_flight == 0


def test_task_started_after_shutdown_sends_nothing():
    sched, corr, fake = make(["10.0.0.1"])
    shutdown = ShutdownSignal(consumers=1)
    shutdown.trigger("test")
    sched.run(shutdown)
    assert sched.index == 0

    sched.probe(sched.next_probe())
    assert fake.sent == []
    assert drain(corr) == []
