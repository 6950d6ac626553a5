from dataclasses import dataclass

@dataclass
class Settings:
    interval_ms: float = 1.0        # pause between dispatches; tunable flow control, keeps the recv buffer from overrunning
    send_workers: int = 8
    max_in_flight: int = 64         # probes queued or being written; the sweep waits when this many are outstanding
    recv_buffer: int = 1500
    poll_interval: float = 0.1      # socket read timeout, bounds how long a shutdown goes unnoticed

    warmup_timeout: float = 1.0
    shutdown_grace: float = 1.0     # upper bound for the whole teardown

    # reporting
    status_every: int = 100         # emit a StatusUpdate on the 1st and every Nth match per target
    sample_decimals: int = 4
    status_decimals: int = 2

    def __post_init__(self):
        for name in ("send_workers", "max_in_flight", "status_every"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.interval_ms < 0:
            raise ValueError(f"interval_ms must not be negative, got {self.interval_ms}")

    @property
    def interval_s(self) -> float:
        return max(0.0, self.interval_ms / 1000.0)
