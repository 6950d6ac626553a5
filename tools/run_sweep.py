# tools/run_sweep.py
# Usage examples:
#   sudo python3 -m tools.run_sweep 8.8.8.8 1.1.1.1 example.com
#   sudo python3 -m tools.run_sweep -o results.csv --interval-ms 2 8.8.8.8 9.9.9.9
#   python3 -m tools.run_sweep --fake 10.0.0.1 10.0.0.2
#
# Press q (or Ctrl-C) to stop; the summary is printed as JSON.

import argparse
import csv
import json
import logging
import os
import select
import signal
import socket
import sys
import threading
from dataclasses import asdict
from typing import List, Optional

from pping.config import Settings
from pping.engine.session import SweepSession
from pping.engine.shutdown import ShutdownSignal
from pping.errors import PpingError
from pping.schemas import Failed, Notice, StatusUpdate, Unsolicited

logger = logging.getLogger("pping")


def configure_logging(log_level: str, log_file: Optional[str]) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def resolve(hosts):
    """Resolve each host to one IPv4 address; unresolvable hosts are reported and skipped."""
    resolved = []
    for host in hosts:
        try:
            resolved.append((host, socket.gethostbyname(host)))
        except (socket.gaierror, UnicodeError) as e:
            logger.error("Could not get IP for %s: %s", host, e)
    return resolved


def print_event(event) -> None:
    if isinstance(event, StatusUpdate):
        print(f"[{event.target_id} {event.label}] Pinged {event.address} in {event.latency_ms}ms. "
              f"{event.count} pings. min/max/avg: {event.min_ms}/{event.max_ms}/{event.avg_ms}ms",
              flush=True)
    elif isinstance(event, Failed):
        print(f"- [{event.target_id}]: {event.cause}", flush=True)
    elif isinstance(event, Unsolicited):
        print(f"- [{event.reply.identifier}] {event.reason}", flush=True)
    elif isinstance(event, Notice) and event.kind != "not_echo_reply":
        print(f"- {event.detail}", flush=True)


def watch_quit_key(shutdown: ShutdownSignal, poll: float = 0.1) -> None:
    """Trigger shutdown when 'q' is typed. Terminal goes to cbreak/no-echo mode and is restored."""
    try:
        import termios
        import tty
    except ImportError:
        shutdown.wait()
        shutdown.acknowledge("keyboard")
        return

    try:
        fd = sys.stdin.fileno() if sys.stdin.isatty() else None
    except (AttributeError, ValueError, OSError):
        # replaced or detached stdin: only the signal can stop us
        fd = None
    old = termios.tcgetattr(fd) if fd is not None else None
    try:
        if fd is not None:
            tty.setcbreak(fd)
        while not shutdown.is_set():
            if fd is None:
                shutdown.wait(poll)
                continue
            ready, _, _ = select.select([fd], [], [], poll)
            if ready and os.read(fd, 1) in (b"q", b"Q"):
                shutdown.trigger("q pressed")
    finally:
        if old is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, old)
        shutdown.acknowledge("keyboard")


def write_rows(path: str, rows) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        for row in rows:
            writer.writerow(row)


def build_transceiver(args, settings: Settings):
    if args.fake:
        from pping.transport.fake import FakeTransceiver
        return FakeTransceiver()
    from pping.transport.raw import RawSocketTransceiver
    return RawSocketTransceiver(recv_buffer=settings.recv_buffer,
                                poll_interval=settings.poll_interval)


def positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def build_argparser():
    ap = argparse.ArgumentParser(description="Concurrent round-robin ICMP echo prober")
    ap.add_argument("hosts", nargs="+", help="Hostnames or IPv4 addresses to ping")
    ap.add_argument("-o", "--output", default="",
                    help="Write the samples to this file in CSV format on exit")
    ap.add_argument("--interval-ms", type=float, default=1.0,
                    help="Pause between consecutive probes (milliseconds)")
    ap.add_argument("--workers", type=positive_int, default=8, help="Concurrent probe senders")
    ap.add_argument("--warmup-timeout", type=float, default=1.0,
                    help="Seconds to wait for each target's first reply")
    ap.add_argument("--grace", type=float, default=1.0,
                    help="Seconds to wait for tasks to stop on quit")
    ap.add_argument("--status-every", type=positive_int, default=100,
                    help="Print a target's status line every N replies")
    ap.add_argument("--fake", action="store_true",
                    help="Use the in-memory transceiver instead of a raw socket")
    ap.add_argument("--log-level", default="WARNING", help="Logging level")
    ap.add_argument("--log-file", default=None, help="Optional log file path")
    return ap


def main(argv=None) -> int:
    args = build_argparser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    settings = Settings(
        interval_ms=args.interval_ms,
        send_workers=args.workers,
        warmup_timeout=args.warmup_timeout,
        shutdown_grace=args.grace,
        status_every=args.status_every,
    )

    candidates = resolve(args.hosts)
    if not candidates:
        logger.error("No urls could be resolved.")
        return 1

    session = SweepSession(build_transceiver(args, settings), settings,
                           listener=print_event, extra_consumers=1)
    # Ctrl-C during warm-up must still go through session.stop()
    previous = signal.signal(signal.SIGINT, lambda *_: session.shutdown.trigger("interrupted"))
    try:
        try:
            targets = session.warm_up(candidates)
        except PpingError as e:
            logger.error("%s", e)
            # the quit-key reader never started
            session.shutdown.acknowledge("keyboard")
            session.stop("startup failed")
            return 1
        if session.shutdown.is_set():
            session.shutdown.acknowledge("keyboard")
            session.stop()
            return 1

        keyboard = threading.Thread(target=watch_quit_key, args=(session.shutdown,),
                                    name="pping-keyboard", daemon=True)
        keyboard.start()

        print(f"Pinging {len(targets)} URLs... Press q to quit.", flush=True)
        summary = session.run(targets)
        print(json.dumps(asdict(summary), indent=2))
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.output:
        try:
            write_rows(args.output, session.rows())
        except OSError as e:
            logger.error("Error writing to file: %s", e)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
