"""benchmon command line entry point."""

import argparse
import logging
import sys
from collections.abc import Sequence

from benchmon.config import DEFAULT_BASENAME, DEFAULT_INTERVAL, MonitorConfig, default_log_level
from benchmon.errors import ProbeError, SnapshotReadFailure
from benchmon.logs import setup_logging
from benchmon.session import MonitoringSession, run_benchmark
from benchmon.watcher import ProcessWatcher

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with the run, bench and watch subcommands."""
    parser = argparse.ArgumentParser(
        prog="benchmon",
        description="Run a command while recording node and process statistics.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $BENCHMON_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    def add_interval(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "-i", "--interval",
            type=int,
            default=DEFAULT_INTERVAL,
            metavar="SECONDS",
            help="Interval in seconds between each statistics output.",
        )

    run_parser = subparsers.add_parser(
        "run", help="Execute a command and collect statistics while it is running."
    )
    add_interval(run_parser)
    run_parser.add_argument(
        "-n", "--basename",
        default=DEFAULT_BASENAME,
        metavar="FILENAME",
        help="Base name for statistics output files.",
    )
    run_parser.add_argument(
        "-g", "--gpu", action="store_true", help="Enable GPU monitoring."
    )
    run_parser.add_argument("command", nargs=argparse.REMAINDER)

    bench_parser = subparsers.add_parser(
        "bench",
        help="Like run, with GPU and per-process GPU memory monitoring if a GPU is found.",
    )
    add_interval(bench_parser)
    bench_parser.add_argument(
        "-n", "--basename",
        default=DEFAULT_BASENAME,
        metavar="FILENAME",
        help="Base name for statistics output files.",
    )
    bench_parser.add_argument("command", nargs=argparse.REMAINDER)

    watch_parser = subparsers.add_parser(
        "watch", help="Report process creation and termination for a user."
    )
    add_interval(watch_parser)
    watch_parser.add_argument(
        "-u", "--username",
        required=True,
        help="The user whose processes are being monitored.",
    )
    watch_parser.add_argument("command", nargs=argparse.REMAINDER)

    return parser


def _target(args: argparse.Namespace) -> list[str]:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    return command


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the benchmon command. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level.upper() if args.log_level else default_log_level())

    command = _target(args)
    if not command:
        parser.error(f"{args.mode}: no command given")

    try:
        config = MonitorConfig(
            interval=args.interval,
            basename=getattr(args, "basename", DEFAULT_BASENAME),
            gpu=getattr(args, "gpu", False),
            username=getattr(args, "username", None),
        )
    except ValueError as exc:
        parser.error(str(exc))

    try:
        if args.mode == "run":
            session = MonitoringSession(stop_timeout=config.stop_timeout)
            return session.run(command, config.interval, config.basename, config.gpu)
        if args.mode == "bench":
            session = MonitoringSession(stop_timeout=config.stop_timeout)
            return run_benchmark(command, config.interval, config.basename, session)
        watcher = ProcessWatcher(config.username, config.interval)
        return watcher.watch_and_run(command)
    except (ProbeError, SnapshotReadFailure) as exc:
        log.error("%s", exc)
    except OSError as exc:
        log.error("Cannot run %s: %s", command[0], exc)
    return 1


if __name__ == "__main__":
    sys.exit(main())
