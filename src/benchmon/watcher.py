"""Track a user's process creation and termination while a command runs."""

import logging
import shlex
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import TextIO

import psutil

from benchmon.config import STOP_TIMEOUT
from benchmon.errors import SnapshotReadFailure
from benchmon.models import EventKind, ProcessEvent, ProcessRecord, ProcessSnapshot
from benchmon.tree import build_tree, render_tree

log = logging.getLogger(__name__)

SnapshotReader = Callable[[str], ProcessSnapshot]


def read_user_processes(username: str) -> dict[int, ProcessRecord]:
    """
    Read the process table once, keeping processes owned by ``username``.

    Processes that vanish or deny access mid-read are skipped.

    Raises:
        SnapshotReadFailure: The process table itself could not be read.
    """
    snapshot: dict[int, ProcessRecord] = {}
    try:
        for proc in psutil.process_iter(attrs=["pid", "ppid", "username", "name", "cmdline"]):
            try:
                info = proc.info
                if info.get("username") != username:
                    continue
                cmdline = info.get("cmdline") or []
                cmd = " ".join(cmdline) if cmdline else info.get("name") or ""
                pid = info["pid"]
                snapshot[pid] = ProcessRecord(pid=pid, ppid=info.get("ppid") or 0, cmd=cmd)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except (psutil.Error, OSError) as exc:
        raise SnapshotReadFailure(f"cannot read process table: {exc}") from exc
    return snapshot


def diff_snapshots(
    previous: ProcessSnapshot,
    current: ProcessSnapshot,
    timestamp: datetime,
) -> list[ProcessEvent]:
    """Creation events for new pids, then termination events for vanished ones."""
    events = [
        ProcessEvent(timestamp, EventKind.CREATED, record)
        for pid, record in current.items()
        if pid not in previous
    ]
    events.extend(
        ProcessEvent(timestamp, EventKind.TERMINATED, record)
        for pid, record in previous.items()
        if pid not in current
    )
    return events


class ProcessWatcher:
    """
    Polls the process table for one user and logs what appeared and vanished.

    Processes that start and exit within one interval are not seen.
    """

    def __init__(
        self,
        username: str,
        interval: float = 10.0,
        reader: SnapshotReader = read_user_processes,
    ) -> None:
        self.username = username
        self.interval = interval
        self._reader = reader
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._events: list[ProcessEvent] = []
        self._previous: ProcessSnapshot = {}
        self._last_timestamp = datetime.min
        self._final_snapshot: ProcessSnapshot = {}
        self._error: SnapshotReadFailure | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def events(self) -> list[ProcessEvent]:
        with self._lock:
            return list(self._events)

    @property
    def final_snapshot(self) -> ProcessSnapshot:
        return self._final_snapshot

    @property
    def error(self) -> SnapshotReadFailure | None:
        return self._error

    def tick(self) -> list[ProcessEvent]:
        """Take one snapshot, record the differences and return them."""
        current = self._reader(self.username)
        # never step backwards even if the wall clock does
        timestamp = max(datetime.now(), self._last_timestamp)
        self._last_timestamp = timestamp
        events = diff_snapshots(self._previous, current, timestamp)
        with self._lock:
            self._events.extend(events)
        self._previous = current
        return events

    def start(self) -> None:
        """Start the polling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="ProcessWatcher")
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the polling thread; it captures the final snapshot on its way out."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log.warning("process watcher did not stop within %g seconds", timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.tick()
                if self._stop_event.wait(timeout=self.interval):
                    break
            self._final_snapshot = self._reader(self.username)
        except SnapshotReadFailure as exc:
            log.error("Process monitoring stopped: %s", exc)
            self._error = exc

    def watch_and_run(self, command: Sequence[str], out: TextIO | None = None) -> int:
        """
        Run ``command`` to completion while watching, then print the report.

        Returns:
            The exit code of ``command``.

        Raises:
            SnapshotReadFailure: The process table could not be read; raised
                only after ``command`` has finished.
        """
        out = out or sys.stdout
        log.info("Starting monitored command: %s", shlex.join(command))

        self.start()
        try:
            process = subprocess.Popen(list(command))
            log.info("Root PID: %d", process.pid)
            exit_code = process.wait()
            log.info("Monitored command exited with code: %d", exit_code)
            time.sleep(self.interval)
        finally:
            self.stop(timeout=self.interval + STOP_TIMEOUT)

        if self._error is not None:
            raise self._error

        self.report(out)
        return exit_code

    def report(self, out: TextIO) -> None:
        """Print the event log and the final process tree."""
        print(f"=== Process Events for user '{self.username}' ===", file=out)
        for event in self.events:
            print(event, file=out)
        print("\n=== Final Process Tree ===", file=out)
        for line in render_tree(build_tree(self._final_snapshot)):
            print(line, file=out)
