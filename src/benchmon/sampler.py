"""Background samplers for tools without a native repeat interval."""

import logging
import subprocess
import threading
from collections.abc import Sequence
from datetime import datetime
from typing import TextIO

from benchmon.config import STOP_TIMEOUT
from benchmon.probes import format_header

log = logging.getLogger(__name__)

FREE_COMMAND = ("free", "-m")
GPU_PROCESS_COMMAND = (
    "nvidia-smi",
    "--query-compute-apps=pid,process_name,used_memory",
    "--format=csv,noheader,nounits",
)
GPU_PROCESS_HEADER = "timestamp,pid,process_name,used_memory [MiB]\n"


class PeriodicSampler:
    """
    Runs a one-shot command every ``interval`` seconds and appends its output to a file.

    Each sampler owns its thread, its stop event and its output file. The
    thread is joined explicitly by ``stop()``.
    """

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        output: str,
        interval: float,
    ) -> None:
        """
        Initialize the sampler.

        Args:
            name: Probe name used in the header line and log messages.
            command: One-shot measurement command.
            output: Output file, truncated on start.
            interval: Seconds between samples.
        """
        self.name = name
        self.command = tuple(command)
        self.output = output
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        """Check if the sampling thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def ticks(self) -> int:
        """Number of samples written so far."""
        return self._ticks

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            name=f"{type(self).__name__}-{self.name}",
        )
        self._thread.start()

    def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """
        Ask the sampling thread to finish and wait for it.

        Args:
            timeout: How long to wait for the thread (seconds). Overrunning
                it is logged; the thread finishes after its current sample.
        """
        self._stop_event.set()
        if self._thread is None:
            return

        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            log.warning(
                "%s sampler did not stop within %g seconds", self.name, timeout
            )
        self._thread = None

    def _poll_loop(self) -> None:
        """Main sampling loop running in the background thread."""
        try:
            with open(self.output, "w", encoding="utf-8") as fh:
                self._write_header(fh)
                fh.flush()
                while not self._stop_event.is_set():
                    self._sample(fh)
                    fh.flush()
                    self._ticks += 1
                    if self._stop_event.wait(timeout=self.interval):
                        break
        except OSError as exc:
            log.error("%s monitoring interrupted: %s", self.name, exc)

    def _write_header(self, fh: TextIO) -> None:
        fh.write(format_header(self.name, self.interval))

    def _run_command(self) -> str:
        result = subprocess.run(
            self.command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        return result.stdout

    def _sample(self, fh: TextIO) -> None:
        """Write one full sample followed by a blank separator line."""
        fh.write(self._run_command())
        fh.write("\n")


class GpuProcessMonitor(PeriodicSampler):
    """Periodically records per-process GPU memory usage as CSV."""

    def __init__(
        self,
        interval: float,
        output: str,
        command: Sequence[str] = GPU_PROCESS_COMMAND,
    ) -> None:
        super().__init__("gpu-process", command, output, interval)

    def _write_header(self, fh: TextIO) -> None:
        fh.write(GPU_PROCESS_HEADER)

    def _sample(self, fh: TextIO) -> None:
        output = self._run_command()
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        for line in output.splitlines():
            line = line.strip()
            if line:
                fh.write(f"{timestamp},{line}\n")
