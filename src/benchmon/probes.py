"""External measurement probes and their two-phase shutdown."""

import logging
import os
import shutil
import subprocess
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import IO

from benchmon.config import STOP_TIMEOUT
from benchmon.errors import ProbeSpawnFailure, ProbeUnavailable
from benchmon.models import ProbeSpec

log = logging.getLogger(__name__)

Resolver = Callable[[str], bool]


def resolve_executable(name: str) -> bool:
    """Return True if ``name`` can be found on the search path."""
    return shutil.which(name) is not None


def format_header(name: str, interval: float) -> str:
    """First line of every probe output file."""
    return (
        f"[{name}] Monitoring started at {datetime.now().isoformat()}, "
        f"interval: {interval:g} seconds\n"
    )


class ProbeState(Enum):
    """Lifecycle of one managed child process."""

    ABSENT = "absent"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class ProbeHandle:
    """
    A spawned measurement process, or the marker for one that never started.

    Stopping is two-phase: ``terminate()``, a bounded wait, then ``kill()``
    and an unbounded wait. Stopping an absent or already terminated probe
    does nothing.
    """

    def __init__(
        self,
        spec: ProbeSpec,
        process: subprocess.Popen | None = None,
        streams: tuple[IO, ...] = (),
    ) -> None:
        self.spec = spec
        self._process = process
        self._streams = streams
        self._state = ProbeState.RUNNING if process is not None else ProbeState.ABSENT

    @classmethod
    def absent(cls, spec: ProbeSpec) -> "ProbeHandle":
        """Handle for a probe that could not be started."""
        return cls(spec)

    @classmethod
    def spawn(
        cls,
        spec: ProbeSpec,
        resolver: Resolver = resolve_executable,
        stderr_path: str | None = None,
    ) -> "ProbeHandle":
        """
        Write the header line and launch the probe with stdout appended to it.

        Args:
            spec: Probe to launch.
            resolver: Executable lookup.
            stderr_path: File receiving the probe's stderr; inherited if None.

        Raises:
            ProbeUnavailable: The executable is not on the search path.
            ProbeSpawnFailure: The process could not be launched.
        """
        if not resolver(spec.executable):
            raise ProbeUnavailable(spec.name, spec.executable)

        streams: list[IO] = []
        try:
            with open(spec.output, "w", encoding="utf-8") as fh:
                fh.write(format_header(spec.name, spec.interval))
            stdout = open(spec.output, "ab")
            streams.append(stdout)
            stderr = None
            if stderr_path is not None:
                stderr = open(stderr_path, "wb")
                streams.append(stderr)
            process = subprocess.Popen(spec.command, stdout=stdout, stderr=stderr)
        except OSError as exc:
            for stream in streams:
                stream.close()
            # no output file for a probe that never ran
            if os.path.exists(spec.output):
                os.remove(spec.output)
            raise ProbeSpawnFailure(spec.name, str(exc)) from exc

        log.info("Started %s (pid %d) -> %s", spec.name, process.pid, spec.output)
        return cls(spec, process, tuple(streams))

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def state(self) -> ProbeState:
        return self._state

    @property
    def is_absent(self) -> bool:
        return self._state is ProbeState.ABSENT

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    def wait(self) -> int:
        """Block until the probe exits and return its exit code."""
        if self._process is None:
            raise RuntimeError(f"{self.name} was never started")
        code = self._process.wait()
        self._release()
        return code

    def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """
        Terminate the probe, escalating to a kill after ``timeout`` seconds.

        Args:
            timeout: Grace period for the graceful termination request.
        """
        if self._process is None or self._state is ProbeState.TERMINATED:
            return

        process = self._process
        self._state = ProbeState.TERMINATING
        if process.poll() is None:
            process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning(
                "%s did not terminate in time, forcing shutdown...", self.name
            )
            process.kill()
            process.wait()
        except KeyboardInterrupt:
            log.warning("Interrupted while waiting for %s to terminate.", self.name)
            process.kill()
            process.wait()
            raise
        finally:
            if process.returncode is not None:
                self._release()

    def _release(self) -> None:
        self._state = ProbeState.TERMINATED
        for stream in self._streams:
            stream.close()
        self._streams = ()

    def __repr__(self) -> str:
        return f"ProbeHandle(name={self.name!r}, state={self._state.value})"


def start_probe(spec: ProbeSpec, resolver: Resolver = resolve_executable) -> ProbeHandle:
    """
    Start a secondary probe, collapsing any failure to an absent handle.

    Missing executables are logged as warnings, launch failures as errors.
    """
    try:
        return ProbeHandle.spawn(spec, resolver)
    except ProbeUnavailable:
        log.warning("%s not found. Skipping %s monitoring.", spec.executable, spec.name)
    except ProbeSpawnFailure as exc:
        log.error("Failed to start %s monitoring: %s", spec.name, exc)
    return ProbeHandle.absent(spec)
