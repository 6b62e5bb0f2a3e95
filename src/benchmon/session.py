"""Run a command while node-level measurement probes record alongside it."""

import logging
import shlex
import time
from collections.abc import Callable, Sequence

from benchmon.config import STOP_TIMEOUT
from benchmon.errors import ProbeError
from benchmon.gpu import detect_gpu
from benchmon.models import ProbeSpec, SessionState
from benchmon.probes import ProbeHandle, Resolver, resolve_executable, start_probe
from benchmon.sampler import FREE_COMMAND, GPU_PROCESS_COMMAND, GpuProcessMonitor, PeriodicSampler

log = logging.getLogger(__name__)

GPU_QUERY = (
    "--query-gpu=timestamp,index,utilization.gpu,utilization.memory,"
    "memory.used,memory.total,temperature.gpu,fan.speed,power.draw,power.limit"
)

_TRANSITIONS = {
    (SessionState.INITIALIZED, SessionState.PROBES_STARTED),
    (SessionState.PROBES_STARTED, SessionState.TARGET_RUNNING),
    # abort edge: the monitored command could not be launched
    (SessionState.PROBES_STARTED, SessionState.STOPPING),
    (SessionState.TARGET_RUNNING, SessionState.STOPPING),
    (SessionState.STOPPING, SessionState.STOPPED),
}

ProbeFactory = Callable[[float, str, bool], list[ProbeSpec]]
Wrapper = Callable[[Sequence[str], float], tuple[str, ...]]


def output_path(basename: str, probe: str) -> str:
    return f"{basename}.{probe}.out"


def program_output_path(basename: str) -> str:
    return f"{basename}.program.stdout"


def node_probe_specs(interval: float, basename: str, gpu: bool) -> list[ProbeSpec]:
    """Probes sampling CPU, disk, network and optionally GPU for the whole node."""
    n = f"{interval:g}"
    specs = [
        ProbeSpec("mpstat", ("mpstat", "-P", "ALL", n), output_path(basename, "mpstat"), interval),
        ProbeSpec("iostat", ("iostat", "-xz", n), output_path(basename, "iostat"), interval),
        ProbeSpec("ifstat", ("ifstat", n), output_path(basename, "ifstat"), interval),
    ]
    if gpu:
        specs.append(
            ProbeSpec(
                "nvidia-smi",
                ("nvidia-smi", GPU_QUERY, "--format=csv,nounits", f"--loop={n}"),
                output_path(basename, "nvidia-smi"),
                interval,
            )
        )
    return specs


def pidstat_wrapper(command: Sequence[str], interval: float) -> tuple[str, ...]:
    """
    Wrap ``command`` in pidstat so its own CPU, memory and I/O usage is sampled.

    The target's stdout is folded into stderr so it never mixes with
    pidstat's report on stdout.
    """
    return (
        "pidstat", "-urdh", "-t", f"{interval:g}",
        "-e", "bash", "-c", f"exec {shlex.join(command)} 1>&2",
    )


class MonitoringSession:
    """
    One end-to-end monitored run of a target command.

    The session moves strictly through ``SessionState`` and can run once.
    Probe failures are logged and never change the returned exit code.
    """

    def __init__(
        self,
        *,
        resolver: Resolver = resolve_executable,
        gpu_detector: Callable[[], bool] = detect_gpu,
        probe_factory: ProbeFactory = node_probe_specs,
        wrapper: Wrapper = pidstat_wrapper,
        sampler_command: Sequence[str] = FREE_COMMAND,
        stop_timeout: float = STOP_TIMEOUT,
    ) -> None:
        self._resolver = resolver
        self._gpu_detector = gpu_detector
        self._probe_factory = probe_factory
        self._wrapper = wrapper
        self._sampler_command = tuple(sampler_command)
        self._stop_timeout = stop_timeout
        self._state = SessionState.INITIALIZED
        self._handles: list[ProbeHandle] = []
        self._sampler: PeriodicSampler | None = None
        self._gpu_available: bool | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handles(self) -> list[ProbeHandle]:
        return list(self._handles)

    @property
    def sampler(self) -> PeriodicSampler | None:
        return self._sampler

    def gpu_available(self) -> bool:
        """Detect a GPU on first use; later calls reuse the answer."""
        if self._gpu_available is None:
            self._gpu_available = self._gpu_detector()
        return self._gpu_available

    def run(
        self,
        command: Sequence[str],
        interval: float,
        basename: str,
        gpu_enabled: bool = False,
    ) -> int:
        """
        Execute ``command`` under pidstat while node-level probes record.

        Args:
            command: Target command and arguments.
            interval: Sampling interval in seconds.
            basename: Prefix for every output file.
            gpu_enabled: Also record GPU usage if a GPU is present.

        Returns:
            The exit code of the monitored command.

        Raises:
            ProbeError: The monitored command could not be launched.
        """
        if not command:
            raise ValueError("no command to run")
        if self._state is not SessionState.INITIALIZED:
            raise RuntimeError(f"session already {self._state.value}")

        use_gpu = gpu_enabled and self._check_gpu()
        for spec in self._probe_factory(interval, basename, use_gpu):
            self._handles.append(start_probe(spec, self._resolver))

        sampler_executable = self._sampler_command[0]
        if self._resolver(sampler_executable):
            self._sampler = PeriodicSampler(
                "free", self._sampler_command, output_path(basename, "free"), interval
            )
            self._sampler.start()
        else:
            log.warning("%s not found. Skipping free monitoring.", sampler_executable)
        self._transition(SessionState.PROBES_STARTED)

        wrapper_spec = ProbeSpec(
            "pidstat",
            self._wrapper(command, interval),
            output_path(basename, "pidstat"),
            interval,
        )
        try:
            target = ProbeHandle.spawn(
                wrapper_spec, self._resolver, stderr_path=program_output_path(basename)
            )
        except ProbeError as exc:
            log.error("Cannot start monitored command %s: %s", shlex.join(command), exc)
            self._shutdown()
            raise

        self._handles.append(target)
        self._transition(SessionState.TARGET_RUNNING)
        try:
            exit_code = target.wait()
            # one more interval so interval-based probes emit their last sample
            time.sleep(interval)
        finally:
            self._shutdown()

        log.info("Monitored process exited with code: %d", exit_code)
        return exit_code

    def _check_gpu(self) -> bool:
        available = self.gpu_available()
        if not available:
            log.warning("No NVIDIA GPU detected. Skipping GPU monitoring.")
        return available

    def _transition(self, new: SessionState) -> None:
        if (self._state, new) not in _TRANSITIONS:
            raise RuntimeError(
                f"invalid session transition {self._state.value} -> {new.value}"
            )
        log.debug("session %s -> %s", self._state.value, new.value)
        self._state = new

    def _shutdown(self) -> None:
        self._transition(SessionState.STOPPING)
        interrupted: KeyboardInterrupt | None = None
        for handle in self._handles:
            try:
                handle.stop(self._stop_timeout)
            except KeyboardInterrupt as exc:
                interrupted = exc
        if self._sampler is not None:
            self._sampler.stop(self._stop_timeout)
        self._transition(SessionState.STOPPED)
        if interrupted is not None:
            raise interrupted


def run_benchmark(
    command: Sequence[str],
    interval: float,
    basename: str,
    session: MonitoringSession | None = None,
    gpu_command: Sequence[str] = GPU_PROCESS_COMMAND,
) -> int:
    """
    Monitor ``command`` with node-level probes plus per-process GPU memory.

    GPU monitoring is enabled only when a GPU is detected. The GPU process
    monitor writes to ``<basename>.gpu-process.out``.
    """
    session = session or MonitoringSession()
    has_gpu = session.gpu_available()
    log.info("GPU detected: %s", has_gpu)

    gpu_monitor = None
    if has_gpu:
        gpu_monitor = GpuProcessMonitor(
            interval, output_path(basename, "gpu-process"), gpu_command
        )
        gpu_monitor.start()
    try:
        return session.run(command, interval, basename, gpu_enabled=has_gpu)
    finally:
        if gpu_monitor is not None:
            gpu_monitor.stop()
