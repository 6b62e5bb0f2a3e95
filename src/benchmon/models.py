"""Data models for benchmon."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(slots=True, frozen=True)
class ProbeSpec:
    """Immutable description of one external measurement probe."""

    name: str
    command: tuple[str, ...]
    output: str
    interval: float

    @property
    def executable(self) -> str:
        """Name of the program the probe launches."""
        return self.command[0]


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable view of one process from a process-table read."""

    pid: int
    ppid: int
    cmd: str

    def __str__(self) -> str:
        return f"{self.pid} (PPID={self.ppid}) {self.cmd}"


# pid -> record, one user, one process-table read
ProcessSnapshot = Mapping[int, ProcessRecord]


class EventKind(Enum):
    """Kinds of process events seen between two snapshots."""

    CREATED = "+"
    TERMINATED = "-"


@dataclass(slots=True, frozen=True)
class ProcessEvent:
    """A process creation or termination detected at one tick."""

    timestamp: datetime
    kind: EventKind
    record: ProcessRecord

    def __str__(self) -> str:
        return f"[{self.timestamp.isoformat()}] {self.kind.value} {self.record}"


class SessionState(Enum):
    """Lifecycle of a monitoring session."""

    INITIALIZED = "initialized"
    PROBES_STARTED = "probes_started"
    TARGET_RUNNING = "target_running"
    STOPPING = "stopping"
    STOPPED = "stopped"
