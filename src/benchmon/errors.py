"""Exceptions raised by benchmon."""


class ProbeError(Exception):
    """A measurement probe could not be started."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name


class ProbeUnavailable(ProbeError):
    """The probe's executable is not on the search path."""

    def __init__(self, name: str, executable: str) -> None:
        super().__init__(name, f"{executable} not found")
        self.executable = executable


class ProbeSpawnFailure(ProbeError):
    """The probe's executable was found but could not be launched."""


class SnapshotReadFailure(Exception):
    """The OS process table could not be read."""
