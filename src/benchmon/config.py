"""Defaults and run configuration for benchmon."""

import os
from dataclasses import dataclass

DEFAULT_INTERVAL = 10
DEFAULT_BASENAME = "stats"
STOP_TIMEOUT = 5.0
LOG_LEVEL_ENV = "BENCHMON_LOG_LEVEL"


def default_log_level() -> str:
    """Log level from the environment, falling back to INFO."""
    return os.environ.get(LOG_LEVEL_ENV, "INFO").upper()


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """
    Settings for one monitoring or watch run.

    Args:
        interval: Sampling interval in seconds.
        basename: Prefix of every probe output file.
        gpu: Request GPU monitoring.
        username: User whose processes are watched (watch mode only).
        stop_timeout: Grace period before a probe is force-killed.
    """

    interval: float = DEFAULT_INTERVAL
    basename: str = DEFAULT_BASENAME
    gpu: bool = False
    username: str | None = None
    stop_timeout: float = STOP_TIMEOUT

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.stop_timeout <= 0:
            raise ValueError(f"stop_timeout must be positive, got {self.stop_timeout}")
        if not self.basename:
            raise ValueError("basename must not be empty")
