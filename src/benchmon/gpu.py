"""One-shot NVIDIA GPU detection."""

import logging
import subprocess
from collections.abc import Sequence

from benchmon.probes import Resolver, resolve_executable

log = logging.getLogger(__name__)

GPU_LIST_COMMAND = ("nvidia-smi", "-L")
GPU_MARKER = "GPU"


def detect_gpu(
    resolver: Resolver = resolve_executable,
    command: Sequence[str] = GPU_LIST_COMMAND,
) -> bool:
    """
    Return True if the GPU listing command reports at least one device.

    A missing executable, a launch error or a non-zero exit status all
    count as "no GPU".
    """
    if not resolver(command[0]):
        log.debug("%s not found, assuming no GPU", command[0])
        return False

    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
    except OSError as exc:
        log.debug("GPU detection failed: %s", exc)
        return False

    if result.returncode != 0:
        log.debug("%s exited with %d", command[0], result.returncode)
        return False

    return any(GPU_MARKER in line for line in result.stdout.splitlines())
