"""Timeout-bounded execution of external text-producing tools.

Commands are always passed as argument lists, never through a shell. Only
validated integers may be interpolated into an argument list.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def run(args: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a command and return its stdout, or ``""`` on any failure.

    stdout is drained while waiting for exit, so a chatty child cannot fill
    the pipe and deadlock. On timeout the child is killed. stderr is
    discarded.
    """
    try:
        result = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug("%s timed out after %.1fs", args[0], timeout)
        return ""
    except OSError as exc:
        logger.debug("Cannot run %s: %s", args[0], exc)
        return ""

    if result.returncode != 0:
        logger.debug("%s exited with code %d", args[0], result.returncode)
        return ""

    return result.stdout.decode("utf-8", errors="replace")
