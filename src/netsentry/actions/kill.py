"""Kill action — terminate a process after safety checks."""

from __future__ import annotations

import logging

import psutil

from netsentry.rules.heuristics import SYSTEM_PROCESSES

logger = logging.getLogger(__name__)

_SUPERUSER = "root"


def terminate_process(pid: int) -> bool:
    """Send SIGTERM to ``pid``. Returns True if the signal was delivered.

    Refuses pid <= 1, processes owned by the superuser (or whose owner
    cannot be determined) and known system processes.
    """
    if pid <= 1:
        logger.info("Refusing to kill protected pid %d", pid)
        return False

    try:
        proc = psutil.Process(pid)
        owner = proc.username()
        name = proc.name()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as exc:
        logger.info("Cannot inspect pid %d: %s", pid, exc)
        return False

    if not owner or owner == _SUPERUSER:
        logger.info("Refusing to kill pid %d owned by %r", pid, owner)
        return False
    if name in SYSTEM_PROCESSES:
        logger.info("Refusing to kill system process %s (%d)", name, pid)
        return False

    logger.warning("Terminating process %d (%s)", pid, name)
    try:
        proc.terminate()
    except psutil.NoSuchProcess:
        logger.warning("Process %d already exited", pid)
        return True
    except psutil.AccessDenied:
        logger.error("Permission denied killing process %d", pid)
        return False
    return True
