"""
POSIX process helpers for agent subprocesses and terminals.
"""

import logging
import os
import signal

import anyio
from anyio.abc import Process

logger = logging.getLogger(__name__)


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Send ``sig`` to a process group. Returns False if the group is already gone."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    return True


async def terminate_process_tree(
    process: Process, timeout_seconds: float = 2.0, *, label: str | None = None
) -> int | None:
    """
    Stop a process and everything in its process group, and return its exit status.

    The group gets SIGTERM, then SIGKILL for whatever is still running after
    ``timeout_seconds``. The leader is reaped, so the returned status is final:
    negative for a signal, or None if it could not be collected in time. The
    process must have been started with ``start_new_session=True`` so that it
    leads its own group.

    ``label`` names the process in log messages, e.g. a terminal id.
    """
    label = label or f"PID {process.pid}"
    if process.returncode is not None:
        return process.returncode

    pid = process.pid
    try:
        pgid = os.getpgid(pid)
        if _signal_group(pgid, signal.SIGTERM):
            with anyio.move_on_after(timeout_seconds):
                await process.wait()
            # Children can outlive the leader
            if _signal_group(pgid, signal.SIGKILL):
                logger.debug("Sent SIGKILL to what remained of %s", label)
    except OSError as e:
        logger.warning(f"Process group termination failed for {label}: {e}, falling back to kill")
        try:
            process.kill()
        except ProcessLookupError:
            pass

    with anyio.move_on_after(timeout_seconds):
        await process.wait()

    if process.returncode is None:
        logger.warning("%s did not exit after SIGKILL", label)
    else:
        logger.info("%s terminated with exit status %d", label, process.returncode)
    return process.returncode
