import logging
import os
import subprocess
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TextIO

import anyio
import anyio.lowlevel
from anyio.abc import Process
from anyio.streams.text import TextReceiveStream
from pydantic import BaseModel, Field

from acp.os.posix import terminate_process_tree
from acp.shared.framing import DEFAULT_MAX_MESSAGE_SIZE
from acp.shared.transport import TransportStreams, byte_stream_transport

logger = logging.getLogger(__name__)

# Environment variables to inherit by default
DEFAULT_INHERITED_ENV_VARS = ["HOME", "LOGNAME", "PATH", "SHELL", "TERM", "USER", "LANG"]

# Timeout for process termination before falling back to force kill
PROCESS_TERMINATION_TIMEOUT = 2.0


def get_default_environment() -> dict[str, str]:
    """
    Returns a default environment object including only environment variables deemed
    safe to inherit.
    """
    env: dict[str, str] = {}

    for key in DEFAULT_INHERITED_ENV_VARS:
        value = os.environ.get(key)
        if value is None:
            continue

        if value.startswith("()"):
            # Skip functions, which are a security risk
            continue

        env[key] = value

    return env


class AgentProcessParameters(BaseModel):
    command: str
    """The executable to run to start the agent."""

    args: list[str] = Field(default_factory=list)
    """Command line arguments to pass to the executable."""

    env: dict[str, str] | None = None
    """
    The environment to use when spawning the process.

    If not specified, the result of get_default_environment() will be used.
    """

    cwd: str | Path | None = None
    """The working directory to use when spawning the process."""

    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    """Largest accepted NDJSON record from the agent, in bytes."""


async def _stderr_reader(process: Process, errlog: TextIO) -> None:
    """Forward the agent's stderr (its log output) line by line."""
    if process.stderr is None:
        return

    try:
        buffer = ""
        async for chunk in TextReceiveStream(process.stderr, errors="replace"):
            lines = (buffer + chunk).split("\n")
            buffer = lines.pop()

            for line in lines:
                if line.strip():
                    print(line, file=errlog)

        if buffer.strip():
            print(buffer, file=errlog)
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):  # pragma: no cover
        await anyio.lowlevel.checkpoint()


@asynccontextmanager
async def stdio_client(agent: AgentProcessParameters, errlog: TextIO = sys.stderr) -> AsyncIterator[TransportStreams]:
    """
    Client transport for stdio: this will connect to an agent by spawning a
    process and communicating with it over stdin/stdout. The agent's stderr
    is forwarded to ``errlog``.
    """
    process = await anyio.open_process(
        [agent.command, *agent.args],
        env=({**get_default_environment(), **agent.env} if agent.env is not None else get_default_environment()),
        stderr=subprocess.PIPE,
        cwd=agent.cwd,
        start_new_session=True,
    )
    assert process.stdin is not None and process.stdout is not None, "Opened process is missing stdio"
    logger.debug("Spawned agent %s (pid %s)", agent.command, process.pid)

    async with anyio.create_task_group() as tg, process:
        tg.start_soon(_stderr_reader, process, errlog)
        try:
            async with byte_stream_transport(
                process.stdout, process.stdin, agent.max_message_size
            ) as (read_stream, write_stream):
                yield read_stream, write_stream
        finally:
            # Shutdown: close the agent's stdin, give it time to exit, then terminate its process group
            try:
                await process.stdin.aclose()
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):  # pragma: no cover
                pass

            try:
                with anyio.fail_after(PROCESS_TERMINATION_TIMEOUT):
                    await process.wait()
            except TimeoutError:
                logger.warning("Agent %s did not exit after stdin closed, terminating", agent.command)
                await terminate_process_tree(process, PROCESS_TERMINATION_TIMEOUT, label=f"agent {agent.command}")
            except ProcessLookupError:  # pragma: no cover
                pass
            tg.cancel_scope.cancel()
