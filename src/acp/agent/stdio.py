"""Stdio Agent Transport Module

This module provides the transport an agent uses when it is spawned by a
client: protocol messages arrive on the current process' stdin and leave on
stdout. Logging must go to stderr.

Example:
    ```python
    async def main():
        async with stdio_agent() as (read_stream, write_stream):
            await AgentSideConnection(MyAgent(), read_stream, write_stream).run()

    anyio.run(main)
    ```
"""

import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import BinaryIO

import anyio
import anyio.to_thread
from anyio.abc import ByteReceiveStream, ByteSendStream

from acp.agent.agent import Agent
from acp.agent.connection import AgentSideConnection
from acp.settings import AcpSettings
from acp.shared.framing import DEFAULT_MAX_MESSAGE_SIZE
from acp.shared.transport import TransportStreams, byte_stream_transport

READ_CHUNK_SIZE = 65536


class _StdinReceiveStream(ByteReceiveStream):
    """Reads the process' stdin without ever closing it."""

    def __init__(self, file: BinaryIO) -> None:
        self._file = file

    async def receive(self, max_bytes: int = READ_CHUNK_SIZE) -> bytes:
        # A blocking read must not hold up shutdown, so the thread is abandoned on cancel
        data = await anyio.to_thread.run_sync(self._file.read1, max_bytes, abandon_on_cancel=True)  # type: ignore[attr-defined]
        if not data:
            raise anyio.EndOfStream
        return data

    async def aclose(self) -> None:
        pass


class _StdoutSendStream(ByteSendStream):
    """Writes to the process' stdout without ever closing it."""

    def __init__(self, file: BinaryIO) -> None:
        self._file = file

    def _write(self, data: bytes) -> None:
        self._file.write(data)
        self._file.flush()

    async def send(self, item: bytes) -> None:
        await anyio.to_thread.run_sync(self._write, item)

    async def aclose(self) -> None:
        pass


@asynccontextmanager
async def stdio_agent(
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> AsyncIterator[TransportStreams]:
    """Agent transport for stdio: this communicates with a client by reading
    from the current process' stdin and writing to stdout.
    """
    # Binary handles keep the wire UTF-8 regardless of the platform's text encoding
    if stdin is None:
        stdin = sys.stdin.buffer
    if stdout is None:
        stdout = sys.stdout.buffer

    async with byte_stream_transport(
        _StdinReceiveStream(stdin), _StdoutSendStream(stdout), max_message_size
    ) as (read_stream, write_stream):
        yield read_stream, write_stream


async def run_agent(agent: Agent, settings: AcpSettings | None = None) -> None:
    """Serve ``agent`` over stdio until the client closes stdin."""
    settings = settings or AcpSettings()
    async with stdio_agent(max_message_size=settings.max_message_size) as (read_stream, write_stream):
        connection = AgentSideConnection(
            agent,
            read_stream,
            write_stream,
            request_timeout=settings.request_timeout,
            terminal_wait_timeout=settings.terminal_wait_timeout,
        )
        await connection.run()
