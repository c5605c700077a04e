"""Byte-stream transport shared by the stdio agent and the stdio client.

Bridges a pair of byte streams to the message streams a Connection consumes:
a reader task frames and decodes records, a single writer task encodes and
writes them. Faults are forwarded to the connection as exceptions on the read
stream; a framing fault also ends the reader.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
import anyio.lowlevel
from anyio.abc import ByteReceiveStream, ByteSendStream
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from acp.shared import codec
from acp.shared.exceptions import MessageParseError, ProtocolViolation
from acp.shared.framing import DEFAULT_MAX_MESSAGE_SIZE, FramedStream
from acp.shared.message import SessionMessage

logger = logging.getLogger(__name__)

TransportStreams = tuple[MemoryObjectReceiveStream[SessionMessage | Exception], MemoryObjectSendStream[SessionMessage]]


async def _record_reader(
    framed: FramedStream,
    read_stream_writer: MemoryObjectSendStream[SessionMessage | Exception],
) -> None:
    """Read records and parse JSON-RPC messages."""
    try:
        async with read_stream_writer:
            while True:
                try:
                    record = await framed.read_next()
                except ProtocolViolation as exc:
                    logger.error("Framing error: %s", exc)
                    await read_stream_writer.send(exc)
                    return
                if record is None:
                    return

                try:
                    message = codec.decode(record)
                except MessageParseError as exc:
                    logger.warning("Failed to parse JSON-RPC message: %s", exc)
                    await read_stream_writer.send(exc)
                    continue

                await read_stream_writer.send(SessionMessage(message))
    except anyio.ClosedResourceError:  # pragma: no cover
        await anyio.lowlevel.checkpoint()


async def _record_writer(
    framed: FramedStream,
    write_stream_reader: MemoryObjectReceiveStream[SessionMessage],
) -> None:
    """Encode session messages and write them as records."""
    try:
        async with write_stream_reader:
            async for session_message in write_stream_reader:
                await framed.write(codec.encode(session_message.message))
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):  # pragma: no cover
        await anyio.lowlevel.checkpoint()


@asynccontextmanager
async def byte_stream_transport(
    receive_stream: ByteReceiveStream,
    send_stream: ByteSendStream,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> AsyncIterator[TransportStreams]:
    """Run NDJSON framing over a pair of byte streams.

    Yields the ``(read_stream, write_stream)`` pair to hand to a Connection. The
    byte streams are not closed on exit; their owner decides that.
    """
    read_stream_writer, read_stream = anyio.create_memory_object_stream[SessionMessage | Exception](0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)
    framed = FramedStream(receive_stream, send_stream, max_message_size)

    async with anyio.create_task_group() as tg:
        tg.start_soon(_record_reader, framed, read_stream_writer)
        tg.start_soon(_record_writer, framed, write_stream_reader)
        try:
            yield read_stream, write_stream
        finally:
            tg.cancel_scope.cancel()
            await read_stream.aclose()
            await write_stream.aclose()
