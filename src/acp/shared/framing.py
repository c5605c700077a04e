"""Newline-delimited JSON framing.

Each record is one line of UTF-8 JSON terminated by ``\\n``. The framer buffers
partial lines across reads and refuses records larger than the configured
maximum, which is a fatal fault for the connection.
"""

import logging
from collections import deque

import anyio
from anyio.abc import ByteReceiveStream, ByteSendStream

from acp.shared.exceptions import ProtocolViolation
from acp.types import PARSE_ERROR

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024

RECORD_DELIMITER = b"\n"


class NDJSONFramer:
    """Splits a byte stream into records. Holds no I/O of its own."""

    def __init__(self, max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE) -> None:
        self.max_message_size = max_message_size
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add bytes and return every record they complete. Blank lines are skipped."""
        self._buffer.extend(data)
        records: list[bytes] = []
        while True:
            index = self._buffer.find(RECORD_DELIMITER)
            if index < 0:
                break
            line = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            self._check_size(len(line))
            line = line.rstrip(b"\r")
            if line.strip():
                records.append(line)

        # An unterminated line can only grow; fail before buffering without bound
        self._check_size(len(self._buffer))
        return records

    def flush(self) -> bytes | None:
        """Return the trailing unterminated record, if any, and reset the buffer."""
        remainder = bytes(self._buffer).rstrip(b"\r")
        self._buffer.clear()
        if remainder.strip():
            return remainder
        return None

    def _check_size(self, size: int) -> None:
        if size > self.max_message_size:
            raise ProtocolViolation(
                f"Message exceeds maximum size of {self.max_message_size} bytes",
                code=PARSE_ERROR,
            )


class FramedStream:
    """Record-level reads and writes on top of a pair of byte streams.

    Writes are serialized by a lock so that concurrent writers never interleave
    inside a record.
    """

    def __init__(
        self,
        receive_stream: ByteReceiveStream,
        send_stream: ByteSendStream,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._receive_stream = receive_stream
        self._send_stream = send_stream
        self._framer = NDJSONFramer(max_message_size)
        self._records: deque[bytes] = deque()
        self._write_lock = anyio.Lock()
        self._eof = False

    async def read_next(self) -> bytes | None:
        """Return the next record, or ``None`` once the stream has ended."""
        while not self._records:
            if self._eof:
                return None
            try:
                chunk = await self._receive_stream.receive()
            except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError):
                self._eof = True
                trailing = self._framer.flush()
                if trailing is not None:
                    logger.debug("Treating %d unterminated trailing bytes as a final record", len(trailing))
                    self._records.append(trailing)
                continue
            if not chunk:
                continue
            self._records.extend(self._framer.feed(chunk))
        return self._records.popleft()

    async def write(self, record: bytes) -> None:
        async with self._write_lock:
            await self._send_stream.send(record + RECORD_DELIMITER)
