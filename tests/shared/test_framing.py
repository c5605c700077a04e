import anyio
import pytest

from acp.shared.exceptions import ProtocolViolation
from acp.shared.framing import FramedStream, NDJSONFramer
from acp.types import PARSE_ERROR


def test_partial_lines_are_buffered_across_reads():
    framer = NDJSONFramer()

    assert framer.feed(b'{"a":') == []
    assert framer.feed(b'1}\n{"b"') == [b'{"a":1}']
    assert framer.buffered == 4
    assert framer.feed(b":2}\n") == [b'{"b":2}']
    assert framer.buffered == 0


def test_blank_lines_and_carriage_returns_are_skipped():
    framer = NDJSONFramer()

    assert framer.feed(b'\n\r\n   \n{"x":1}\r\n\n') == [b'{"x":1}']


def test_several_records_in_one_chunk():
    framer = NDJSONFramer()

    assert framer.feed(b'{"a":1}\n{"b":2}\n{"c":3}\n') == [b'{"a":1}', b'{"b":2}', b'{"c":3}']


def test_record_at_the_size_limit_is_accepted():
    framer = NDJSONFramer(max_message_size=8)

    assert framer.feed(b"12345678\n") == [b"12345678"]


def test_oversized_terminated_record_is_fatal():
    framer = NDJSONFramer(max_message_size=8)

    with pytest.raises(ProtocolViolation) as exc_info:
        framer.feed(b"0123456789\n")
    assert exc_info.value.code == PARSE_ERROR


def test_oversized_unterminated_buffer_is_fatal():
    """A peer that never sends a newline cannot make the framer buffer without bound."""
    framer = NDJSONFramer(max_message_size=8)

    framer.feed(b"01234")
    with pytest.raises(ProtocolViolation):
        framer.feed(b"56789")


def test_flush_returns_trailing_record_once():
    framer = NDJSONFramer()
    framer.feed(b'{"a":1}\n{"tail":true}')

    assert framer.flush() == b'{"tail":true}'
    assert framer.flush() is None


def test_flush_ignores_whitespace_remainder():
    framer = NDJSONFramer()
    framer.feed(b'{"a":1}\n  \r')

    assert framer.flush() is None


@pytest.mark.anyio
async def test_framed_stream_reads_records_then_trailing_data():
    send, receive = anyio.create_memory_object_stream[bytes](10)
    framed = FramedStream(receive, send, 1024)  # type: ignore[arg-type]

    send.send_nowait(b'{"a"')
    send.send_nowait(b':1}\n{"b":2}\n')
    send.send_nowait(b'{"c":3}')
    send.close()

    assert await framed.read_next() == b'{"a":1}'
    assert await framed.read_next() == b'{"b":2}'
    assert await framed.read_next() == b'{"c":3}'
    assert await framed.read_next() is None
    assert await framed.read_next() is None
    receive.close()


@pytest.mark.anyio
async def test_framed_stream_write_appends_delimiter():
    unused_send, receive = anyio.create_memory_object_stream[bytes](10)
    send, written = anyio.create_memory_object_stream[bytes](10)
    framed = FramedStream(receive, send)  # type: ignore[arg-type]

    await framed.write(b'{"jsonrpc":"2.0","method":"x"}')

    assert written.receive_nowait() == b'{"jsonrpc":"2.0","method":"x"}\n'
    for stream in (unused_send, receive, send, written):
        stream.close()


@pytest.mark.anyio
async def test_framed_stream_raises_on_oversized_record():
    send, receive = anyio.create_memory_object_stream[bytes](10)
    framed = FramedStream(receive, send, 4)  # type: ignore[arg-type]

    send.send_nowait(b"0123456789\n")

    with pytest.raises(ProtocolViolation):
        await framed.read_next()
    send.close()
    receive.close()
