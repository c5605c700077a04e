import json

import pytest

from acp.shared import codec
from acp.shared.exceptions import MessageParseError
from acp.types import (
    INVALID_REQUEST,
    PARSE_ERROR,
    ErrorData,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)


def test_decode_request():
    message = codec.decode(b'{"jsonrpc":"2.0","id":1,"method":"session/new","params":{"session_id":"s1"}}')

    assert message == JSONRPCRequest(id=1, method="session/new", params={"session_id": "s1"})


def test_decode_request_with_string_id():
    message = codec.decode('{"jsonrpc":"2.0","id":"abc","method":"initialize"}')

    assert isinstance(message, JSONRPCRequest)
    assert message.id == "abc"
    assert message.params is None


def test_decode_notification():
    message = codec.decode(b'{"jsonrpc":"2.0","method":"session/cancel","params":{"session_id":"s1"}}')

    assert message == JSONRPCNotification(method="session/cancel", params={"session_id": "s1"})


def test_decode_response():
    message = codec.decode(b'{"jsonrpc":"2.0","id":4,"result":{"session_id":"s1"}}')

    assert message == JSONRPCResponse(id=4, result={"session_id": "s1"})


def test_decode_response_with_null_result():
    message = codec.decode(b'{"jsonrpc":"2.0","id":4,"result":null}')

    assert isinstance(message, JSONRPCResponse)
    assert message.result is None


def test_decode_error_response_with_null_id():
    message = codec.decode(b'{"jsonrpc":"2.0","id":null,"error":{"code":-32700,"message":"Parse error"}}')

    assert isinstance(message, JSONRPCError)
    assert message.id is None
    assert message.error == ErrorData(code=PARSE_ERROR, message="Parse error")


@pytest.mark.parametrize(
    "record",
    [
        b"{not json",
        b"[1, 2, 3]",
        b'"just a string"',
        b'{"jsonrpc":"2.0"}',
        b'{"jsonrpc":"2.0","id":1}',
        b'{"jsonrpc":"2.0","id":1,"result":{},"error":{"code":1,"message":"x"}}',
        b'{"jsonrpc":"2.0","id":{"nested":true},"result":{}}',
    ],
)
def test_unattributable_faults_are_parse_errors(record: bytes):
    with pytest.raises(MessageParseError) as exc_info:
        codec.decode(record)

    assert exc_info.value.code == PARSE_ERROR
    assert not exc_info.value.attributable


def test_wrong_jsonrpc_version_on_request_is_attributable():
    with pytest.raises(MessageParseError) as exc_info:
        codec.decode(b'{"jsonrpc":"1.0","id":7,"method":"session/new"}')

    assert exc_info.value.code == INVALID_REQUEST
    assert exc_info.value.request_id == 7
    assert exc_info.value.attributable


def test_non_object_params_are_attributable():
    with pytest.raises(MessageParseError) as exc_info:
        codec.decode(b'{"jsonrpc":"2.0","id":3,"method":"session/new","params":["s1"]}')

    assert exc_info.value.code == INVALID_REQUEST
    assert exc_info.value.request_id == 3


def test_method_with_result_is_a_parse_error():
    with pytest.raises(MessageParseError) as exc_info:
        codec.decode(b'{"jsonrpc":"2.0","id":3,"method":"session/new","result":{}}')

    assert exc_info.value.code == PARSE_ERROR


def test_boolean_id_is_not_a_request_id():
    with pytest.raises(MessageParseError) as exc_info:
        codec.decode(b'{"jsonrpc":"2.0","id":true,"method":"session/new"}')

    assert exc_info.value.code == INVALID_REQUEST
    assert not exc_info.value.attributable


def test_encode_response_always_carries_result():
    assert codec.encode(JSONRPCResponse(id=1, result=None)) == b'{"jsonrpc":"2.0","id":1,"result":null}'


def test_encode_omits_missing_params():
    assert codec.encode(JSONRPCNotification(method="session/cancel")) == b'{"jsonrpc":"2.0","method":"session/cancel"}'


def test_encode_error_with_null_id():
    data = json.loads(codec.encode(JSONRPCError(id=None, error=ErrorData(code=PARSE_ERROR, message="bad"))))

    assert data == {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "bad"}}


def test_encode_keeps_non_ascii_text_and_no_newlines():
    record = codec.encode(
        JSONRPCNotification(method="session/update", params={"session_id": "s1", "text": "héllo\nwörld"})
    )

    assert "héllo".encode() in record
    assert b"\n" not in record
    assert codec.decode(record) == JSONRPCNotification(
        method="session/update", params={"session_id": "s1", "text": "héllo\nwörld"}
    )


@pytest.mark.parametrize(
    "message",
    [
        JSONRPCRequest(id=7, method="session/new", params={"session_id": "s1", "mode": "ask"}),
        JSONRPCRequest(id="req-7", method="initialize", params=None),
        JSONRPCNotification(method="session/cancel", params=None),
        JSONRPCNotification(method="session/update", params={"session_id": "s1", "type": "done", "data": {}}),
        JSONRPCResponse(id=7, result=None),
        JSONRPCResponse(id="req-7", result={"content": [{"type": "text", "text": "ok"}]}),
        JSONRPCError(id=None, error=ErrorData(code=PARSE_ERROR, message="Parse error")),
        JSONRPCError(id="req-8", error=ErrorData(code=INVALID_REQUEST, message="bad", data={"field": "method"})),
    ],
    ids=[
        "request-int-id",
        "request-string-id-null-params",
        "notification-null-params",
        "notification",
        "response-null-result",
        "response-string-id",
        "error-null-id",
        "error-with-data",
    ],
)
def test_encoded_messages_decode_to_the_same_message(message):
    assert codec.decode(codec.encode(message)) == message
