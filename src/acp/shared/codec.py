"""JSON-RPC envelope codec.

Turns one framed record into a typed envelope and back. Classification is done
on the raw object before validation:

* ``method`` without ``id``: notification
* ``method`` with ``id``: request
* ``id`` with exactly one of ``result``/``error`` and no ``method``: response
* anything else: parse error

Params and results are left as plain JSON values; handlers validate them into
their own models.
"""

import json
from typing import Any

from pydantic import ValidationError

from acp.shared.exceptions import MessageParseError
from acp.types import (
    INVALID_REQUEST,
    JSONRPC_VERSION,
    PARSE_ERROR,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
)


def is_request_id(value: Any) -> bool:
    return isinstance(value, int | str) and not isinstance(value, bool)


def _fail(code: int, message: str, request_id: RequestId | None = None) -> MessageParseError:
    return MessageParseError(ErrorData(code=code, message=message), request_id=request_id)


def decode(record: bytes | str) -> JSONRPCMessage:
    """Decode one record. Raises MessageParseError on any fault."""
    try:
        raw = json.loads(record)
    except ValueError as exc:
        raise _fail(PARSE_ERROR, f"Parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise _fail(PARSE_ERROR, "Message must be a JSON object")

    has_method = "method" in raw
    raw_id = raw.get("id")
    # Faults on something that is recognisably a request are answered on that request
    attributable_id = raw_id if has_method and is_request_id(raw_id) else None

    if raw.get("jsonrpc") != JSONRPC_VERSION:
        raise _fail(INVALID_REQUEST, f"Unsupported jsonrpc version: {raw.get('jsonrpc')!r}", attributable_id)

    if has_method:
        return _decode_call(raw, attributable_id)
    return _decode_response(raw)


def _decode_call(raw: dict[str, Any], request_id: RequestId | None) -> JSONRPCRequest | JSONRPCNotification:
    method = raw["method"]
    if not isinstance(method, str):
        raise _fail(INVALID_REQUEST, "Method must be a string", request_id)
    if "result" in raw or "error" in raw:
        raise _fail(PARSE_ERROR, "Message carries both a method and a response payload", request_id)

    params = raw.get("params")
    if params is not None and not isinstance(params, dict):
        raise _fail(INVALID_REQUEST, "Params must be an object", request_id)

    if "id" not in raw:
        return JSONRPCNotification(method=method, params=params)
    if request_id is None:
        raise _fail(INVALID_REQUEST, f"Invalid request id: {raw['id']!r}")
    return JSONRPCRequest(id=request_id, method=method, params=params)


def _decode_response(raw: dict[str, Any]) -> JSONRPCResponse | JSONRPCError:
    if "id" not in raw:
        raise _fail(PARSE_ERROR, "Message is neither a request, a notification nor a response")
    has_result = "result" in raw
    has_error = "error" in raw
    if has_result == has_error:
        raise _fail(PARSE_ERROR, "Response must carry exactly one of result or error")

    raw_id = raw["id"]
    if has_error:
        # Errors for faults that could not be attributed carry a null id
        if raw_id is not None and not is_request_id(raw_id):
            raise _fail(PARSE_ERROR, f"Invalid response id: {raw_id!r}")
        try:
            error = ErrorData.model_validate(raw["error"])
        except ValidationError as exc:
            raise _fail(PARSE_ERROR, f"Invalid error object: {exc}") from exc
        return JSONRPCError(id=raw_id, error=error)

    if not is_request_id(raw_id):
        raise _fail(PARSE_ERROR, f"Invalid response id: {raw_id!r}")
    return JSONRPCResponse(id=raw_id, result=raw["result"])


def encode(message: JSONRPCMessage) -> bytes:
    """Encode a message as one record, without the trailing delimiter.

    Responses always carry ``result``, even when it is null, and errors always
    carry ``id``, which is null for faults that could not be attributed.
    """
    if isinstance(message, JSONRPCResponse):
        data = message.model_dump_json(by_alias=True)
    elif isinstance(message, JSONRPCError):
        exclude = {"error": {"data"}} if message.error.data is None else None
        data = message.model_dump_json(by_alias=True, exclude=exclude)
    else:
        data = message.model_dump_json(by_alias=True, exclude_none=True)
    return data.encode("utf-8")
