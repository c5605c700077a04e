from acp.types import (
    CAPABILITY_NOT_SUPPORTED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    INVALID_STATE,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PERMISSION_DENIED,
    RESOURCE_NOT_FOUND,
    ErrorData,
    RequestId,
)


class AcpError(Exception):
    """Exception carrying a JSON-RPC error.

    Raised locally by handlers to produce an error response, and raised to the
    caller of an outbound request when the peer answers with an error. It wraps
    the ErrorData that is (or was) sent over the wire.

    Attributes:
        error: The ErrorData containing the error code, message, and optional
               additional data
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> int:
        return self.error.code

    @classmethod
    def parse_error(cls, message: str = "Parse error", data: object = None) -> "AcpError":
        return cls(ErrorData(code=PARSE_ERROR, message=message, data=data))

    @classmethod
    def invalid_request(cls, message: str = "Invalid request", data: object = None) -> "AcpError":
        return cls(ErrorData(code=INVALID_REQUEST, message=message, data=data))

    @classmethod
    def method_not_found(cls, method: str) -> "AcpError":
        return cls(ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {method}"))

    @classmethod
    def invalid_params(cls, message: str = "Invalid params", data: object = None) -> "AcpError":
        return cls(ErrorData(code=INVALID_PARAMS, message=message, data=data))

    @classmethod
    def internal_error(cls, message: str = "Internal error", data: object = None) -> "AcpError":
        return cls(ErrorData(code=INTERNAL_ERROR, message=message, data=data))

    @classmethod
    def resource_not_found(cls, message: str, data: object = None) -> "AcpError":
        return cls(ErrorData(code=RESOURCE_NOT_FOUND, message=message, data=data))

    @classmethod
    def permission_denied(cls, message: str, data: object = None) -> "AcpError":
        return cls(ErrorData(code=PERMISSION_DENIED, message=message, data=data))

    @classmethod
    def invalid_state(cls, message: str, data: object = None) -> "AcpError":
        return cls(ErrorData(code=INVALID_STATE, message=message, data=data))

    @classmethod
    def capability_not_supported(cls, capability: str, method: str | None = None) -> "AcpError":
        message = f"Capability not supported: {capability}"
        if method is not None:
            message = f"{message} (required by {method})"
        return cls(ErrorData(code=CAPABILITY_NOT_SUPPORTED, message=message, data={"capability": capability}))


class ConnectionClosedError(AcpError):
    """Raised to pending callers when the connection goes away before a response arrives."""

    def __init__(self, reason: str = "Connection closed"):
        super().__init__(ErrorData(code=INTERNAL_ERROR, message=reason))


class RequestTimeoutError(AcpError):
    """Raised when an outbound request is not answered in time.

    The pending entry is dropped; a late response is treated as stale.
    """

    def __init__(self, method: str, timeout: float | None):
        super().__init__(
            ErrorData(
                code=INTERNAL_ERROR,
                message=f"Timed out while waiting for response to {method}. Waited {timeout} seconds.",
                data={"method": method, "timeout": timeout},
            )
        )
        self.method = method
        self.timeout = timeout


class ProtocolViolation(AcpError):
    """A peer broke the protocol in a way that cannot be answered with a normal response.

    Framing faults (oversized records) are fatal to the connection. Session
    update faults (e.g. an update for an unannounced tool call) are reported to
    the code that detected them.
    """

    def __init__(self, message: str, code: int = INVALID_REQUEST):
        super().__init__(ErrorData(code=code, message=message))


class MessageParseError(AcpError):
    """An inbound record could not be decoded into a JSON-RPC message.

    When the record was recognisably a request, ``request_id`` holds its id so
    the fault can be answered on that request alone. Otherwise it is ``None``
    and the fault is fatal to the connection.
    """

    def __init__(self, error: ErrorData, request_id: RequestId | None = None):
        super().__init__(error)
        self.request_id = request_id

    @property
    def attributable(self) -> bool:
        return self.request_id is not None
