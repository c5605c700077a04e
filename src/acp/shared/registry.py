"""Correlation of outbound requests with their responses.

Every outbound request is registered under a locally allocated id. The entry
lives until exactly one of three things happens: a matching response arrives,
the caller's wait times out (or is cancelled), or the connection closes. Table
mutations never await, so lookup and removal cannot be interleaved with
another task.
"""

import logging
import time
from dataclasses import dataclass, field

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from acp.shared.exceptions import ConnectionClosedError, RequestTimeoutError
from acp.types import JSONRPCError, JSONRPCResponse, RequestId

logger = logging.getLogger(__name__)

Outcome = JSONRPCResponse | JSONRPCError | Exception


@dataclass
class PendingRequest:
    """An outbound request waiting for its outcome."""

    request_id: int
    method: str
    issued_at: float = field(default_factory=time.monotonic)
    # Count of inbound notifications read before the response
    notification_mark: int = field(default=0, init=False)
    _send_stream: MemoryObjectSendStream[Outcome] = field(init=False, repr=False)
    _receive_stream: MemoryObjectReceiveStream[Outcome] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._send_stream, self._receive_stream = anyio.create_memory_object_stream[Outcome](1)

    def _complete(self, outcome: Outcome) -> None:
        try:
            self._send_stream.send_nowait(outcome)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, anyio.WouldBlock):
            logger.debug("Outcome for request %s arrived after its waiter left", self.request_id)
        finally:
            self._send_stream.close()

    def _close(self) -> None:
        self._send_stream.close()
        self._receive_stream.close()


def normalize_request_id(request_id: RequestId | None) -> RequestId | None:
    """Map numeric string ids onto the integer ids this registry hands out."""
    if isinstance(request_id, str) and request_id.isdigit():
        return int(request_id)
    return request_id


class CorrelationRegistry:
    """Per-connection table of pending outbound requests."""

    def __init__(self) -> None:
        self._next_id = 0
        self._pending: dict[RequestId, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, method: str) -> PendingRequest:
        request_id = self._next_id
        self._next_id = request_id + 1
        pending = PendingRequest(request_id=request_id, method=method)
        self._pending[request_id] = pending
        return pending

    def resolve(self, message: JSONRPCResponse | JSONRPCError, notification_mark: int = 0) -> bool:
        """Complete the matching request. Unknown ids are stale: logged and dropped.

        ``notification_mark`` is how many notifications the connection had read
        when the response arrived.
        """
        pending = self._pending.pop(normalize_request_id(message.id), None)  # type: ignore[arg-type]
        if pending is None:
            logger.debug("Dropping response with unknown or stale request id %r", message.id)
            return False
        pending.notification_mark = notification_mark
        pending._complete(message)  # type: ignore[reportPrivateUsage]
        return True

    def fail(self, request_id: RequestId, error: Exception) -> bool:
        pending = self._pending.pop(normalize_request_id(request_id), None)  # type: ignore[arg-type]
        if pending is None:
            return False
        pending._complete(error)  # type: ignore[reportPrivateUsage]
        return True

    def discard(self, pending: PendingRequest) -> None:
        if self._pending.get(pending.request_id) is pending:
            del self._pending[pending.request_id]
        pending._close()  # type: ignore[reportPrivateUsage]

    async def wait(self, pending: PendingRequest, timeout: float | None = None) -> JSONRPCResponse | JSONRPCError:
        """Wait for the outcome of a registered request.

        Raises:
            RequestTimeoutError: no outcome within ``timeout`` seconds
            ConnectionClosedError: the connection closed first
        """
        try:
            with anyio.fail_after(timeout):
                outcome = await pending._receive_stream.receive()  # type: ignore[reportPrivateUsage]
        except TimeoutError:
            raise RequestTimeoutError(pending.method, timeout)
        except anyio.EndOfStream:
            raise ConnectionClosedError()
        finally:
            self.discard(pending)

        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def cancel_all(self, reason: str = "Connection closed") -> None:
        """Complete every outstanding request with ConnectionClosedError."""
        pending_requests = list(self._pending.values())
        self._pending.clear()
        for pending in pending_requests:
            pending._complete(ConnectionClosedError(reason))  # type: ignore[reportPrivateUsage]
        if pending_requests:
            logger.debug("Failed %d pending requests: %s", len(pending_requests), reason)
