import logging
import math
from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, TypeVar

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import BaseModel
from pydantic_core import to_jsonable_python
from typing_extensions import Self

from acp.shared.capabilities import CapabilityNegotiator
from acp.shared.dispatcher import Dispatcher, RequestContext
from acp.shared.exceptions import AcpError, ConnectionClosedError, MessageParseError
from acp.shared.message import SessionMessage
from acp.shared.registry import CorrelationRegistry
from acp.shared.roles import Role
from acp.shared.session_state import ConnectionState
from acp.types import (
    PARSE_ERROR,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
)

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

DEFAULT_REQUEST_TIMEOUT = 60.0


def _dump_params(params: BaseModel | dict[str, Any] | None) -> dict[str, Any] | None:
    if isinstance(params, BaseModel):
        return params.model_dump(mode="json", by_alias=True, exclude_none=True)
    return to_jsonable_python(params)


class Connection:
    """
    Bidirectional JSON-RPC engine on top of read/write streams: request/response
    correlation, notification fan-out and request handling for one role.

    The read loop decodes and routes messages in arrival order. Responses are
    resolved inline. Notifications are queued and delivered one at a time, in
    order, by a dedicated task, so a subscriber may itself issue requests and
    wait for their responses. Each inbound request runs in its own task, so a
    slow handler never blocks the loop.

    Every response records how many notifications had been read before it; a
    caller can wait until those have been delivered with
    ``send_request(..., after_notifications=True)``.

    This class is an async context manager that starts processing messages when
    entered and stops when exited.
    """

    def __init__(
        self,
        role: Role,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        *,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.role = role
        self.state = ConnectionState()
        self.negotiator = CapabilityNegotiator()
        self.registry = CorrelationRegistry()
        self.dispatcher = Dispatcher(role, self.state, self.negotiator)
        self.request_timeout = request_timeout
        self._read_stream = read_stream
        self._write_stream = write_stream
        self._closed = anyio.Event()
        self._notification_writer, self._notification_reader = anyio.create_memory_object_stream[
            JSONRPCNotification
        ](math.inf)
        self._notifications_received = 0
        self._notifications_delivered = 0
        self._delivery_progress = anyio.Event()
        self._notification_task_id: int | None = None
        self._close_reason: str | None = None
        self._exit_stack = AsyncExitStack()

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        self._task_group.start_soon(self._receive_loop)
        self._task_group.start_soon(self._notification_loop)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        try:
            await self._exit_stack.aclose()
        finally:
            # Exiting must not wait for the peer, so cancel whatever is still running
            self._task_group.cancel_scope.cancel()
            suppress = await self._task_group.__aexit__(exc_type, exc_val, exc_tb)
        return suppress

    async def run(self) -> None:
        """Process messages until the connection closes."""
        async with self:
            await self.wait_closed()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def send_request(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None,
        result_type: type[ResultT],
        *,
        timeout: float | None = None,
        after_notifications: bool = False,
    ) -> ResultT:
        """
        Sends a request and waits for its response. Raises an AcpError if the
        peer answers with an error, RequestTimeoutError if no answer arrives in
        time, and ConnectionClosedError if the connection goes away first.
        The per-call timeout takes precedence over the connection's.

        With ``after_notifications``, returns only once every notification the
        peer sent before its response has been delivered to subscribers.
        """
        if method not in self.role.issues:
            raise ValueError(f"The {self.role.name} role does not issue {method}")
        if self.closed:
            raise ConnectionClosedError(self._close_reason or "Connection closed")

        pending = self.registry.register(method)
        request = JSONRPCRequest(id=pending.request_id, method=method, params=_dump_params(params))
        try:
            await self._send_message(request)
        except ConnectionClosedError:
            self.registry.discard(pending)
            raise

        response = await self.registry.wait(pending, timeout if timeout is not None else self.request_timeout)
        if after_notifications:
            await self.wait_for_notifications(pending.notification_mark)
        if isinstance(response, JSONRPCError):
            raise AcpError(response.error)
        return result_type.model_validate(response.result)

    async def wait_for_notifications(self, mark: int) -> None:
        """Wait until the first ``mark`` inbound notifications have been delivered, or the connection closes."""
        if anyio.get_current_task().id == self._notification_task_id:
            # A subscriber cannot wait for deliveries queued behind itself
            return
        while self._notifications_delivered < mark and not self.closed:
            await self._delivery_progress.wait()

    async def send_notification(self, method: str, params: BaseModel | dict[str, Any] | None = None) -> None:
        """
        Emits a notification, which is a one-way message that does not expect
        a response.
        """
        if method not in self.role.emits:
            raise ValueError(f"The {self.role.name} role does not emit {method}")
        await self._send_message(JSONRPCNotification(method=method, params=_dump_params(params)))

    async def _send_message(self, message: JSONRPCMessage) -> None:
        try:
            await self._write_stream.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            raise ConnectionClosedError(self._close_reason or "Connection closed")

    async def _send_response(self, message: JSONRPCResponse | JSONRPCError) -> None:
        try:
            await self._send_message(message)
        except ConnectionClosedError:
            logger.debug("Dropping response to request %s: connection closed", message.id)

    async def _send_error(self, request_id: RequestId | None, error: ErrorData) -> None:
        await self._send_response(JSONRPCError(id=request_id, error=error))

    async def _receive_loop(self) -> None:
        reason = "Connection closed by peer"
        try:
            async with self._read_stream:
                async for message in self._read_stream:
                    if isinstance(message, Exception):
                        if await self._handle_fault(message):
                            continue
                        reason = f"Fatal protocol error: {message}"
                        break
                    await self._handle_message(message.message)
        except anyio.ClosedResourceError:
            logger.debug("Read stream closed")
        except Exception as e:
            logger.exception(f"Unhandled exception in receive loop: {e}")
            reason = f"Receive loop failed: {e}"
        finally:
            self._teardown(reason)

    async def _handle_fault(self, fault: Exception) -> bool:
        """Report a decoding fault. Returns True if the connection can carry on."""
        if isinstance(fault, MessageParseError) and fault.attributable:
            logger.warning("Rejecting malformed request %r: %s", fault.request_id, fault)
            await self._send_error(fault.request_id, fault.error)
            return True

        error = fault.error if isinstance(fault, AcpError) else ErrorData(code=PARSE_ERROR, message=str(fault))
        logger.error("Closing connection after unrecoverable fault: %s", error.message)
        await self._send_error(None, error)
        return False

    async def _handle_message(self, message: JSONRPCMessage) -> None:
        if isinstance(message, JSONRPCRequest):
            self._task_group.start_soon(self._handle_request, message, name=f"acp-request-{message.method}")
        elif isinstance(message, JSONRPCNotification):
            self._notifications_received += 1
            self._notification_writer.send_nowait(message)
        else:
            self.registry.resolve(message, notification_mark=self._notifications_received)

    async def _notification_loop(self) -> None:
        self._notification_task_id = anyio.get_current_task().id
        async with self._notification_reader:
            async for notification in self._notification_reader:
                context = RequestContext(method=notification.method, connection=self)
                try:
                    await self.dispatcher.dispatch_notification(context, notification)
                finally:
                    self._notifications_delivered += 1
                    self._delivery_progress.set()
                    self._delivery_progress = anyio.Event()

    async def _handle_request(self, request: JSONRPCRequest) -> None:
        context = RequestContext(method=request.method, connection=self, request_id=request.id)
        response = await self.dispatcher.dispatch_request(context, request)
        await self._send_response(response)

    def _teardown(self, reason: str) -> None:
        if self.closed:
            return
        self._close_reason = reason
        logger.debug("Tearing down %s connection: %s", self.role.name, reason)
        self.state.close()
        self.registry.cancel_all(reason)
        self._write_stream.close()
        self._notification_writer.close()
        self._closed.set()
        self._delivery_progress.set()
        self._on_closed()

    def _on_closed(self) -> None:
        """Can be overridden by subclasses to release role-specific resources."""
