"""Routing of inbound messages.

Requests go to the handler registered for their method, behind the lifecycle
and capability gates. Every request produces exactly one response envelope:
the handler's return value, or the error it raised. Notifications fan out to
every subscriber registered for the method, each isolated from the others.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ValidationError
from pydantic_core import to_jsonable_python

from acp.shared.capabilities import CapabilityNegotiator
from acp.shared.exceptions import AcpError
from acp.shared.roles import SESSION_PROMPT, Role
from acp.shared.session_state import ConnectionState
from acp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    ErrorData,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
)

if TYPE_CHECKING:
    from acp.shared.connection import Connection

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """What a handler knows about the message it is handling."""

    method: str
    connection: Connection
    request_id: RequestId | None = None
    meta: dict[str, Any] = field(default_factory=dict)


class RequestHandler(Protocol):
    async def __call__(self, context: RequestContext, params: dict[str, Any] | None) -> Any: ...


NotificationSubscriber = Callable[[RequestContext, dict[str, Any] | None], Awaitable[None]]


def dump_result(result: Any) -> Any:
    """Turn a handler's return value into JSON-safe data. Raises if that is not possible."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
    if result is None:
        return {}
    return to_jsonable_python(result)


class Dispatcher:
    """Method registry plus dispatch. No I/O of its own."""

    def __init__(self, role: Role, state: ConnectionState, negotiator: CapabilityNegotiator) -> None:
        self.role = role
        self._state = state
        self._negotiator = negotiator
        self._request_handlers: dict[str, RequestHandler] = {}
        self._subscribers: dict[str, list[NotificationSubscriber]] = {}

    def add_request_handler(self, method: str, handler: RequestHandler) -> None:
        if method not in self.role.serves:
            raise ValueError(f"The {self.role.name} role does not serve {method}")
        self._request_handlers[method] = handler

    def subscribe(self, method: str, subscriber: NotificationSubscriber) -> None:
        if method not in self.role.subscribes:
            raise ValueError(f"The {self.role.name} role does not subscribe to {method}")
        self._subscribers.setdefault(method, []).append(subscriber)

    def handles(self, method: str) -> bool:
        return method in self._request_handlers

    def check_gates(self, method: str, params: dict[str, Any] | None) -> None:
        """Lifecycle gate, then capability gate. Raises AcpError when either refuses."""
        self._state.check_request(method)
        self._negotiator.check_method(method)
        if method == SESSION_PROMPT and params is not None and isinstance(params.get("content"), list):
            self._negotiator.check_content(
                block for block in params["content"] if isinstance(block, dict)
            )

    async def dispatch_request(
        self, context: RequestContext, request: JSONRPCRequest
    ) -> JSONRPCResponse | JSONRPCError:
        handler = self._request_handlers.get(request.method)
        if handler is None:
            return JSONRPCError(id=request.id, error=AcpError.method_not_found(request.method).error)

        try:
            self.check_gates(request.method, request.params)
            result = dump_result(await handler(context, request.params))
        except AcpError as e:
            logger.debug("Request %s (%s) failed: %s", request.id, request.method, e)
            return JSONRPCError(id=request.id, error=e.error)
        except ValidationError as e:
            logger.debug("Invalid params for %s: %s", request.method, e)
            return JSONRPCError(
                id=request.id,
                error=ErrorData(
                    code=INVALID_PARAMS,
                    message=f"Invalid params for {request.method}",
                    data=e.errors(include_url=False, include_context=False, include_input=False),
                ),
            )
        except Exception as e:
            logger.exception("Handler error for %s", request.method)
            return JSONRPCError(id=request.id, error=ErrorData(code=INTERNAL_ERROR, message=str(e) or "Internal error"))

        return JSONRPCResponse(id=request.id, result=result)

    async def dispatch_notification(self, context: RequestContext, notification: JSONRPCNotification) -> None:
        subscribers = self._subscribers.get(notification.method)
        if not subscribers:
            logger.debug("No subscriber for notification %s", notification.method)
            return
        if not self._state.initialized:
            logger.warning("Dropping %s received before initialization", notification.method)
            return

        for subscriber in list(subscribers):
            try:
                await subscriber(context, notification.params)
            except Exception:
                logger.exception("Notification subscriber error for %s", notification.method)
