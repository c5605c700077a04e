"""Agent side of an ACP connection.

``AgentSideConnection`` serves the client's requests (``initialize``,
``session/*``) on behalf of an ``Agent`` and lets the agent call back into the
client through ``ClientProxy`` (``fs/*`` and ``terminal/*``).

A prompt turn is driven from the agent's async generator: every yielded update
becomes one ``session/update`` notification, written before the turn's
response. ``session/cancel`` flags the turn and interrupts it at its next
suspension point; from then on updates are dropped and the turn answers with
``stop_reason="cancelled"``.
"""

import logging
from typing import Any, TypeVar

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import BaseModel

from acp.agent.agent import Agent
from acp.shared.connection import DEFAULT_REQUEST_TIMEOUT, Connection
from acp.shared.dispatcher import RequestContext
from acp.shared.exceptions import AcpError
from acp.shared.message import SessionMessage
from acp.shared.roles import (
    AGENT_ROLE,
    AUTHENTICATE,
    FS_READ_TEXT_FILE,
    FS_WRITE_TEXT_FILE,
    INITIALIZE,
    SESSION_CANCEL,
    SESSION_CLOSE,
    SESSION_LOAD,
    SESSION_NEW,
    SESSION_PROMPT,
    SESSION_UPDATE,
    TERMINAL_CREATE,
    TERMINAL_KILL,
    TERMINAL_OUTPUT,
    TERMINAL_RELEASE,
    TERMINAL_WAIT_FOR_EXIT,
)
from acp.shared.session_state import Session, StreamingTurn
from acp.types import (
    PROTOCOL_VERSION,
    AuthenticateRequestParams,
    AuthenticateResult,
    CancelRequestParams,
    ClientInfo,
    CloseSessionRequestParams,
    CreateTerminalRequestParams,
    CreateTerminalResult,
    CurrentModeUpdate,
    InitializeRequestParams,
    InitializeResult,
    KillTerminalResult,
    LoadSessionRequestParams,
    LoadSessionResult,
    McpServer,
    NewSessionRequestParams,
    NewSessionResult,
    PromptRequestParams,
    PromptResponse,
    ReadTextFileRequestParams,
    ReadTextFileResult,
    ReleaseTerminalResult,
    SessionNotification,
    SessionUpdate,
    TerminalOutputResult,
    TerminalRequestParams,
    ToolCallProgress,
    ToolCallStart,
    WaitForTerminalExitResult,
    WriteTextFileRequestParams,
    WriteTextFileResult,
)

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

# How long a client waits for a terminal command by default, and the slack on top
DEFAULT_TERMINAL_WAIT_TIMEOUT = 300.0
TERMINAL_WAIT_GRACE = 5.0


class ClientProxy:
    """Requests the agent issues to the client.

    Each call is refused locally with CapabilityNotSupported when the
    negotiated capabilities do not allow it, before anything is sent.
    """

    def __init__(self, connection: "AgentSideConnection") -> None:
        self._connection = connection

    async def _request(
        self,
        method: str,
        params: BaseModel,
        result_type: type[ResultT],
        timeout: float | None = None,
    ) -> ResultT:
        self._connection.negotiator.check_method(method)
        return await self._connection.send_request(method, params, result_type, timeout=timeout)

    async def read_text_file(self, path: str, *, timeout: float | None = None) -> str:
        result = await self._request(
            FS_READ_TEXT_FILE, ReadTextFileRequestParams(path=path), ReadTextFileResult, timeout
        )
        return result.content

    async def write_text_file(self, path: str, content: str, *, timeout: float | None = None) -> bool:
        result = await self._request(
            FS_WRITE_TEXT_FILE,
            WriteTextFileRequestParams(path=path, content=content),
            WriteTextFileResult,
            timeout,
        )
        return result.success

    async def create_terminal(self, command: str, cwd: str, *, timeout: float | None = None) -> str:
        result = await self._request(
            TERMINAL_CREATE,
            CreateTerminalRequestParams(command=command, cwd=cwd),
            CreateTerminalResult,
            timeout,
        )
        return result.terminal_id

    async def terminal_output(self, terminal_id: str, *, timeout: float | None = None) -> TerminalOutputResult:
        return await self._request(
            TERMINAL_OUTPUT, TerminalRequestParams(terminal_id=terminal_id), TerminalOutputResult, timeout
        )

    async def wait_for_terminal_exit(
        self, terminal_id: str, *, timeout: float | None = None
    ) -> WaitForTerminalExitResult:
        """Wait for the command to exit.

        By default this outlasts the client's own wait, so the client's timeout
        error is what comes back rather than a local RequestTimeoutError.
        """
        if timeout is None:
            timeout = self._connection.terminal_wait_timeout + TERMINAL_WAIT_GRACE
        return await self._request(
            TERMINAL_WAIT_FOR_EXIT,
            TerminalRequestParams(terminal_id=terminal_id),
            WaitForTerminalExitResult,
            timeout,
        )

    async def kill_terminal(self, terminal_id: str, *, timeout: float | None = None) -> bool:
        result = await self._request(
            TERMINAL_KILL, TerminalRequestParams(terminal_id=terminal_id), KillTerminalResult, timeout
        )
        return result.success

    async def release_terminal(self, terminal_id: str, *, timeout: float | None = None) -> bool:
        result = await self._request(
            TERMINAL_RELEASE, TerminalRequestParams(terminal_id=terminal_id), ReleaseTerminalResult, timeout
        )
        return result.success


class PromptContext:
    """Handed to ``Agent.prompt`` for the duration of one turn."""

    def __init__(self, connection: "AgentSideConnection", session: Session, turn: StreamingTurn) -> None:
        self._connection = connection
        self.session = session
        self.turn = turn

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def client(self) -> ClientProxy:
        return self._connection.client

    @property
    def cancelled(self) -> bool:
        return self.turn.cancelled

    async def send_update(self, update: SessionUpdate) -> bool:
        """Stream one update to the client. Returns False if it was dropped because the turn was cancelled.

        Raises:
            ProtocolViolation: the update refers to a tool call this session never announced
        """
        if self.turn.cancelled:
            logger.debug("Dropping %s for cancelled turn on session %s", update.type, self.session_id)
            return False

        if isinstance(update, ToolCallStart):
            self.turn.tool_calls.announce(update.data)
        elif isinstance(update, ToolCallProgress):
            self.turn.tool_calls.update(update.data)
        elif isinstance(update, CurrentModeUpdate):
            self.session.mode = update.data.mode

        notification = SessionNotification(session_id=self.session_id, update=update)
        await self._connection.send_notification(SESSION_UPDATE, notification.to_params())
        return True


class AgentSideConnection(Connection):
    """Serves the agent role for one client."""

    def __init__(
        self,
        agent: Agent,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        *,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        terminal_wait_timeout: float = DEFAULT_TERMINAL_WAIT_TIMEOUT,
    ) -> None:
        super().__init__(AGENT_ROLE, read_stream, write_stream, request_timeout=request_timeout)
        self.terminal_wait_timeout = terminal_wait_timeout
        self.agent = agent
        self.client = ClientProxy(self)
        self.client_info: ClientInfo | None = None
        self.mcp_servers: list[McpServer] = []

        self.dispatcher.add_request_handler(INITIALIZE, self._handle_initialize)
        self.dispatcher.add_request_handler(AUTHENTICATE, self._handle_authenticate)
        self.dispatcher.add_request_handler(SESSION_NEW, self._handle_new_session)
        self.dispatcher.add_request_handler(SESSION_LOAD, self._handle_load_session)
        self.dispatcher.add_request_handler(SESSION_PROMPT, self._handle_prompt)
        self.dispatcher.add_request_handler(SESSION_CANCEL, self._handle_cancel)
        self.dispatcher.add_request_handler(SESSION_CLOSE, self._handle_close_session)
        self.dispatcher.subscribe(SESSION_CANCEL, self._on_cancel_notification)

    async def _handle_initialize(self, context: RequestContext, params: dict[str, Any] | None) -> InitializeResult:
        request = InitializeRequestParams.model_validate(params or {})
        if request.protocol_version != PROTOCOL_VERSION:
            logger.warning(
                "Client %s requested protocol version %s, speaking %s",
                request.client_info.name,
                request.protocol_version,
                PROTOCOL_VERSION,
            )

        self.state.begin_initialize()
        try:
            result = await self.agent.initialize(request)
            self.negotiator.negotiate(result.capabilities, request.capabilities)
        except BaseException:
            self.state.abort_initialize()
            raise

        self.client_info = request.client_info
        self.mcp_servers = request.mcp_servers
        self.state.mark_initialized(request.working_directory)
        logger.info("Initialized connection with %s %s", request.client_info.name, request.client_info.version)
        return result

    async def _handle_authenticate(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> AuthenticateResult:
        request = AuthenticateRequestParams.model_validate(params or {})
        return await self.agent.authenticate(request)

    async def _handle_new_session(self, context: RequestContext, params: dict[str, Any] | None) -> NewSessionResult:
        request = NewSessionRequestParams.model_validate(params or {})
        session = self.state.open_session(request.session_id, self.negotiator.effective, mode=request.mode)
        try:
            return await self.agent.new_session(request, session)
        except BaseException:
            self.state.forget_session(request.session_id)
            raise

    async def _handle_load_session(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> LoadSessionResult:
        request = LoadSessionRequestParams.model_validate(params or {})
        session = self.state.open_session(request.session_id, self.negotiator.effective)
        try:
            return await self.agent.load_session(request, session)
        except BaseException:
            self.state.forget_session(request.session_id)
            raise

    async def _handle_prompt(self, context: RequestContext, params: dict[str, Any] | None) -> PromptResponse:
        request = PromptRequestParams.model_validate(params or {})
        turn = self.state.begin_turn(request.session_id)
        try:
            prompt_context = PromptContext(self, self.state.get_session(request.session_id), turn)
            return await self._run_turn(request, prompt_context)
        finally:
            self.state.end_turn(turn)

    async def _run_turn(self, request: PromptRequestParams, context: PromptContext) -> PromptResponse:
        response = PromptResponse()
        updates = self.agent.prompt(request, context)
        with context.turn.cancel_scope:
            try:
                async for item in updates:
                    if isinstance(item, PromptResponse):
                        response = item
                        break
                    await context.send_update(item)
            finally:
                await updates.aclose()  # type: ignore[attr-defined]

        if context.turn.cancelled:
            logger.debug("Turn on session %s cancelled", request.session_id)
            return PromptResponse(stop_reason="cancelled")
        return response

    async def _cancel_session(self, session_id: str) -> None:
        if self.state.cancel_turn(session_id):
            logger.info("Cancelled turn on session %s", session_id)
            await self.agent.cancel(session_id)

    async def _handle_cancel(self, context: RequestContext, params: dict[str, Any] | None) -> None:
        request = CancelRequestParams.model_validate(params or {})
        await self._cancel_session(request.session_id)

    async def _on_cancel_notification(self, context: RequestContext, params: dict[str, Any] | None) -> None:
        request = CancelRequestParams.model_validate(params or {})
        try:
            await self._cancel_session(request.session_id)
        except AcpError as e:
            logger.debug("Ignoring cancel notification: %s", e)

    async def _handle_close_session(self, context: RequestContext, params: dict[str, Any] | None) -> None:
        request = CloseSessionRequestParams.model_validate(params or {})
        self.state.close_session(request.session_id)
        await self.agent.close_session(request.session_id)
