"""Client side of an ACP connection.

``ClientSideConnection`` drives an agent (``initialize``, ``session/*``) and
serves the agent's ``fs/*`` and ``terminal/*`` requests through a ``Client``.
Streamed ``session/update`` notifications are checked by a
``SessionUpdateTracker`` before they reach ``Client.session_update``; an update
that breaks the protocol is rejected and recorded instead of delivered.
"""

import logging
import os
import uuid
from collections.abc import Sequence
from typing import Any

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from typing_extensions import Self

from acp.client.client import Client
from acp.client.filesystem import require_absolute
from acp.shared.connection import DEFAULT_REQUEST_TIMEOUT, Connection
from acp.shared.dispatcher import RequestContext
from acp.shared.exceptions import AcpError, ConnectionClosedError, ProtocolViolation, RequestTimeoutError
from acp.shared.message import SessionMessage
from acp.shared.roles import (
    AUTHENTICATE,
    CLIENT_ROLE,
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
from acp.shared.session_state import ConnectionState
from acp.types import (
    PROTOCOL_VERSION,
    AgentCapabilities,
    AgentInfo,
    AuthenticateRequestParams,
    AuthenticateResult,
    CancelRequestParams,
    CloseSessionRequestParams,
    ContentBlock,
    CreateTerminalRequestParams,
    CreateTerminalResult,
    CurrentModeUpdate,
    EmptyResult,
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
    TerminalOutputResult,
    TerminalRequestParams,
    TextContent,
    ToolCallProgress,
    ToolCallStart,
    WaitForTerminalExitResult,
    WriteTextFileRequestParams,
    WriteTextFileResult,
)

logger = logging.getLogger(__name__)


class SessionUpdateTracker:
    """Validates streamed updates against the client's view of its sessions.

    Rejects updates for sessions this client never opened (or has closed),
    tool call updates outside a prompt turn, and ``tool_call_update`` for tool
    calls never announced in the current turn.
    """

    def __init__(self, state: ConnectionState) -> None:
        self._state = state

    def track(self, notification: SessionNotification) -> None:
        if not self._state.has_session(notification.session_id):
            raise ProtocolViolation(f"Update for unknown session {notification.session_id!r}")
        session = self._state.get_session(notification.session_id)

        update = notification.update
        if isinstance(update, ToolCallStart | ToolCallProgress):
            turn = session.turn
            if turn is None:
                raise ProtocolViolation(f"Tool call update outside a prompt turn on session {session.session_id!r}")
            if isinstance(update, ToolCallStart):
                turn.tool_calls.announce(update.data)
            else:
                turn.tool_calls.update(update.data)
        elif isinstance(update, CurrentModeUpdate):
            session.mode = update.data.mode


class ClientSideConnection(Connection):
    """Plays the client role against one agent."""

    def __init__(
        self,
        client: Client,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        *,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(CLIENT_ROLE, read_stream, write_stream, request_timeout=request_timeout)
        self.client = client
        self.tracker = SessionUpdateTracker(self.state)
        self.agent_info: AgentInfo | None = None
        self.agent_capabilities: AgentCapabilities | None = None
        self.instructions: str | None = None
        self.protocol_violations: list[ProtocolViolation] = []

        self.dispatcher.add_request_handler(FS_READ_TEXT_FILE, self._handle_read_text_file)
        self.dispatcher.add_request_handler(FS_WRITE_TEXT_FILE, self._handle_write_text_file)
        self.dispatcher.add_request_handler(TERMINAL_CREATE, self._handle_create_terminal)
        self.dispatcher.add_request_handler(TERMINAL_OUTPUT, self._handle_terminal_output)
        self.dispatcher.add_request_handler(TERMINAL_WAIT_FOR_EXIT, self._handle_wait_for_terminal_exit)
        self.dispatcher.add_request_handler(TERMINAL_KILL, self._handle_kill_terminal)
        self.dispatcher.add_request_handler(TERMINAL_RELEASE, self._handle_release_terminal)
        self.dispatcher.subscribe(SESSION_UPDATE, self._on_session_update)

    async def __aenter__(self) -> Self:
        await super().__aenter__()
        try:
            await self._exit_stack.enter_async_context(self.client)
        except BaseException as e:
            await super().__aexit__(type(e), e, e.__traceback__)
            raise
        return self

    def _require_initialized(self) -> None:
        if not self.state.initialized:
            raise AcpError.invalid_state("Connection not initialized")

    # Requests issued to the agent

    async def initialize(
        self,
        *,
        working_directory: str | None = None,
        mcp_servers: list[McpServer] | None = None,
    ) -> InitializeResult:
        """Perform the handshake and negotiate capabilities. Must be the first request."""
        params = InitializeRequestParams(
            protocol_version=PROTOCOL_VERSION,
            client_info=self.client.client_info,
            capabilities=self.client.capabilities,
            working_directory=working_directory or os.getcwd(),
            mcp_servers=mcp_servers or [],
        )
        self.state.begin_initialize()
        try:
            result = await self.send_request(INITIALIZE, params, InitializeResult)
            self.negotiator.negotiate(self.client.capabilities, result.capabilities)
        except BaseException:
            self.state.abort_initialize()
            raise

        self.agent_info = result.agent_info
        self.agent_capabilities = result.capabilities
        self.instructions = result.instructions
        self.state.mark_initialized(params.working_directory)
        logger.info("Connected to %s %s", result.agent_info.name, result.agent_info.version)
        return result

    async def authenticate(self, auth_type: str, token: str | None = None) -> AuthenticateResult:
        self._require_initialized()
        return await self.send_request(
            AUTHENTICATE, AuthenticateRequestParams(auth_type=auth_type, token=token), AuthenticateResult
        )

    async def new_session(self, session_id: str | None = None, *, mode: str | None = None) -> NewSessionResult:
        self._require_initialized()
        session_id = session_id or f"session_{uuid.uuid4().hex}"
        result = await self.send_request(
            SESSION_NEW, NewSessionRequestParams(session_id=session_id, mode=mode), NewSessionResult
        )
        self.state.open_session(result.session_id, self.negotiator.effective, mode=mode)
        return result

    async def load_session(self, session_id: str) -> LoadSessionResult:
        self._require_initialized()
        result = await self.send_request(SESSION_LOAD, LoadSessionRequestParams(session_id=session_id), LoadSessionResult)
        self.state.open_session(result.session_id, self.negotiator.effective)
        return result

    async def prompt(
        self,
        session_id: str,
        content: str | Sequence[ContentBlock],
        *,
        timeout: float | None = None,
    ) -> PromptResponse:
        """Run one prompt turn.

        Updates are delivered to the client while this waits, and all of them
        have been delivered by the time it returns. If no response arrives
        within ``timeout`` (the connection's request timeout by default) the
        turn is cancelled with a ``session/cancel`` notification and
        RequestTimeoutError is raised.
        """
        self._require_initialized()
        blocks: list[ContentBlock] = [TextContent(text=content)] if isinstance(content, str) else list(content)
        self.negotiator.check_content(blocks)

        turn = self.state.begin_turn(session_id)
        try:
            return await self.send_request(
                SESSION_PROMPT,
                PromptRequestParams(session_id=session_id, content=blocks),
                PromptResponse,
                timeout=timeout,
                after_notifications=True,
            )
        except RequestTimeoutError:
            logger.warning("Prompt on session %s timed out, cancelling the turn", session_id)
            try:
                await self.send_notification(SESSION_CANCEL, CancelRequestParams(session_id=session_id))
            except ConnectionClosedError:
                pass
            raise
        finally:
            self.state.end_turn(turn)

    async def cancel(self, session_id: str, *, notify: bool = False) -> None:
        """Cancel the session's active turn, if any.

        By default this is a request and returns once the agent has acknowledged
        it; no further updates for the turn follow. With ``notify=True`` it is
        sent as a notification and returns immediately.
        """
        self._require_initialized()
        self.state.get_session(session_id)
        params = CancelRequestParams(session_id=session_id)
        if notify:
            await self.send_notification(SESSION_CANCEL, params)
        else:
            await self.send_request(SESSION_CANCEL, params, EmptyResult)

    async def close_session(self, session_id: str) -> None:
        self._require_initialized()
        await self.send_request(SESSION_CLOSE, CloseSessionRequestParams(session_id=session_id), EmptyResult)
        if self.state.has_session(session_id):
            self.state.close_session(session_id)

    # Requests served for the agent

    async def _handle_read_text_file(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> ReadTextFileResult:
        request = ReadTextFileRequestParams.model_validate(params or {})
        require_absolute(request.path)
        return ReadTextFileResult(content=await self.client.read_text_file(request.path))

    async def _handle_write_text_file(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> WriteTextFileResult:
        request = WriteTextFileRequestParams.model_validate(params or {})
        require_absolute(request.path)
        await self.client.write_text_file(request.path, request.content)
        return WriteTextFileResult(success=True)

    async def _handle_create_terminal(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> CreateTerminalResult:
        request = CreateTerminalRequestParams.model_validate(params or {})
        require_absolute(request.cwd, "Working directory")
        return CreateTerminalResult(terminal_id=await self.client.create_terminal(request.command, request.cwd))

    async def _handle_terminal_output(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> TerminalOutputResult:
        request = TerminalRequestParams.model_validate(params or {})
        return await self.client.terminal_output(request.terminal_id)

    async def _handle_wait_for_terminal_exit(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> WaitForTerminalExitResult:
        request = TerminalRequestParams.model_validate(params or {})
        return await self.client.wait_for_terminal_exit(request.terminal_id)

    async def _handle_kill_terminal(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> KillTerminalResult:
        request = TerminalRequestParams.model_validate(params or {})
        await self.client.kill_terminal(request.terminal_id)
        return KillTerminalResult(success=True)

    async def _handle_release_terminal(
        self, context: RequestContext, params: dict[str, Any] | None
    ) -> ReleaseTerminalResult:
        request = TerminalRequestParams.model_validate(params or {})
        await self.client.release_terminal(request.terminal_id)
        return ReleaseTerminalResult(success=True)

    # Notifications

    async def _on_session_update(self, context: RequestContext, params: dict[str, Any] | None) -> None:
        notification = SessionNotification.from_params(params)
        try:
            self.tracker.track(notification)
        except ProtocolViolation as e:
            logger.warning("Rejected session update: %s", e)
            self.protocol_violations.append(e)
            return
        await self.client.session_update(notification)
