"""Base class for agent implementations.

Subclass ``Agent`` and override the hooks you need. ``prompt`` is an async
generator: each yielded session update is streamed to the client as a
``session/update`` notification, in order, and the turn ends when the
generator is exhausted or yields a ``PromptResponse``::

    class EchoAgent(Agent):
        async def prompt(self, params, context):
            for block in params.content:
                if isinstance(block, TextContent):
                    yield message_chunk(block.text)
            yield PromptResponse(stop_reason="end_turn")
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from acp import __version__
from acp.shared.exceptions import AcpError
from acp.shared.roles import SESSION_PROMPT
from acp.types import (
    AgentCapabilities,
    AgentInfo,
    AuthenticateRequestParams,
    AuthenticateResult,
    InitializeRequestParams,
    InitializeResult,
    LoadSessionRequestParams,
    LoadSessionResult,
    NewSessionRequestParams,
    NewSessionResult,
    PromptRequestParams,
    PromptResponse,
    SessionUpdate,
)

if TYPE_CHECKING:
    from acp.agent.connection import PromptContext
    from acp.shared.session_state import Session


class Agent:
    """Agent logic behind an AgentSideConnection. Every hook has a working default except ``prompt``."""

    name: str = "acp-agent"
    version: str = __version__
    capabilities: AgentCapabilities = AgentCapabilities()
    instructions: str | None = None

    def __init__(self, *, capabilities: AgentCapabilities | None = None) -> None:
        if capabilities is None:
            capabilities = type(self).capabilities
        # Copied so instances never share one mutable model
        self.capabilities = capabilities.model_copy(deep=True)

    async def initialize(self, params: InitializeRequestParams) -> InitializeResult:
        return InitializeResult(
            agent_info=AgentInfo(name=self.name, version=self.version),
            capabilities=self.capabilities,
            instructions=self.instructions,
        )

    async def authenticate(self, params: AuthenticateRequestParams) -> AuthenticateResult:
        return AuthenticateResult(success=True)

    async def new_session(self, params: NewSessionRequestParams, session: Session) -> NewSessionResult:
        return NewSessionResult(session_id=session.session_id)

    async def load_session(self, params: LoadSessionRequestParams, session: Session) -> LoadSessionResult:
        return LoadSessionResult(session_id=session.session_id, loaded=False)

    async def prompt(
        self, params: PromptRequestParams, context: PromptContext
    ) -> AsyncIterator[SessionUpdate | PromptResponse]:
        raise AcpError.method_not_found(SESSION_PROMPT)
        yield  # pragma: no cover

    async def cancel(self, session_id: str) -> None:
        """Called after a turn on ``session_id`` has been cancelled."""

    async def close_session(self, session_id: str) -> None:
        """Called after ``session_id`` has been closed."""
