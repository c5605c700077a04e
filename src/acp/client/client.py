"""Base class for client (editor) implementations.

A ``Client`` answers the agent's ``fs/*`` and ``terminal/*`` requests and
receives the agent's streamed session updates. The defaults serve files from
the local disk and run commands with ``sh -c``; override any method to change
that. Streamed updates are delivered to ``session_update``, which by default
fans out to one ``on_*`` hook per update kind.
"""

from types import TracebackType

from typing_extensions import Self

from acp import __version__
from acp.client.filesystem import LocalFileSystem
from acp.client.terminal import TerminalManager
from acp.types import (
    AgentMessageChunk,
    AgentPlan,
    AgentThoughtChunk,
    ClientCapabilities,
    ClientInfo,
    CurrentModeUpdate,
    Plan,
    SessionNotification,
    TerminalOutputResult,
    ToolCall,
    ToolCallProgress,
    ToolCallStart,
    ToolCallUpdate,
    TurnDone,
    WaitForTerminalExitResult,
)


class Client:
    name: str = "acp-client"
    version: str = __version__

    def __init__(
        self,
        *,
        capabilities: ClientCapabilities | None = None,
        filesystem: LocalFileSystem | None = None,
        terminals: TerminalManager | None = None,
    ) -> None:
        self.capabilities = capabilities or ClientCapabilities(text_files=True, terminal=True)
        self.filesystem = filesystem or LocalFileSystem()
        self.terminals = terminals or TerminalManager()

    @property
    def client_info(self) -> ClientInfo:
        return ClientInfo(name=self.name, version=self.version)

    async def __aenter__(self) -> Self:
        await self.terminals.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return await self.terminals.__aexit__(exc_type, exc_val, exc_tb)

    # fs/*

    async def read_text_file(self, path: str) -> str:
        return await self.filesystem.read_text_file(path)

    async def write_text_file(self, path: str, content: str) -> None:
        await self.filesystem.write_text_file(path, content)

    # terminal/*

    async def create_terminal(self, command: str, cwd: str) -> str:
        return await self.terminals.create(command, cwd)

    async def terminal_output(self, terminal_id: str) -> TerminalOutputResult:
        return self.terminals.output(terminal_id)

    async def wait_for_terminal_exit(self, terminal_id: str) -> WaitForTerminalExitResult:
        return await self.terminals.wait_for_exit(terminal_id)

    async def kill_terminal(self, terminal_id: str) -> None:
        await self.terminals.kill(terminal_id)

    async def release_terminal(self, terminal_id: str) -> None:
        await self.terminals.release(terminal_id)

    # session/update

    async def session_update(self, notification: SessionNotification) -> None:
        session_id = notification.session_id
        update = notification.update
        if isinstance(update, AgentMessageChunk):
            await self.on_agent_message(session_id, update.data.text)
        elif isinstance(update, AgentThoughtChunk):
            await self.on_agent_thought(session_id, update.data.text)
        elif isinstance(update, ToolCallStart):
            await self.on_tool_call(session_id, update.data)
        elif isinstance(update, ToolCallProgress):
            await self.on_tool_call_update(session_id, update.data)
        elif isinstance(update, AgentPlan):
            await self.on_plan(session_id, update.data)
        elif isinstance(update, CurrentModeUpdate):
            await self.on_mode_change(session_id, update.data.mode)
        elif isinstance(update, TurnDone):
            await self.on_done(session_id)

    async def on_agent_message(self, session_id: str, text: str) -> None: ...

    async def on_agent_thought(self, session_id: str, text: str) -> None: ...

    async def on_tool_call(self, session_id: str, tool_call: ToolCall) -> None: ...

    async def on_tool_call_update(self, session_id: str, update: ToolCallUpdate) -> None: ...

    async def on_plan(self, session_id: str, plan: Plan) -> None: ...

    async def on_mode_change(self, session_id: str, mode: str) -> None: ...

    async def on_done(self, session_id: str) -> None: ...
