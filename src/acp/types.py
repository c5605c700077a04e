"""Wire types for the Agent Client Protocol.

Everything exchanged between a client (editor) and an agent is described here:
the JSON-RPC envelopes, the error codes, the initialize handshake payloads,
session management, prompt content, streamed session updates and the
filesystem/terminal callbacks the agent can issue back to the client.

Field names follow the wire format, which uses snake_case throughout.
"""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

PROTOCOL_VERSION: Final[str] = "2025.1"
JSONRPC_VERSION: Final[str] = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# ACP error codes
RESOURCE_NOT_FOUND: Final[int] = -32001
PERMISSION_DENIED: Final[int] = -32002
INVALID_STATE: Final[int] = -32003
CAPABILITY_NOT_SUPPORTED: Final[int] = -32004

RequestId = Annotated[int, Field(strict=True)] | str


class AcpModel(BaseModel):
    """Base class for all ACP payload types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# JSON-RPC envelopes
# ---------------------------------------------------------------------------


class JSONRPCRequest(BaseModel):
    """A request that expects a response."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(BaseModel):
    """A notification which does not expect a response."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    """The error type that occurred."""

    message: str
    """A short description of the error."""

    data: Any | None = None
    """Additional information about the error, defined by the sender."""


class JSONRPCResponse(BaseModel):
    """A successful (non-error) response to a request."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    result: Any = None


class JSONRPCError(BaseModel):
    """A response to a request that indicates an error occurred."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId | None = None
    error: ErrorData


JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse | JSONRPCError


# ---------------------------------------------------------------------------
# Capabilities and handshake
# ---------------------------------------------------------------------------


class Implementation(AcpModel):
    """Name and version of one side of the connection."""

    name: str
    version: str


class ClientInfo(Implementation):
    """Information about the client (editor/IDE)."""


class AgentInfo(Implementation):
    """Information about the agent."""


class CapabilitySet(AcpModel):
    """Optional protocol features one side advertises during initialize."""

    text_files: bool = False
    """Can read and write text files."""

    terminal: bool = False
    """Can create and manage terminals."""

    embedded_context: bool = False
    """Supports embedded resources in prompts."""

    audio: bool = False
    """Supports audio content."""

    image: bool = False
    """Supports image content."""

    experimental: dict[str, Any] = Field(default_factory=dict)
    """Experimental, non-standard capabilities."""


class ClientCapabilities(CapabilitySet):
    """Capabilities a client advertises."""


class ToolInfo(AcpModel):
    """Information about a tool available to the agent."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class AgentCapabilities(CapabilitySet):
    """Capabilities an agent advertises."""

    streaming: bool = False
    supported_modes: list[str] = Field(default_factory=list)
    tools: list[ToolInfo] = Field(default_factory=list)


class McpServer(AcpModel):
    """An MCP server the client makes available to the agent. Carried opaquely."""

    name: str
    url: str
    credentials: dict[str, str] = Field(default_factory=dict)


class InitializeRequestParams(AcpModel):
    """Parameters for the initialize request."""

    protocol_version: str = PROTOCOL_VERSION
    client_info: ClientInfo
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    working_directory: str = "/"
    mcp_servers: list[McpServer] = Field(default_factory=list)


class InitializeResult(AcpModel):
    """The agent's response to an initialize request."""

    protocol_version: str = PROTOCOL_VERSION
    agent_info: AgentInfo
    capabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    instructions: str | None = None


class EmptyResult(AcpModel):
    """A response that indicates success but carries no data."""


class AuthenticateRequestParams(AcpModel):
    """Parameters for the authenticate request."""

    auth_type: str = Field(alias="type")
    token: str | None = None


class AuthenticateResult(AcpModel):
    success: bool


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class NewSessionRequestParams(AcpModel):
    """Parameters for creating a new session. The id is chosen by the caller."""

    session_id: str
    mode: str | None = None


class NewSessionResult(AcpModel):
    session_id: str


class LoadSessionRequestParams(AcpModel):
    session_id: str


class LoadSessionResult(AcpModel):
    session_id: str
    loaded: bool = False
    """Whether the agent found and restored prior state for this session."""


class CancelRequestParams(AcpModel):
    session_id: str


class CloseSessionRequestParams(AcpModel):
    session_id: str


# ---------------------------------------------------------------------------
# Prompt content
# ---------------------------------------------------------------------------


class TextContent(AcpModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(AcpModel):
    type: Literal["image"] = "image"
    format: str
    """Image format (png, jpeg, ...)."""
    data: str
    """Base64-encoded image data."""


class AudioContent(AcpModel):
    type: Literal["audio"] = "audio"
    format: str
    data: str


class EmbeddedResource(AcpModel):
    """A resource whose content is embedded in the prompt."""

    type: Literal["resource"] = "resource"
    uri: str
    mime_type: str
    content: str


class ResourceLink(AcpModel):
    """A reference to a resource, without its content."""

    type: Literal["resource_link"] = "resource_link"
    uri: str
    mime_type: str


ContentBlock = Annotated[
    TextContent | ImageContent | AudioContent | EmbeddedResource | ResourceLink,
    Field(discriminator="type"),
]


StopReason = Literal["end_turn", "max_tokens", "refusal", "cancelled"]


class PromptRequestParams(AcpModel):
    session_id: str
    content: list[ContentBlock]


class PromptResponse(AcpModel):
    """Terminal result of a prompt turn."""

    stop_reason: StopReason = "end_turn"


# ---------------------------------------------------------------------------
# Session updates (agent -> client, session/update notification)
# ---------------------------------------------------------------------------


ToolCallStatus = Literal["pending", "in_progress", "completed", "failed"]
PlanStepStatus = Literal["pending", "in_progress", "completed", "skipped", "failed"]


class TextChunk(AcpModel):
    text: str


class ToolCall(AcpModel):
    """A tool call made by the agent."""

    id: str
    name: str
    arguments: Any = None
    status: ToolCallStatus = "pending"


class ToolCallUpdate(AcpModel):
    """A status change for a previously announced tool call."""

    id: str
    status: ToolCallStatus
    result: Any | None = None
    error: str | None = None


class PlanStep(AcpModel):
    id: int
    description: str
    status: PlanStepStatus = "pending"


class Plan(AcpModel):
    steps: list[PlanStep]


class ModeChange(AcpModel):
    mode: str


class AgentMessageChunk(AcpModel):
    type: Literal["agent_message_chunk"] = "agent_message_chunk"
    data: TextChunk


class AgentThoughtChunk(AcpModel):
    type: Literal["agent_thought_chunk"] = "agent_thought_chunk"
    data: TextChunk


class ToolCallStart(AcpModel):
    type: Literal["tool_call"] = "tool_call"
    data: ToolCall


class ToolCallProgress(AcpModel):
    type: Literal["tool_call_update"] = "tool_call_update"
    data: ToolCallUpdate


class AgentPlan(AcpModel):
    type: Literal["plan"] = "plan"
    data: Plan


class CurrentModeUpdate(AcpModel):
    type: Literal["mode_change"] = "mode_change"
    data: ModeChange


class TurnDone(AcpModel):
    type: Literal["done"] = "done"


SessionUpdate = Annotated[
    AgentMessageChunk | AgentThoughtChunk | ToolCallStart | ToolCallProgress | AgentPlan | CurrentModeUpdate | TurnDone,
    Field(discriminator="type"),
]

session_update_adapter: TypeAdapter[SessionUpdate] = TypeAdapter(SessionUpdate)


class SessionNotification(AcpModel):
    """Parameters of a session/update notification.

    On the wire the update's ``type`` and ``data`` sit next to ``session_id``.
    """

    session_id: str
    update: SessionUpdate

    def to_params(self) -> dict[str, Any]:
        params = self.update.model_dump(mode="json", by_alias=True, exclude_none=True)
        params["session_id"] = self.session_id
        return params

    @classmethod
    def from_params(cls, params: dict[str, Any] | None) -> "SessionNotification":
        params = dict(params or {})
        session_id = params.pop("session_id", None)
        return cls.model_validate({"session_id": session_id, "update": params})


def message_chunk(text: str) -> AgentMessageChunk:
    return AgentMessageChunk(data=TextChunk(text=text))


def thought_chunk(text: str) -> AgentThoughtChunk:
    return AgentThoughtChunk(data=TextChunk(text=text))


# ---------------------------------------------------------------------------
# Filesystem (agent -> client)
# ---------------------------------------------------------------------------


class ReadTextFileRequestParams(AcpModel):
    path: str
    """Absolute path to the file."""


class ReadTextFileResult(AcpModel):
    content: str


class WriteTextFileRequestParams(AcpModel):
    path: str
    content: str


class WriteTextFileResult(AcpModel):
    success: bool = True


# ---------------------------------------------------------------------------
# Terminals (agent -> client)
# ---------------------------------------------------------------------------


class CreateTerminalRequestParams(AcpModel):
    cwd: str
    """Absolute working directory for the command."""
    command: str


class CreateTerminalResult(AcpModel):
    terminal_id: str


class TerminalRequestParams(AcpModel):
    """Parameters shared by every request addressing an existing terminal."""

    terminal_id: str


class TerminalOutputResult(AcpModel):
    output: str
    exited: bool
    exit_code: int | None = None


class WaitForTerminalExitResult(AcpModel):
    exit_code: int
    output: str


class KillTerminalResult(AcpModel):
    success: bool = True


class ReleaseTerminalResult(AcpModel):
    success: bool = True
