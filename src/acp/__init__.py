"""An implementation of the Agent Client Protocol (ACP) in Python.

ACP connects an editor (the client) to a coding agent running as a
subprocess. Both sides exchange newline-delimited JSON-RPC 2.0 over the
agent's stdin/stdout.

## Example - write an agent

```python
import anyio
from acp import Agent, PromptResponse, message_chunk, run_agent


class EchoAgent(Agent):
    async def prompt(self, params, context):
        yield message_chunk("you said: " + params.content[0].text)
        yield PromptResponse(stop_reason="end_turn")


anyio.run(run_agent, EchoAgent())
```

## Example - drive an agent from a client

```python
from acp import AgentProcessParameters, Client, ClientSideConnection, stdio_client

params = AgentProcessParameters(command="python", args=["agent.py"])

async with stdio_client(params) as (read, write):
    async with ClientSideConnection(Client(), read, write) as connection:
        await connection.initialize()
        session = await connection.new_session()
        await connection.prompt(session.session_id, "hello")
```
"""

__version__ = "0.1.0"

from .agent import Agent, AgentSideConnection, ClientProxy, PromptContext, run_agent, stdio_agent
from .client import AgentProcessParameters, Client, ClientSideConnection, SessionUpdateTracker, stdio_client
from .settings import AcpSettings
from .shared.exceptions import (
    AcpError,
    ConnectionClosedError,
    MessageParseError,
    ProtocolViolation,
    RequestTimeoutError,
)
from .types import (
    PROTOCOL_VERSION,
    AgentCapabilities,
    ClientCapabilities,
    ContentBlock,
    ErrorData,
    PromptRequestParams,
    PromptResponse,
    SessionUpdate,
    message_chunk,
    thought_chunk,
)

__all__ = [
    "AcpError",
    "AcpSettings",
    "Agent",
    "AgentCapabilities",
    "AgentProcessParameters",
    "AgentSideConnection",
    "Client",
    "ClientCapabilities",
    "ClientProxy",
    "ClientSideConnection",
    "ConnectionClosedError",
    "ContentBlock",
    "ErrorData",
    "MessageParseError",
    "PROTOCOL_VERSION",
    "PromptContext",
    "PromptRequestParams",
    "PromptResponse",
    "ProtocolViolation",
    "RequestTimeoutError",
    "SessionUpdate",
    "SessionUpdateTracker",
    "message_chunk",
    "run_agent",
    "stdio_agent",
    "stdio_client",
    "thought_chunk",
]
