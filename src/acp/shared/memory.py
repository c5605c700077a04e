"""
In-memory transports for connecting an agent and a client in one process.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from acp.shared.message import SessionMessage

if TYPE_CHECKING:
    from acp.agent.agent import Agent
    from acp.agent.connection import AgentSideConnection
    from acp.client.client import Client
    from acp.client.connection import ClientSideConnection

MessageStream = tuple[MemoryObjectReceiveStream[SessionMessage | Exception], MemoryObjectSendStream[SessionMessage]]


@asynccontextmanager
async def create_client_agent_memory_streams() -> AsyncGenerator[tuple[MessageStream, MessageStream], None]:
    """
    Creates a pair of bidirectional memory streams for client-agent communication.

    Returns:
        A tuple of (client_streams, agent_streams) where each is a tuple of
        (read_stream, write_stream)
    """
    # Create streams for both directions
    agent_to_client_send, agent_to_client_receive = anyio.create_memory_object_stream[SessionMessage | Exception](1)
    client_to_agent_send, client_to_agent_receive = anyio.create_memory_object_stream[SessionMessage | Exception](1)

    client_streams = (agent_to_client_receive, client_to_agent_send)
    agent_streams = (client_to_agent_receive, agent_to_client_send)

    async with (
        agent_to_client_receive,
        client_to_agent_send,
        client_to_agent_receive,
        agent_to_client_send,
    ):
        yield client_streams, agent_streams  # type: ignore[misc]


@asynccontextmanager
async def create_connected_agent_and_client(
    agent: Agent,
    client: Client,
    *,
    request_timeout: float | None = 5.0,
) -> AsyncGenerator[tuple[AgentSideConnection, ClientSideConnection], None]:
    """Run an agent and a client against each other over in-memory streams."""
    from acp.agent.connection import AgentSideConnection
    from acp.client.connection import ClientSideConnection

    async with create_client_agent_memory_streams() as (client_streams, agent_streams):
        agent_read, agent_write = agent_streams
        client_read, client_write = client_streams
        async with (
            AgentSideConnection(agent, agent_read, agent_write, request_timeout=request_timeout) as agent_connection,
            ClientSideConnection(client, client_read, client_write, request_timeout=request_timeout) as client_connection,
        ):
            yield agent_connection, client_connection
