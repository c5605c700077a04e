"""Connection engine behaviour against a raw peer over memory streams."""

from typing import Any

import anyio
import pytest
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from acp.agent import Agent, AgentSideConnection
from acp.shared.exceptions import ConnectionClosedError, MessageParseError, ProtocolViolation, RequestTimeoutError
from acp.shared.memory import create_client_agent_memory_streams
from acp.shared.message import SessionMessage
from acp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    AgentCapabilities,
    AuthenticateRequestParams,
    AuthenticateResult,
    ClientCapabilities,
    ClientInfo,
    ErrorData,
    InitializeRequestParams,
    JSONRPCError,
    JSONRPCRequest,
    JSONRPCResponse,
)

ClientReadStream = MemoryObjectReceiveStream[SessionMessage | Exception]
ClientWriteStream = MemoryObjectSendStream[SessionMessage | Exception]


class FileAgent(Agent):
    capabilities = AgentCapabilities(text_files=True)


def initialize_request(request_id: int = 0) -> SessionMessage:
    params = InitializeRequestParams(
        client_info=ClientInfo(name="raw-client", version="0"),
        capabilities=ClientCapabilities(text_files=True),
    )
    return SessionMessage(
        JSONRPCRequest(id=request_id, method="initialize", params=params.model_dump(mode="json", by_alias=True))
    )


async def receive_message(read_stream: ClientReadStream) -> Any:
    with anyio.fail_after(5):
        message = await read_stream.receive()
    assert isinstance(message, SessionMessage)
    return message.message


async def initialize(read_stream: ClientReadStream, write_stream: ClientWriteStream) -> None:
    await write_stream.send(initialize_request())
    response = await receive_message(read_stream)
    assert isinstance(response, JSONRPCResponse)


@pytest.mark.anyio
async def test_attributable_fault_is_answered_and_connection_continues():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write) as connection:
            fault = MessageParseError(ErrorData(code=INVALID_REQUEST, message="Params must be an object"), 5)
            await client_write.send(fault)

            response = await receive_message(client_read)
            assert response == JSONRPCError(id=5, error=fault.error)

            await initialize(client_read, client_write)
            assert not connection.closed


@pytest.mark.anyio
async def test_unattributable_fault_closes_the_connection():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write) as connection:
            await client_write.send(MessageParseError(ErrorData(code=PARSE_ERROR, message="Parse error")))

            response = await receive_message(client_read)
            assert isinstance(response, JSONRPCError)
            assert response.id is None
            assert response.error.code == PARSE_ERROR

            with anyio.fail_after(5):
                await connection.wait_closed()
            assert connection.closed
            assert connection.close_reason is not None
            assert connection.close_reason.startswith("Fatal protocol error")


@pytest.mark.anyio
async def test_framing_fault_closes_the_connection():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write) as connection:
            await client_write.send(ProtocolViolation("Message exceeds maximum size", code=PARSE_ERROR))

            response = await receive_message(client_read)
            assert isinstance(response, JSONRPCError)
            assert response.id is None
            with anyio.fail_after(5):
                await connection.wait_closed()


@pytest.mark.anyio
async def test_unknown_method_gets_method_not_found():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write):
            await initialize(client_read, client_write)
            await client_write.send(SessionMessage(JSONRPCRequest(id="x-1", method="session/teleport")))

            response = await receive_message(client_read)
            assert isinstance(response, JSONRPCError)
            assert response.id == "x-1"
            assert response.error.code == METHOD_NOT_FOUND


@pytest.mark.anyio
async def test_unserializable_result_is_answered_and_connection_continues():
    class LeakyAgent(FileAgent):
        async def authenticate(self, params: AuthenticateRequestParams) -> AuthenticateResult:
            return AuthenticateResult(success=True, blob=object())

    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(LeakyAgent(), agent_read, agent_write) as connection:
            await initialize(client_read, client_write)
            await client_write.send(SessionMessage(JSONRPCRequest(id=1, method="authenticate", params={"type": "x"})))

            response = await receive_message(client_read)
            assert isinstance(response, JSONRPCError)
            assert response.id == 1
            assert response.error.code == INTERNAL_ERROR

            new_session = JSONRPCRequest(id=2, method="session/new", params={"session_id": "s1"})
            await client_write.send(SessionMessage(new_session))
            response = await receive_message(client_read)
            assert response == JSONRPCResponse(id=2, result={"session_id": "s1"})
            assert not connection.closed


@pytest.mark.anyio
async def test_stale_response_is_ignored():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write) as connection:
            await client_write.send(SessionMessage(JSONRPCResponse(id=99, result={})))
            await initialize(client_read, client_write)

            assert not connection.closed


@pytest.mark.anyio
async def test_outbound_request_round_trip_and_timeout():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write, request_timeout=0.1) as connection:
            await initialize(client_read, client_write)

            async def answer_once(content: str) -> None:
                request = await receive_message(client_read)
                assert isinstance(request, JSONRPCRequest)
                assert request.method == "fs/read_text_file"
                await client_write.send(SessionMessage(JSONRPCResponse(id=request.id, result={"content": content})))

            async with anyio.create_task_group() as tg:
                tg.start_soon(answer_once, "first")
                assert await connection.client.read_text_file("/tmp/a.txt") == "first"

            # Nobody answers this one in time
            with pytest.raises(RequestTimeoutError):
                await connection.client.read_text_file("/tmp/b.txt")
            assert len(connection.registry) == 0

            # The late answer is stale and does not disturb the connection
            request = await receive_message(client_read)
            await client_write.send(SessionMessage(JSONRPCResponse(id=request.id, result={"content": "late"})))

            async with anyio.create_task_group() as tg:
                tg.start_soon(answer_once, "third")
                assert await connection.client.read_text_file("/tmp/c.txt") == "third"
            assert not connection.closed


@pytest.mark.anyio
async def test_pending_requests_fail_when_the_peer_goes_away():
    async with create_client_agent_memory_streams() as ((client_read, client_write), (agent_read, agent_write)):
        async with AgentSideConnection(FileAgent(), agent_read, agent_write, request_timeout=None) as connection:
            await initialize(client_read, client_write)
            errors: list[Exception] = []

            async def read_file(path: str) -> None:
                try:
                    await connection.client.read_text_file(path)
                except ConnectionClosedError as e:
                    errors.append(e)

            async with anyio.create_task_group() as tg:
                tg.start_soon(read_file, "/tmp/a.txt")
                tg.start_soon(read_file, "/tmp/b.txt")
                for _ in range(2):
                    request = await receive_message(client_read)
                    assert isinstance(request, JSONRPCRequest)
                await client_write.aclose()

            assert len(errors) == 2
            assert connection.closed
            assert len(connection.registry) == 0

            with pytest.raises(ConnectionClosedError):
                await connection.client.read_text_file("/tmp/c.txt")
