import anyio
import pytest

from acp.shared.exceptions import ConnectionClosedError, RequestTimeoutError
from acp.shared.registry import CorrelationRegistry, normalize_request_id
from acp.types import INTERNAL_ERROR, ErrorData, JSONRPCError, JSONRPCResponse


def test_ids_are_allocated_in_order():
    registry = CorrelationRegistry()

    ids = [registry.register("fs/read_text_file").request_id for _ in range(3)]

    assert ids == [0, 1, 2]
    assert len(registry) == 3
    assert 1 in registry


def test_normalize_request_id():
    assert normalize_request_id("12") == 12
    assert normalize_request_id(12) == 12
    assert normalize_request_id("req-1") == "req-1"
    assert normalize_request_id(None) is None


@pytest.mark.anyio
async def test_concurrent_requests_receive_their_own_responses():
    registry = CorrelationRegistry()
    pending = [registry.register("terminal/output") for _ in range(10)]
    results: dict[int, object] = {}

    async def waiter(index: int) -> None:
        response = await registry.wait(pending[index], timeout=5)
        assert isinstance(response, JSONRPCResponse)
        results[index] = response.result

    async with anyio.create_task_group() as tg:
        for index in range(10):
            tg.start_soon(waiter, index)
        await anyio.sleep(0)
        # Answer out of order
        for entry in reversed(pending):
            assert registry.resolve(JSONRPCResponse(id=entry.request_id, result={"n": entry.request_id}))

    assert results == {index: {"n": pending[index].request_id} for index in range(10)}
    assert len(registry) == 0


@pytest.mark.anyio
async def test_error_response_is_returned_to_the_waiter():
    registry = CorrelationRegistry()
    pending = registry.register("fs/read_text_file")

    registry.resolve(JSONRPCError(id=pending.request_id, error=ErrorData(code=-32001, message="missing")))
    response = await registry.wait(pending, timeout=1)

    assert isinstance(response, JSONRPCError)
    assert response.error.code == -32001


@pytest.mark.anyio
async def test_numeric_string_id_matches():
    registry = CorrelationRegistry()
    pending = registry.register("terminal/create")

    assert registry.resolve(JSONRPCResponse(id=str(pending.request_id), result={"terminal_id": "t"}))
    response = await registry.wait(pending, timeout=1)

    assert isinstance(response, JSONRPCResponse)


def test_unknown_response_is_stale():
    registry = CorrelationRegistry()

    assert not registry.resolve(JSONRPCResponse(id=42, result={}))


@pytest.mark.anyio
async def test_timeout_removes_entry_and_late_response_is_stale():
    registry = CorrelationRegistry()
    pending = registry.register("terminal/wait_for_exit")

    with pytest.raises(RequestTimeoutError) as exc_info:
        await registry.wait(pending, timeout=0.01)

    assert exc_info.value.code == INTERNAL_ERROR
    assert exc_info.value.method == "terminal/wait_for_exit"
    assert len(registry) == 0
    assert not registry.resolve(JSONRPCResponse(id=pending.request_id, result={}))


@pytest.mark.anyio
async def test_cancelled_waiter_removes_entry():
    registry = CorrelationRegistry()
    pending = registry.register("fs/read_text_file")

    with anyio.move_on_after(0.01):
        await registry.wait(pending)

    assert pending.request_id not in registry


@pytest.mark.anyio
async def test_cancel_all_fails_every_pending_request():
    registry = CorrelationRegistry()
    first = registry.register("fs/read_text_file")
    second = registry.register("terminal/create")

    registry.cancel_all("peer went away")

    assert len(registry) == 0
    for pending in (first, second):
        with pytest.raises(ConnectionClosedError, match="peer went away"):
            await registry.wait(pending, timeout=1)


@pytest.mark.anyio
async def test_fail_delivers_exception():
    registry = CorrelationRegistry()
    pending = registry.register("fs/write_text_file")

    assert registry.fail(pending.request_id, ConnectionClosedError("gone"))
    with pytest.raises(ConnectionClosedError):
        await registry.wait(pending, timeout=1)
    assert not registry.fail(pending.request_id, ConnectionClosedError("gone"))


@pytest.mark.anyio
async def test_resolve_records_how_many_notifications_preceded_the_response():
    registry = CorrelationRegistry()
    first = registry.register("session/prompt")
    second = registry.register("session/prompt")

    assert registry.resolve(JSONRPCResponse(id=first.request_id, result={}), notification_mark=4)
    assert registry.resolve(JSONRPCResponse(id=second.request_id, result={}))

    await registry.wait(first, timeout=1)
    assert first.notification_mark == 4
    assert second.notification_mark == 0
