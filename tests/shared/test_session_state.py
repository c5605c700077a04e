import pytest

from acp.shared.exceptions import AcpError, ProtocolViolation
from acp.shared.session_state import ConnectionPhase, ConnectionState, SessionPhase, ToolCallLog
from acp.types import INVALID_PARAMS, INVALID_STATE, RESOURCE_NOT_FOUND, CapabilitySet, ToolCall, ToolCallUpdate


@pytest.fixture
def state() -> ConnectionState:
    state = ConnectionState()
    state.begin_initialize()
    state.mark_initialized("/work")
    return state


def test_only_initialize_is_accepted_before_initialization():
    state = ConnectionState()

    state.check_request("initialize")
    with pytest.raises(AcpError) as exc_info:
        state.check_request("session/new")
    assert exc_info.value.code == INVALID_STATE


def test_initialize_is_accepted_once():
    state = ConnectionState()
    state.begin_initialize()

    assert state.phase is ConnectionPhase.INITIALIZING
    with pytest.raises(AcpError):
        state.check_request("initialize")
    with pytest.raises(AcpError):
        state.begin_initialize()

    state.mark_initialized()
    assert state.initialized
    with pytest.raises(AcpError) as exc_info:
        state.check_request("initialize")
    assert exc_info.value.code == INVALID_STATE
    state.check_request("session/prompt")


def test_failed_initialize_can_be_retried():
    state = ConnectionState()
    state.begin_initialize()
    state.abort_initialize()

    assert state.phase is ConnectionPhase.CREATED
    state.begin_initialize()


def test_sessions_cannot_open_before_initialization():
    with pytest.raises(AcpError):
        ConnectionState().open_session("s1", CapabilitySet())


def test_open_session_inherits_working_directory(state: ConnectionState):
    session = state.open_session("s1", CapabilitySet(text_files=True), mode="ask")

    assert session.working_directory == "/work"
    assert session.mode == "ask"
    assert session.phase is SessionPhase.ACTIVE
    assert session.capabilities.text_files
    assert state.has_session("s1")


def test_duplicate_session_id_is_refused(state: ConnectionState):
    state.open_session("s1", CapabilitySet())

    with pytest.raises(AcpError) as exc_info:
        state.open_session("s1", CapabilitySet())

    assert exc_info.value.code == INVALID_STATE


def test_unknown_session_is_not_found(state: ConnectionState):
    with pytest.raises(AcpError) as exc_info:
        state.get_session("missing")

    assert exc_info.value.code == RESOURCE_NOT_FOUND


@pytest.mark.anyio
async def test_one_turn_at_a_time(state: ConnectionState):
    state.open_session("s1", CapabilitySet())
    turn = state.begin_turn("s1")

    assert state.get_session("s1").processing
    with pytest.raises(AcpError) as exc_info:
        state.begin_turn("s1")
    assert exc_info.value.code == INVALID_STATE

    state.end_turn(turn)
    assert state.get_session("s1").phase is SessionPhase.ACTIVE
    state.end_turn(state.begin_turn("s1"))


@pytest.mark.anyio
async def test_turns_on_different_sessions_are_independent(state: ConnectionState):
    state.open_session("s1", CapabilitySet())
    state.open_session("s2", CapabilitySet())

    state.begin_turn("s1")
    state.begin_turn("s2")

    assert state.get_session("s1").processing
    assert state.get_session("s2").processing


@pytest.mark.anyio
async def test_cancel_turn(state: ConnectionState):
    state.open_session("s1", CapabilitySet())

    assert not state.cancel_turn("s1")

    turn = state.begin_turn("s1")
    assert state.cancel_turn("s1")
    assert turn.cancelled
    assert turn.cancel_scope.cancel_called
    assert not state.cancel_turn("s1")

    state.end_turn(turn)
    assert not state.cancel_turn("s1")


@pytest.mark.anyio
async def test_closed_session_ids_are_retired(state: ConnectionState):
    state.open_session("s1", CapabilitySet())
    turn = state.begin_turn("s1")

    session = state.close_session("s1")

    assert session.phase is SessionPhase.CLOSED
    assert turn.cancelled
    assert not state.has_session("s1")
    with pytest.raises(AcpError) as exc_info:
        state.open_session("s1", CapabilitySet())
    assert exc_info.value.code == INVALID_STATE


def test_forgotten_session_id_can_be_reused(state: ConnectionState):
    state.open_session("s1", CapabilitySet())
    state.forget_session("s1")

    state.open_session("s1", CapabilitySet())


def test_close_connection(state: ConnectionState):
    state.open_session("s1", CapabilitySet())
    state.open_session("s2", CapabilitySet())

    state.close()

    assert state.closed
    assert state.sessions == {}
    with pytest.raises(AcpError) as exc_info:
        state.check_request("session/new")
    assert exc_info.value.code == INVALID_STATE


def test_tool_call_updates_need_an_announcement():
    log = ToolCallLog()

    with pytest.raises(ProtocolViolation) as exc_info:
        log.update(ToolCallUpdate(id="tool_1", status="completed"))
    assert exc_info.value.code == INVALID_PARAMS

    log.announce(ToolCall(id="tool_1", name="read_file"))
    record = log.update(ToolCallUpdate(id="tool_1", status="completed"))

    assert record.status == "completed"
    assert "tool_1" in log
    assert [r.id for r in log] == ["tool_1"]


def test_tool_calls_are_announced_once():
    log = ToolCallLog()
    log.announce(ToolCall(id="tool_1", name="read_file"))

    with pytest.raises(ProtocolViolation):
        log.announce(ToolCall(id="tool_1", name="read_file"))
