"""Connection and session lifecycle.

The connection moves ``created -> initializing -> initialized -> closed``; no
method other than ``initialize`` is accepted before it is initialized. Each
session moves between ``active`` and ``processing`` (one prompt turn at a
time) until it is closed. Closed session ids are never reused on the same
connection.

All mutations are synchronous so that the checks and the transitions they
guard happen without yielding to another task.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

import anyio

from acp.shared.exceptions import AcpError, ProtocolViolation
from acp.types import INVALID_PARAMS, CapabilitySet, ToolCall, ToolCallStatus, ToolCallUpdate

logger = logging.getLogger(__name__)


class ConnectionPhase(str, Enum):
    CREATED = "created"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class SessionPhase(str, Enum):
    ACTIVE = "active"
    PROCESSING = "processing"
    CLOSED = "closed"


@dataclass
class ToolCallRecord:
    id: str
    name: str
    status: ToolCallStatus = "pending"


class ToolCallLog:
    """Tool calls announced during one prompt turn.

    A ``tool_call_update`` is only valid for an id previously announced by a
    ``tool_call`` in the same turn. The log ends with its turn.
    """

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}

    def __contains__(self, tool_call_id: object) -> bool:
        return tool_call_id in self._records

    def __iter__(self) -> Iterator[ToolCallRecord]:
        return iter(self._records.values())

    def get(self, tool_call_id: str) -> ToolCallRecord | None:
        return self._records.get(tool_call_id)

    def announce(self, tool_call: ToolCall) -> ToolCallRecord:
        if tool_call.id in self._records:
            raise ProtocolViolation(f"Tool call {tool_call.id!r} was already announced", code=INVALID_PARAMS)
        record = ToolCallRecord(id=tool_call.id, name=tool_call.name, status=tool_call.status)
        self._records[tool_call.id] = record
        return record

    def update(self, update: ToolCallUpdate) -> ToolCallRecord:
        record = self._records.get(update.id)
        if record is None:
            raise ProtocolViolation(f"Update for unknown tool call {update.id!r}", code=INVALID_PARAMS)
        record.status = update.status
        return record


@dataclass
class StreamingTurn:
    """One in-flight prompt on a session."""

    session_id: str
    cancel_scope: anyio.CancelScope = field(default_factory=anyio.CancelScope)
    cancelled: bool = False
    tool_calls: ToolCallLog = field(default_factory=ToolCallLog)

    def cancel(self) -> None:
        """Mark the turn cancelled and interrupt it. Safe to call repeatedly."""
        self.cancelled = True
        self.cancel_scope.cancel()


@dataclass
class Session:
    session_id: str
    capabilities: CapabilitySet
    working_directory: str | None = None
    mode: str | None = None
    phase: SessionPhase = SessionPhase.ACTIVE
    turn: StreamingTurn | None = None

    @property
    def processing(self) -> bool:
        return self.phase is SessionPhase.PROCESSING


class ConnectionState:
    """Lifecycle of one connection and the table of its sessions."""

    def __init__(self) -> None:
        self.phase = ConnectionPhase.CREATED
        self.working_directory: str | None = None
        self._sessions: dict[str, Session] = {}
        self._retired: set[str] = set()

    @property
    def initialized(self) -> bool:
        return self.phase is ConnectionPhase.INITIALIZED

    @property
    def closed(self) -> bool:
        return self.phase is ConnectionPhase.CLOSED

    @property
    def sessions(self) -> dict[str, Session]:
        return dict(self._sessions)

    def check_request(self, method: str) -> None:
        """Lifecycle gate for an inbound request."""
        if self.phase is ConnectionPhase.CLOSED:
            raise AcpError.invalid_state("Connection is closed")
        if method == "initialize":
            if self.phase is not ConnectionPhase.CREATED:
                raise AcpError.invalid_state("Connection already initialized")
        elif self.phase is not ConnectionPhase.INITIALIZED:
            raise AcpError.invalid_state(f"Connection not initialized, cannot handle {method}")

    def begin_initialize(self) -> None:
        if self.phase is not ConnectionPhase.CREATED:
            raise AcpError.invalid_state("Connection already initialized")
        self.phase = ConnectionPhase.INITIALIZING

    def abort_initialize(self) -> None:
        if self.phase is ConnectionPhase.INITIALIZING:
            self.phase = ConnectionPhase.CREATED

    def mark_initialized(self, working_directory: str | None = None) -> None:
        if self.phase not in (ConnectionPhase.CREATED, ConnectionPhase.INITIALIZING):
            raise AcpError.invalid_state("Connection already initialized")
        self.phase = ConnectionPhase.INITIALIZED
        self.working_directory = working_directory

    def open_session(
        self,
        session_id: str,
        capabilities: CapabilitySet,
        *,
        mode: str | None = None,
        working_directory: str | None = None,
    ) -> Session:
        if not self.initialized:
            raise AcpError.invalid_state("Connection not initialized")
        if session_id in self._sessions:
            raise AcpError.invalid_state(f"Session {session_id!r} already exists")
        if session_id in self._retired:
            raise AcpError.invalid_state(f"Session {session_id!r} was closed and cannot be reused")
        session = Session(
            session_id=session_id,
            capabilities=capabilities.model_copy(deep=True),
            working_directory=working_directory or self.working_directory,
            mode=mode,
        )
        self._sessions[session_id] = session
        logger.debug("Opened session %s", session_id)
        return session

    def forget_session(self, session_id: str) -> None:
        """Drop a session that failed to open. Unlike close, the id may be used again."""
        session = self._sessions.pop(session_id, None)
        if session is not None and session.turn is not None:
            session.turn.cancel()

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise AcpError.resource_not_found(f"Unknown session: {session_id}", data={"session_id": session_id})
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def begin_turn(self, session_id: str) -> StreamingTurn:
        session = self.get_session(session_id)
        if session.phase is SessionPhase.PROCESSING:
            raise AcpError.invalid_state(f"Session {session_id!r} is already processing a prompt")
        turn = StreamingTurn(session_id=session_id)
        session.phase = SessionPhase.PROCESSING
        session.turn = turn
        return turn

    def end_turn(self, turn: StreamingTurn) -> None:
        session = self._sessions.get(turn.session_id)
        if session is None or session.turn is not turn:
            return
        session.turn = None
        session.phase = SessionPhase.ACTIVE

    def cancel_turn(self, session_id: str) -> bool:
        """Cancel the active turn. Returns False (and does nothing) when there is no turn left to cancel."""
        session = self.get_session(session_id)
        if session.turn is None or session.turn.cancelled:
            return False
        session.turn.cancel()
        return True

    def close_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session.turn is not None:
            session.turn.cancel()
            session.turn = None
        session.phase = SessionPhase.CLOSED
        del self._sessions[session_id]
        self._retired.add(session_id)
        logger.debug("Closed session %s", session_id)
        return session

    def close(self) -> None:
        """Close the connection and every session on it."""
        for session_id in list(self._sessions):
            self.close_session(session_id)
        self.phase = ConnectionPhase.CLOSED
