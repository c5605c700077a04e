"""Method names and the two protocol roles.

A role is pure data: which requests it serves and issues, and which
notifications it emits and subscribes to. The agent and the client run the same
connection engine with different roles.
"""

from dataclasses import dataclass
from typing import Final

INITIALIZE: Final = "initialize"
AUTHENTICATE: Final = "authenticate"
SESSION_NEW: Final = "session/new"
SESSION_LOAD: Final = "session/load"
SESSION_PROMPT: Final = "session/prompt"
SESSION_CANCEL: Final = "session/cancel"
SESSION_CLOSE: Final = "session/close"
SESSION_UPDATE: Final = "session/update"

FS_READ_TEXT_FILE: Final = "fs/read_text_file"
FS_WRITE_TEXT_FILE: Final = "fs/write_text_file"

TERMINAL_CREATE: Final = "terminal/create"
TERMINAL_OUTPUT: Final = "terminal/output"
TERMINAL_WAIT_FOR_EXIT: Final = "terminal/wait_for_exit"
TERMINAL_KILL: Final = "terminal/kill"
TERMINAL_RELEASE: Final = "terminal/release"

AGENT_METHODS: Final = frozenset(
    {INITIALIZE, AUTHENTICATE, SESSION_NEW, SESSION_LOAD, SESSION_PROMPT, SESSION_CANCEL, SESSION_CLOSE}
)
CLIENT_METHODS: Final = frozenset(
    {
        FS_READ_TEXT_FILE,
        FS_WRITE_TEXT_FILE,
        TERMINAL_CREATE,
        TERMINAL_OUTPUT,
        TERMINAL_WAIT_FOR_EXIT,
        TERMINAL_KILL,
        TERMINAL_RELEASE,
    }
)


@dataclass(frozen=True)
class Role:
    name: str
    serves: frozenset[str]
    issues: frozenset[str]
    emits: frozenset[str]
    subscribes: frozenset[str]

    def mirror(self, name: str) -> "Role":
        """The role on the other end of the connection."""
        return Role(name=name, serves=self.issues, issues=self.serves, emits=self.subscribes, subscribes=self.emits)


AGENT_ROLE: Final = Role(
    name="agent",
    serves=AGENT_METHODS,
    issues=CLIENT_METHODS,
    emits=frozenset({SESSION_UPDATE}),
    subscribes=frozenset({SESSION_CANCEL}),
)

CLIENT_ROLE: Final = AGENT_ROLE.mirror("client")
