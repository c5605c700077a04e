"""Message wrapper passed between transports and connections.

Transports hand the connection a stream of ``SessionMessage | Exception``: a
decoded message, or the fault that prevented decoding one.
"""

import time
from dataclasses import dataclass, field

from acp.types import JSONRPCMessage


@dataclass
class SessionMessage:
    """A decoded JSON-RPC message plus the time it was read or queued."""

    message: JSONRPCMessage
    received_at: float = field(default_factory=time.monotonic)
