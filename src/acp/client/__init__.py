"""ACP client module."""

from .client import Client
from .connection import ClientSideConnection, SessionUpdateTracker
from .filesystem import LocalFileSystem
from .stdio import AgentProcessParameters, stdio_client
from .terminal import TerminalManager

__all__ = [
    "AgentProcessParameters",
    "Client",
    "ClientSideConnection",
    "LocalFileSystem",
    "SessionUpdateTracker",
    "TerminalManager",
    "stdio_client",
]
