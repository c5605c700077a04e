"""ACP agent module."""

from .agent import Agent
from .connection import AgentSideConnection, ClientProxy, PromptContext
from .stdio import run_agent, stdio_agent

__all__ = ["Agent", "AgentSideConnection", "ClientProxy", "PromptContext", "run_agent", "stdio_agent"]
