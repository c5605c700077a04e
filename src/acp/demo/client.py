"""Interactive command-line client for ACP agents.

Spawns the given agent command, performs the handshake, opens a session and
then forwards each line typed by the user as a prompt, printing the streamed
updates as they arrive.
"""

import sys

import anyio
import anyio.to_thread
import click

from acp.client import AgentProcessParameters, Client, ClientSideConnection, TerminalManager, stdio_client
from acp.settings import AcpSettings
from acp.shared.exceptions import AcpError
from acp.types import Plan, ToolCall, ToolCallUpdate
from acp.utilities.logging import configure_logging

HELP_TEXT = """Commands:
  /help   Show this help
  /info   Show agent information
  /new    Start a new session
  /quit   Exit
Anything else is sent to the agent as a prompt."""


class ConsoleClient(Client):
    """Prints the agent's streamed updates to stdout."""

    name = "acp-demo-client"

    async def on_agent_message(self, session_id: str, text: str) -> None:
        print(text, end="", flush=True)

    async def on_agent_thought(self, session_id: str, text: str) -> None:
        print(f"[thinking] {text}")

    async def on_tool_call(self, session_id: str, tool_call: ToolCall) -> None:
        print(f"[tool] {tool_call.name} {tool_call.arguments}")

    async def on_tool_call_update(self, session_id: str, update: ToolCallUpdate) -> None:
        detail = update.error or update.result
        print(f"[tool] {update.id}: {update.status}" + (f" {detail}" if detail is not None else ""))

    async def on_plan(self, session_id: str, plan: Plan) -> None:
        print("[plan]")
        for step in plan.steps:
            print(f"  {step.id}. {step.description} ({step.status})")

    async def on_mode_change(self, session_id: str, mode: str) -> None:
        print(f"[mode] {mode}")

    async def on_done(self, session_id: str) -> None:
        print()


def print_info(connection: ClientSideConnection) -> None:
    if connection.agent_info is None:
        return
    print(f"Agent: {connection.agent_info.name} {connection.agent_info.version}")
    if connection.instructions:
        print(f"Instructions: {connection.instructions}")
    if connection.agent_capabilities is not None:
        tools = ", ".join(tool.name for tool in connection.agent_capabilities.tools) or "none"
        modes = ", ".join(connection.agent_capabilities.supported_modes) or "none"
        print(f"Tools: {tools}")
        print(f"Modes: {modes}")


async def run_session(agent: AgentProcessParameters, settings: AcpSettings) -> None:
    async with stdio_client(agent) as (read_stream, write_stream):
        client = ConsoleClient(
            terminals=TerminalManager(
                wait_timeout=settings.terminal_wait_timeout, output_limit=settings.terminal_output_limit
            )
        )
        async with ClientSideConnection(
            client, read_stream, write_stream, request_timeout=settings.request_timeout
        ) as connection:
            await connection.initialize()
            print_info(connection)
            session = await connection.new_session()
            print(f"Session {session.session_id} ready. Type /help for commands.")

            while True:
                line = await anyio.to_thread.run_sync(sys.stdin.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                if line == "/quit":
                    break
                if line == "/help":
                    print(HELP_TEXT)
                    continue
                if line == "/info":
                    print_info(connection)
                    continue
                if line == "/new":
                    session = await connection.new_session()
                    print(f"Session {session.session_id} ready.")
                    continue

                try:
                    response = await connection.prompt(session.session_id, line, timeout=settings.prompt_timeout)
                except AcpError as e:
                    print(f"Error {e.code}: {e.error.message}", file=sys.stderr)
                    continue
                if response.stop_reason != "end_turn":
                    print(f"[stopped: {response.stop_reason}]")


@click.command()
@click.argument("command")
@click.argument("args", nargs=-1)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Log level (defaults to ACP_LOG_LEVEL)",
)
def main(command: str, args: tuple[str, ...], log_level: str | None) -> int:
    """Run COMMAND as an ACP agent and chat with it."""
    settings = AcpSettings()
    configure_logging(log_level or settings.log_level)  # type: ignore[arg-type]
    agent = AgentProcessParameters(command=command, args=list(args), max_message_size=settings.max_message_size)
    anyio.run(run_session, agent, settings)
    return 0


if __name__ == "__main__":
    main()
