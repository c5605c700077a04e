"""A demonstration agent that answers prompts with canned, streamed responses.

Run it under a client (for example ``acp-demo-client acp-demo-agent``). It
shows thought chunks, plans, tool calls and chunked messages without needing a
model behind it.
"""

import uuid
from collections.abc import AsyncIterator

import anyio
import click

from acp.agent import Agent, PromptContext, run_agent
from acp.settings import AcpSettings
from acp.shared.exceptions import AcpError
from acp.shared.session_state import Session
from acp.types import (
    AgentCapabilities,
    AgentPlan,
    InitializeRequestParams,
    InitializeResult,
    NewSessionRequestParams,
    NewSessionResult,
    Plan,
    PlanStep,
    PromptRequestParams,
    PromptResponse,
    SessionUpdate,
    TextContent,
    ToolCall,
    ToolCallProgress,
    ToolCallStart,
    ToolCallUpdate,
    ToolInfo,
    TurnDone,
    message_chunk,
    thought_chunk,
)
from acp.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)

# Pause between streamed chunks so the client visibly receives them one by one
CHUNK_DELAY = 0.05

PLAN_STEPS = [
    PlanStep(id=1, description="Analyze the request", status="completed"),
    PlanStep(id=2, description="Search for relevant files", status="in_progress"),
    PlanStep(id=3, description="Implement the solution"),
    PlanStep(id=4, description="Test the changes"),
]


def prompt_text(params: PromptRequestParams) -> str:
    return "\n".join(block.text for block in params.content if isinstance(block, TextContent))


def generate_thought(text: str) -> str:
    lowered = text.lower()
    if "file" in lowered or "read" in lowered:
        return "Analyzing file request... I should use the fs/read_text_file method."
    if "code" in lowered or "fix" in lowered:
        return "Let me think about how to approach this coding task..."
    if "plan" in lowered:
        return "Creating a structured plan for this task..."
    return "Processing your request..."


def generate_response(text: str) -> list[str]:
    lowered = text.lower()
    if "hello" in lowered or "hi" in lowered.split():
        return [
            "Hello! ",
            "I'm the ACP demo agent. ",
            "I'm here to demonstrate the Agent Client Protocol. ",
            "How can I help you today?",
        ]
    if "help" in lowered:
        return [
            "I can help you with:\n",
            "- Answering questions about the ACP protocol\n",
            "- Demonstrating streaming responses\n",
            "- Showing tool call examples\n",
            "\nJust ask me anything!",
        ]
    if any(word in lowered for word in ("tool", "read", "file")):
        return [
            "I'll demonstrate a tool call. ",
            "The tool call notifications show the protocol in action.",
        ]
    if "plan" in lowered:
        return ["I'll create a plan for you:\n\n", *(f"{step.id}. {step.description}\n" for step in PLAN_STEPS)]

    excerpt = text[:50] + ("..." if len(text) > 50 else "")
    return [
        f'I received your message: "{excerpt}"\n\n',
        "As a demo agent, I provide mock responses. ",
        "This demonstrates the ACP protocol working correctly!",
    ]


class DemoAgent(Agent):
    name = "ACP Demo Agent"
    capabilities = AgentCapabilities(
        streaming=True,
        text_files=True,
        terminal=True,
        image=True,
        supported_modes=["agent", "ask"],
        tools=[
            ToolInfo(
                name="read_file",
                description="Read a file from the filesystem",
                parameters={
                    "type": "object",
                    "properties": {"path": {"type": "string", "description": "Absolute path to the file"}},
                    "required": ["path"],
                },
            ),
            ToolInfo(
                name="run_command",
                description="Run a shell command",
                parameters={
                    "type": "object",
                    "properties": {"command": {"type": "string", "description": "Command to execute"}},
                    "required": ["command"],
                },
            ),
        ],
    )
    instructions = "I am a demonstration agent for the Agent Client Protocol. I provide mock responses."

    async def initialize(self, params: InitializeRequestParams) -> InitializeResult:
        logger.info("Client %s %s in %s", params.client_info.name, params.client_info.version, params.working_directory)
        return await super().initialize(params)

    async def new_session(self, params: NewSessionRequestParams, session: Session) -> NewSessionResult:
        logger.info("New session %s (mode: %s)", params.session_id, params.mode)
        return await super().new_session(params, session)

    async def prompt(
        self, params: PromptRequestParams, context: PromptContext
    ) -> AsyncIterator[SessionUpdate | PromptResponse]:
        text = prompt_text(params)
        lowered = text.lower()
        logger.info("Prompt on session %s: %s", context.session_id, text[:100])

        yield thought_chunk(generate_thought(text))
        await anyio.sleep(CHUNK_DELAY)

        if "plan" in lowered:
            yield AgentPlan(data=Plan(steps=PLAN_STEPS))
            await anyio.sleep(CHUNK_DELAY)

        if any(word in lowered for word in ("tool", "file", "read")):
            async for update in self._read_file_tool(context):
                yield update

        for chunk in generate_response(text):
            yield message_chunk(chunk)
            await anyio.sleep(CHUNK_DELAY)

        yield TurnDone()
        yield PromptResponse(stop_reason="end_turn")

    async def _read_file_tool(self, context: PromptContext) -> AsyncIterator[SessionUpdate]:
        path = f"{(context.session.working_directory or '').rstrip('/')}/README.md"
        tool_id = f"tool_{uuid.uuid4().hex}"
        yield ToolCallStart(data=ToolCall(id=tool_id, name="read_file", arguments={"path": path}))

        if not context.session.capabilities.text_files:
            yield ToolCallProgress(data=ToolCallUpdate(id=tool_id, status="failed", error="text_files not negotiated"))
            return

        yield ToolCallProgress(data=ToolCallUpdate(id=tool_id, status="in_progress"))
        try:
            content = await context.client.read_text_file(path)
        except AcpError as e:
            yield ToolCallProgress(data=ToolCallUpdate(id=tool_id, status="failed", error=e.error.message))
        else:
            yield ToolCallProgress(
                data=ToolCallUpdate(id=tool_id, status="completed", result={"path": path, "length": len(content)})
            )


@click.command()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Log level (defaults to ACP_LOG_LEVEL)",
)
def main(log_level: str | None) -> int:
    settings = AcpSettings()
    configure_logging(log_level or settings.log_level)  # type: ignore[arg-type]
    anyio.run(run_agent, DemoAgent(), settings)
    return 0


if __name__ == "__main__":
    main()
