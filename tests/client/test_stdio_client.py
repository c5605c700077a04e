import io
import sys
from pathlib import Path

import anyio
import pytest

import acp
from acp.client import AgentProcessParameters, Client, ClientSideConnection, stdio_client
from acp.client.stdio import get_default_environment
from acp.types import SessionNotification, ToolCallProgress

SRC_DIR = Path(acp.__file__).resolve().parent.parent


class RecordingClient(Client):
    def __init__(self) -> None:
        super().__init__()
        self.notifications: list[SessionNotification] = []

    async def session_update(self, notification: SessionNotification) -> None:
        self.notifications.append(notification)

    def message_text(self) -> str:
        return "".join(n.update.data.text for n in self.notifications if n.update.type == "agent_message_chunk")


def demo_agent(cwd: Path) -> AgentProcessParameters:
    return AgentProcessParameters(
        command=sys.executable,
        args=["-m", "acp.demo.agent", "--log-level", "WARNING"],
        env={"PYTHONPATH": str(SRC_DIR)},
        cwd=cwd,
    )


def test_default_environment_skips_functions(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("HOME", "/home/acp")
    monkeypatch.setenv("SHELL", "() { :; }")
    monkeypatch.setenv("ACP_SECRET", "hidden")

    env = get_default_environment()

    assert env["HOME"] == "/home/acp"
    assert "SHELL" not in env
    assert "ACP_SECRET" not in env


@pytest.mark.anyio
async def test_client_talks_to_a_spawned_agent(tmp_path: Path):
    client = RecordingClient()

    with anyio.fail_after(30):
        async with (
            stdio_client(demo_agent(tmp_path), errlog=io.StringIO()) as (read_stream, write_stream),
            ClientSideConnection(client, read_stream, write_stream) as connection,
        ):
            await connection.initialize(working_directory=str(tmp_path))
            assert connection.agent_info is not None
            assert connection.agent_info.name == "ACP Demo Agent"

            session = await connection.new_session()
            response = await connection.prompt(session.session_id, "hello")

    assert response.stop_reason == "end_turn"
    assert client.notifications[0].update.type == "agent_thought_chunk"
    assert client.notifications[-1].update.type == "done"
    assert client.message_text().startswith("Hello! ")


@pytest.mark.anyio
async def test_spawned_agent_reads_files_through_the_client(tmp_path: Path):
    (tmp_path / "README.md").write_text("# Project\n", encoding="utf-8")
    client = RecordingClient()

    with anyio.fail_after(30):
        async with (
            stdio_client(demo_agent(tmp_path), errlog=io.StringIO()) as (read_stream, write_stream),
            ClientSideConnection(client, read_stream, write_stream) as connection,
        ):
            await connection.initialize(working_directory=str(tmp_path))
            session = await connection.new_session()
            response = await connection.prompt(session.session_id, "please read the file")

    assert response.stop_reason == "end_turn"
    progress = [n.update.data for n in client.notifications if isinstance(n.update, ToolCallProgress)]
    assert [update.status for update in progress] == ["in_progress", "completed"]
    assert progress[-1].result == {"path": f"{tmp_path}/README.md", "length": 10}
