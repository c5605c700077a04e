"""Terminal provider backing the ``terminal/*`` methods.

Each terminal runs one command through ``sh -c`` in the requested working
directory. Its combined stdout/stderr is collected in the background, so output
is available while the command runs and after it exits. A terminal stays
addressable until it is released, even after it has exited or been killed.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from types import TracebackType

import anyio
from anyio.abc import Process, TaskGroup
from typing_extensions import Self

from acp.client.filesystem import require_absolute
from acp.os.posix import terminate_process_tree
from acp.shared.exceptions import AcpError
from acp.types import TerminalOutputResult, WaitForTerminalExitResult

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 300.0
DEFAULT_OUTPUT_LIMIT = 1024 * 1024


@dataclass
class Terminal:
    terminal_id: str
    command: str
    cwd: str
    process: Process
    output_limit: int = DEFAULT_OUTPUT_LIMIT
    exit_code: int | None = None
    truncated: bool = False
    _output: bytearray = field(default_factory=bytearray)
    _exited: anyio.Event = field(default_factory=anyio.Event)

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def output(self) -> str:
        return self._output.decode("utf-8", errors="replace")

    def append(self, chunk: bytes) -> None:
        self._output.extend(chunk)
        overflow = len(self._output) - self.output_limit
        if overflow > 0:
            del self._output[:overflow]
            self.truncated = True

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.exit_code is not None
        return self.exit_code


class TerminalManager:
    """Owns the terminals created by one client.

    Must be used as an async context manager: it runs the output collectors
    and kills every remaining terminal on exit.
    """

    def __init__(
        self,
        *,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        shell: str = "sh",
    ) -> None:
        self.wait_timeout = wait_timeout
        self.output_limit = output_limit
        self.shell = shell
        self._next_id = 0
        self._terminals: dict[str, Terminal] = {}
        self._task_group: TaskGroup | None = None

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        assert self._task_group is not None
        task_group, self._task_group = self._task_group, None
        try:
            with anyio.CancelScope(shield=True):
                await self.close()
        finally:
            task_group.cancel_scope.cancel()
            await task_group.__aexit__(exc_type, exc_val, exc_tb)
        return None

    def __len__(self) -> int:
        return len(self._terminals)

    def get(self, terminal_id: str) -> Terminal:
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            raise AcpError.resource_not_found(f"Unknown terminal: {terminal_id}", data={"terminal_id": terminal_id})
        return terminal

    async def create(self, command: str, cwd: str) -> str:
        if self._task_group is None:
            raise RuntimeError("TerminalManager must be used as an async context manager")

        directory = require_absolute(cwd, "Working directory")
        if not await directory.is_dir():
            raise AcpError.resource_not_found(f"Working directory does not exist: {cwd}", data={"cwd": cwd})

        try:
            process = await anyio.open_process(
                [self.shell, "-c", command],
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                env=dict(os.environ),
            )
        except PermissionError as e:
            raise AcpError.permission_denied(f"Cannot run command in {cwd}: {e}")
        except OSError as e:
            raise AcpError.internal_error(f"Failed to start command: {e}")

        terminal_id = f"term_{self._next_id}"
        self._next_id += 1
        terminal = Terminal(
            terminal_id=terminal_id,
            command=command,
            cwd=cwd,
            process=process,
            output_limit=self.output_limit,
        )
        self._terminals[terminal_id] = terminal
        self._task_group.start_soon(self._collect, terminal, name=f"acp-{terminal_id}")
        logger.info("Started %s (pid %s): %s", terminal_id, process.pid, command)
        return terminal_id

    async def _collect(self, terminal: Terminal) -> None:
        process = terminal.process
        try:
            if process.stdout is not None:
                async for chunk in process.stdout:
                    terminal.append(chunk)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        finally:
            with anyio.CancelScope(shield=True):
                terminal.exit_code = await process.wait()
                await process.aclose()
            terminal._exited.set()  # type: ignore[reportPrivateUsage]
            logger.debug("%s exited with code %s", terminal.terminal_id, terminal.exit_code)

    def output(self, terminal_id: str) -> TerminalOutputResult:
        terminal = self.get(terminal_id)
        return TerminalOutputResult(
            output=terminal.output,
            exited=terminal.exited,
            exit_code=terminal.exit_code,
        )

    async def wait_for_exit(self, terminal_id: str, timeout: float | None = None) -> WaitForTerminalExitResult:
        terminal = self.get(terminal_id)
        timeout = self.wait_timeout if timeout is None else timeout
        try:
            with anyio.fail_after(timeout):
                exit_code = await terminal.wait()
        except TimeoutError:
            raise AcpError.internal_error(
                f"Timed out after {timeout} seconds waiting for {terminal_id} to exit",
                data={"terminal_id": terminal_id},
            )
        return WaitForTerminalExitResult(exit_code=exit_code, output=terminal.output)

    async def kill(self, terminal_id: str) -> int | None:
        """Kill the terminal's command. Returns its exit status, or None if it could not be reaped."""
        terminal = self.get(terminal_id)
        if terminal.exited:
            return terminal.exit_code
        logger.info("Killing %s", terminal_id)
        return await terminate_process_tree(terminal.process, label=terminal_id)

    async def release(self, terminal_id: str) -> None:
        """Kill the terminal if still running and forget it."""
        await self.kill(terminal_id)
        del self._terminals[terminal_id]

    async def close(self) -> None:
        for terminal_id in list(self._terminals):
            await self.release(terminal_id)
