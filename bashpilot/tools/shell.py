"""Bash tool and the stateless command executor."""

import asyncio
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from bashpilot.exceptions import ShellSpawnError
from bashpilot.llm import BASH_TOOL_DEFINITION
from bashpilot.logging import get_logger
from bashpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)


def decode_output(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def describe_returncode(returncode: int | None) -> str | None:
    """Describe a failing exit status, or None for success."""
    if returncode is None or returncode == 0:
        return None
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"


@dataclass
class CommandOutput:
    """Captured output of one command.

    ``error`` is set when the command failed (non-zero exit status); the
    captured streams are kept either way.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def render(self) -> str:
        """Format for the model."""
        text = f"<stdout>{self.stdout}</stdout><stderr>{self.stderr}</stderr>"
        if self.error:
            text += f"<error>{self.error}</error>"
        return text


class CommandExecutor(ABC):
    """Runs shell commands for the bash tool."""

    @abstractmethod
    async def execute(self, command: str) -> CommandOutput:
        """Run ``command`` and capture stdout and stderr separately.

        A non-zero exit status is reported on the returned output, not
        raised.

        Raises:
            ShellError: the command could not be run at all
        """
        pass

    @abstractmethod
    async def restart(self) -> str:
        """Reset any shell state kept between commands.

        Returns:
            Message for the model
        """
        pass

    async def close(self) -> None:
        """Release any process held by the executor."""
        return None


class StatelessShellExecutor(CommandExecutor):
    """Run every command in a fresh ``bash -c`` process."""

    def __init__(self, executable: str = "bash", timeout: float | None = None):
        self.executable = executable
        self.timeout = timeout

    async def execute(self, command: str) -> CommandOutput:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "-c",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise ShellSpawnError(self.executable, str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            stdout, stderr = await process.communicate()
            return CommandOutput(
                stdout=decode_output(stdout),
                stderr=decode_output(stderr),
                exit_code=process.returncode,
                error=f"Command timed out after {self.timeout}s",
            )

        log.debug("Stateless command finished", command=command, returncode=process.returncode)
        return CommandOutput(
            stdout=decode_output(stdout),
            stderr=decode_output(stderr),
            exit_code=process.returncode,
            error=describe_returncode(process.returncode),
        )

    async def restart(self) -> str:
        # Nothing persists between calls, but the model expects a reset.
        return "Bash session restarted"


def create_executor(mode: str = "stateful", executable: str = "bash", timeout: float | None = None) -> CommandExecutor:
    """Create the command executor for a shell mode.

    Args:
        mode: "stateful" (one persistent shell) or "stateless"
        executable: Shell binary
        timeout: Optional per-command timeout in seconds

    Returns:
        CommandExecutor instance
    """
    normalized = str(mode or "").strip().lower()
    if normalized == "stateless":
        return StatelessShellExecutor(executable=executable, timeout=timeout)
    if normalized == "stateful":
        from bashpilot.tools.shell_session import StatefulShellExecutor

        return StatefulShellExecutor(executable=executable, timeout=timeout)
    raise ValueError(f"Unknown shell mode '{mode}'. Use 'stateful' or 'stateless'.")


class BashTool(Tool):
    """Execute shell commands through a CommandExecutor."""

    name = "bash"
    description = "Run a command in a bash shell, or restart the shell."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The bash command to run",
            },
            "restart": {
                "type": "boolean",
                "description": "Restart the bash session",
            },
        },
        "required": [],
    }

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    def get_definition(self) -> dict[str, Any]:
        """Declare the built-in bash tool."""
        return dict(BASH_TOOL_DEFINITION)

    async def execute(self, command: str | None = None, restart: bool = False, **kwargs: Any) -> ToolResult:
        """Run a command or restart the session.

        Args:
            command: Shell command to execute
            restart: Restart the session instead of running a command

        Returns:
            ToolResult with the captured streams
        """
        if restart:
            log.info("Restarting bash session")
            message = await self.executor.restart()
            return ToolResult(content=message)

        if not isinstance(command, str) or not command.strip():
            return ToolResult.failure("Error: 'command' is required unless 'restart' is true")

        output = await self.executor.execute(command)
        if not output.ok:
            log.info("Command failed", command=command, error=output.error)
        return ToolResult(content=output.render(), is_error=not output.ok)
