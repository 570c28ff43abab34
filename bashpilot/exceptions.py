"""Custom exceptions for Bashpilot."""

from typing import Any


class BashpilotError(Exception):
    """Base exception for Bashpilot."""

    pass


class ConfigurationError(BashpilotError):
    """Configuration-related errors."""

    pass


class LLMError(BashpilotError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, dropped connection, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamInterruptedError(LLMError):
    """Streamed response ended before message_stop.

    ``response`` holds whatever was assembled before the failure: the text
    already shown and every tool invocation already finalized.
    """

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class ToolError(BashpilotError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ShellError(BashpilotError):
    """Shell executor errors."""

    pass


class ShellSpawnError(ShellError):
    """The shell process could not be started."""

    def __init__(self, executable: str, reason: str):
        super().__init__(f"Failed to start {executable}: {reason}")
        self.executable = executable


class ShellSessionError(ShellError):
    """A command could not be completed against the shell session."""

    def __init__(self, command: str, message: str):
        super().__init__(message)
        self.command = command


class TextEditorError(BashpilotError):
    """File editing precondition violations."""

    pass
