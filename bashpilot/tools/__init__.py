"""Tools package for Bashpilot."""

from bashpilot.tools.registry import Tool, ToolRegistry, ToolResult
from bashpilot.tools.shell import (
    BashTool,
    CommandExecutor,
    CommandOutput,
    StatelessShellExecutor,
    create_executor,
)
from bashpilot.tools.shell_session import SessionState, StatefulShellExecutor
from bashpilot.tools.text_editor import TextEditor, TextEditorTool, add_line_numbers

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "BashTool",
    "CommandExecutor",
    "CommandOutput",
    "StatelessShellExecutor",
    "StatefulShellExecutor",
    "SessionState",
    "create_executor",
    "TextEditor",
    "TextEditorTool",
    "add_line_numbers",
]
