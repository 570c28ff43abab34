"""Tool registry, base tool class, and invocation dispatch."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, model_validator

from bashpilot.exceptions import (
    ShellError,
    TextEditorError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from bashpilot.logging import get_logger

if TYPE_CHECKING:
    from bashpilot.streaming import ToolInvocation

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Result of one tool invocation, correlated by ``tool_use_id``."""

    tool_use_id: str = ""
    content: str = ""
    is_error: bool = False

    @model_validator(mode="after")
    def _normalize_failure_content(self) -> "ToolResult":
        """Ensure failed results always carry a message for the model."""
        if self.is_error and not (self.content or "").strip():
            self.content = "Tool execution failed"
        return self

    @classmethod
    def failure(cls, message: str, tool_use_id: str = "") -> "ToolResult":
        return cls(tool_use_id=tool_use_id, content=message, is_error=True)

    def to_content_block(self) -> dict[str, Any]:
        """Render as a tool_result content block."""
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with content and error flag
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool declaration sent to the model.

        Returns:
            Custom-tool definition with JSON Schema input
        """
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Args:
            arguments: Arguments to validate

        Raises:
            ToolExecutionError if invalid
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolRegistry:
    """Registry for managing available tools and routing invocations."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool.

        Args:
            name: Tool name to unregister
        """
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool declarations for the model."""
        return [tool.get_definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if arguments are invalid or execution fails
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        log.info("Executing tool", tool=name, args=arguments)
        try:
            result = await tool.execute(**arguments)
        except TypeError as e:
            # Unexpected keyword from the model.
            raise ToolExecutionError(name, f"Invalid arguments: {e}")
        if not isinstance(result, ToolResult):
            raise ToolExecutionError(name, "Tool returned invalid result payload")
        log.info("Tool executed", tool=name, is_error=result.is_error)
        return result

    async def dispatch(self, invocation: "ToolInvocation") -> ToolResult:
        """Run one finalized invocation and return its result.

        Tool-level failures never propagate: each becomes an error result so
        the model sees exactly one result per invocation.
        """
        if not self.has_tool(invocation.name):
            log.warning("Unknown tool requested", tool=invocation.name, tool_use_id=invocation.id)
            return ToolResult.failure(f"Error: unknown tool '{invocation.name}'", invocation.id)

        if invocation.is_malformed or invocation.input is None:
            reason = invocation.parse_error or "missing input"
            return ToolResult.failure(f"Error parsing tool input: {reason}", invocation.id)

        try:
            result = await self.execute(invocation.name, invocation.input)
        except (ToolError, ShellError, TextEditorError) as e:
            log.warning("Tool invocation failed", tool=invocation.name, error=str(e))
            return ToolResult.failure(f"Error: {e}", invocation.id)
        except Exception as e:
            log.error("Tool raised unexpectedly", tool=invocation.name, error=str(e), exc_info=True)
            return ToolResult.failure(f"Error: {e}", invocation.id)

        return result.model_copy(update={"tool_use_id": invocation.id})


__all__ = ["Tool", "ToolRegistry", "ToolResult"]
