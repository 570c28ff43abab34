"""Conversation history sent to the model on every request."""

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bashpilot.logging import get_logger

if TYPE_CHECKING:
    from bashpilot.tools.registry import ToolResult

log = get_logger(__name__)


@dataclass(frozen=True)
class Turn:
    """One entry of the conversation log."""

    role: str  # "user", "assistant", "tool_result"
    content: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def to_message(self) -> dict[str, Any]:
        """Convert to a Messages API message.

        Tool results travel to the API as a user-role message.
        """
        role = "user" if self.role == "tool_result" else self.role
        return {"role": role, "content": [copy.deepcopy(block) for block in self.content]}


class Conversation:
    """Append-only log of user, assistant and tool-result turns.

    The whole log is replayed on every request; nothing is kept server-side.
    """

    def __init__(self) -> None:
        self._turns: list[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Snapshot of the history in API shape."""
        return [turn.to_message() for turn in self._turns]

    def _append(self, role: str, content: list[dict[str, Any]]) -> None:
        self._turns.append(Turn(role=role, content=tuple(copy.deepcopy(content))))
        log.debug("Conversation turn appended", role=role, blocks=len(content), turns=len(self._turns))

    def add_user_message(self, text: str) -> None:
        """Add a user message to the conversation history."""
        self._append("user", [{"type": "text", "text": text}])

    def add_assistant_message(self, content: list[dict[str, Any]]) -> None:
        """Add the assistant's reconstructed content blocks."""
        self._append("assistant", content)

    def add_tool_results(self, results: list["ToolResult"]) -> None:
        """Add one tool-result turn holding every result, in invocation order."""
        self._append("tool_result", [result.to_content_block() for result in results])
