"""Assemble a streamed model response into text and tool invocations."""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Callable

from bashpilot.exceptions import LLMError, StreamInterruptedError
from bashpilot.llm.events import (
    TEXT_BLOCK,
    TOOL_USE_BLOCK,
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
)
from bashpilot.logging import get_logger

log = get_logger(__name__)


@dataclass
class PendingToolInvocation:
    """Tool-use block whose JSON input is still arriving."""

    id: str
    name: str
    raw_input: str = ""


@dataclass
class ToolInvocation:
    """A completed tool-use block.

    ``input`` is the parsed JSON object. When the concatenated fragments do
    not parse, ``input`` is None and ``parse_error`` says why; the
    invocation is still returned so the model receives a result for it.
    """

    id: str
    name: str
    raw_input: str = ""
    input: dict[str, Any] | None = None
    parse_error: str | None = None

    @property
    def is_malformed(self) -> bool:
        return self.parse_error is not None

    def to_content_block(self) -> dict[str, Any]:
        """Render as a tool_use block for the assistant turn."""
        return {
            "type": "tool_use",
            "id": self.id,
            "name": self.name,
            "input": self.input if self.input is not None else {},
        }


@dataclass
class AssembledResponse:
    """Everything reconstructed from one streamed response."""

    content: list[dict[str, Any]] = field(default_factory=list)
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(block.get("text", "") for block in self.content if block.get("type") == TEXT_BLOCK)


def finalize_invocation(pending: PendingToolInvocation) -> ToolInvocation:
    """Parse a pending invocation's buffered fragments."""
    raw = pending.raw_input
    if not raw.strip():
        return ToolInvocation(id=pending.id, name=pending.name, raw_input=raw, input={})
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        return ToolInvocation(
            id=pending.id,
            name=pending.name,
            raw_input=raw,
            parse_error=f"invalid JSON input: {e}",
        )
    if not isinstance(parsed, dict):
        return ToolInvocation(
            id=pending.id,
            name=pending.name,
            raw_input=raw,
            parse_error=f"tool input must be a JSON object, got {type(parsed).__name__}",
        )
    return ToolInvocation(id=pending.id, name=pending.name, raw_input=raw, input=parsed)


class StreamAssembler:
    """Consume stream events one at a time.

    Text fragments go to ``on_text`` as soon as they arrive. Tool-use
    fragments are buffered per block index and parsed when the block stops.
    """

    def __init__(
        self,
        on_text: Callable[[str], None],
        on_tool_start: Callable[[str, str], None] | None = None,
    ):
        self._on_text = on_text
        self._on_tool_start = on_tool_start

    async def assemble(self, events: AsyncIterable[StreamEvent]) -> AssembledResponse:
        """Drain ``events`` into an AssembledResponse.

        Raises:
            StreamInterruptedError: the stream failed or ended early. The
                exception's ``response`` keeps the finalized blocks.
        """
        blocks: dict[int, dict[str, Any]] = {}
        pending: dict[int, PendingToolInvocation] = {}
        response = AssembledResponse()
        completed = False

        def partial() -> AssembledResponse:
            # Empty text blocks are rejected when the history is replayed.
            response.content = [
                blocks[i] for i in sorted(blocks) if blocks[i].get("type") != TEXT_BLOCK or blocks[i].get("text")
            ]
            return response

        try:
            async for event in events:
                if isinstance(event, MessageStart):
                    log.debug("Message started", message_id=event.message_id, model=event.model)

                elif isinstance(event, ContentBlockStart):
                    if event.block_type == TOOL_USE_BLOCK:
                        pending[event.index] = PendingToolInvocation(
                            id=event.tool_id or "",
                            name=event.tool_name or "",
                        )
                        if self._on_tool_start is not None:
                            self._on_tool_start(event.tool_name or "", event.tool_id or "")
                    elif event.block_type == TEXT_BLOCK:
                        blocks[event.index] = {"type": TEXT_BLOCK, "text": event.text}
                        if event.text:
                            self._on_text(event.text)
                    else:
                        log.debug("Ignoring content block", block_type=event.block_type, index=event.index)

                elif isinstance(event, ContentBlockDelta):
                    if event.text is not None:
                        self._on_text(event.text)
                        block = blocks.setdefault(event.index, {"type": TEXT_BLOCK, "text": ""})
                        if block.get("type") == TEXT_BLOCK:
                            block["text"] += event.text
                    elif event.partial_json is not None:
                        tool = pending.get(event.index)
                        if tool is None:
                            log.warning("JSON delta without open tool block", index=event.index)
                            continue
                        tool.raw_input += event.partial_json

                elif isinstance(event, ContentBlockStop):
                    tool = pending.pop(event.index, None)
                    if tool is None:
                        continue
                    invocation = finalize_invocation(tool)
                    if invocation.is_malformed:
                        log.warning(
                            "Malformed tool input",
                            tool=invocation.name,
                            tool_use_id=invocation.id,
                            error=invocation.parse_error,
                        )
                    response.tool_invocations.append(invocation)
                    blocks[event.index] = invocation.to_content_block()

                elif isinstance(event, MessageDelta):
                    if event.stop_reason:
                        response.stop_reason = event.stop_reason
                    response.usage.update(event.usage)

                elif isinstance(event, MessageStop):
                    completed = True
                    break

                elif isinstance(event, StreamError):
                    raise StreamInterruptedError(
                        f"Stream error ({event.error_type}): {event.message}",
                        response=partial(),
                    )

        except StreamInterruptedError:
            raise
        except LLMError as e:
            raise StreamInterruptedError(f"Stream failed: {e}", response=partial()) from e
        finally:
            # Release the HTTP response when we stop reading early.
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

        if not completed:
            raise StreamInterruptedError("Stream ended before message_stop", response=partial())

        if pending:
            log.warning("Tool blocks left open at message_stop", indices=sorted(pending))
        return partial()
