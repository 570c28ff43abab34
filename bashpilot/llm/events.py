"""Typed events of a streamed Messages API response."""

from dataclasses import dataclass, field
from typing import Any, Union

from bashpilot.logging import get_logger

log = get_logger(__name__)

TEXT_BLOCK = "text"
TOOL_USE_BLOCK = "tool_use"


@dataclass(frozen=True)
class MessageStart:
    """Start of an assistant message."""

    message_id: str = ""
    model: str = ""


@dataclass(frozen=True)
class ContentBlockStart:
    """A content block opened at ``index``."""

    index: int
    block_type: str
    tool_name: str | None = None
    tool_id: str | None = None
    text: str = ""


@dataclass(frozen=True)
class ContentBlockDelta:
    """A fragment for the block at ``index``.

    Exactly one of ``text`` / ``partial_json`` is set for the delta kinds
    the agent understands.
    """

    index: int
    text: str | None = None
    partial_json: str | None = None


@dataclass(frozen=True)
class ContentBlockStop:
    """The block at ``index`` is complete."""

    index: int


@dataclass(frozen=True)
class MessageDelta:
    """Top-level message changes (stop reason, output usage)."""

    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageStop:
    """End of the stream."""


@dataclass(frozen=True)
class StreamError:
    """Error event sent in-band by the API."""

    message: str
    error_type: str = "error"


StreamEvent = Union[
    MessageStart,
    ContentBlockStart,
    ContentBlockDelta,
    ContentBlockStop,
    MessageDelta,
    MessageStop,
    StreamError,
]


def _usage(payload: Any) -> dict[str, int]:
    if not isinstance(payload, dict):
        return {}
    return {str(k): int(v) for k, v in payload.items() if isinstance(v, int)}


def parse_stream_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Convert one decoded SSE ``data`` payload into a stream event.

    Returns None for keep-alives and event kinds the agent does not use.
    """
    event_type = str(payload.get("type", ""))

    if event_type == "message_start":
        message = payload.get("message") or {}
        return MessageStart(
            message_id=str(message.get("id", "")),
            model=str(message.get("model", "")),
        )

    if event_type == "content_block_start":
        block = payload.get("content_block") or {}
        block_type = str(block.get("type", ""))
        if block_type == TOOL_USE_BLOCK:
            return ContentBlockStart(
                index=int(payload.get("index", 0)),
                block_type=block_type,
                tool_name=str(block.get("name", "")),
                tool_id=str(block.get("id", "")),
            )
        return ContentBlockStart(
            index=int(payload.get("index", 0)),
            block_type=block_type,
            text=str(block.get("text", "") or ""),
        )

    if event_type == "content_block_delta":
        delta = payload.get("delta") or {}
        delta_type = delta.get("type")
        index = int(payload.get("index", 0))
        if delta_type == "text_delta":
            return ContentBlockDelta(index=index, text=str(delta.get("text", "")))
        if delta_type == "input_json_delta":
            return ContentBlockDelta(index=index, partial_json=str(delta.get("partial_json", "")))
        log.debug("Skipping unsupported delta", delta_type=delta_type, index=index)
        return None

    if event_type == "content_block_stop":
        return ContentBlockStop(index=int(payload.get("index", 0)))

    if event_type == "message_delta":
        delta = payload.get("delta") or {}
        return MessageDelta(
            stop_reason=delta.get("stop_reason"),
            usage=_usage(payload.get("usage")),
        )

    if event_type == "message_stop":
        return MessageStop()

    if event_type == "error":
        error = payload.get("error") or {}
        return StreamError(
            message=str(error.get("message", "") or "unknown stream error"),
            error_type=str(error.get("type", "error")),
        )

    if event_type != "ping":
        log.debug("Skipping unknown stream event", event_type=event_type)
    return None
