"""Anthropic provider - direct streaming HTTP calls to the Messages API."""

import json
from typing import Any, AsyncIterator

import httpx

from bashpilot.exceptions import LLMAPIError, LLMError
from bashpilot.llm.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
    parse_stream_event,
)
from bashpilot.logging import get_logger

log = get_logger(__name__)


ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
COMPUTER_USE_BETA = "computer-use-2025-01-24"

DEFAULT_MODEL = "claude-sonnet-4-0"

# Accepted spellings -> API model id.
MODEL_ALIASES: dict[str, str] = {
    # Claude 4
    "claude-sonnet-4-0": "claude-sonnet-4-0",
    "claude-4-sonnet": "claude-sonnet-4-0",
    "claude-sonnet-4-20250514": "claude-sonnet-4-20250514",
    "claude-4-sonnet-20250514": "claude-sonnet-4-20250514",
    "claude-opus-4-0": "claude-opus-4-0",
    "claude-4-opus": "claude-opus-4-0",
    "claude-opus-4-20250514": "claude-opus-4-20250514",
    "claude-4-opus-20250514": "claude-opus-4-20250514",
    # Claude 3.7
    "claude-3-7-sonnet-latest": "claude-3-7-sonnet-latest",
    "claude-3.7-sonnet-latest": "claude-3-7-sonnet-latest",
    "claude-3-7-sonnet-20250219": "claude-3-7-sonnet-20250219",
    "claude-3.7-sonnet-20250219": "claude-3-7-sonnet-20250219",
    # Claude 3.5 Sonnet
    "claude-3-5-sonnet-latest": "claude-3-5-sonnet-latest",
    "claude-3.5-sonnet-latest": "claude-3-5-sonnet-latest",
    "claude-3-5-sonnet-20241022": "claude-3-5-sonnet-20241022",
    "claude-3.5-sonnet-20241022": "claude-3-5-sonnet-20241022",
    "claude-3-5-sonnet-20240620": "claude-3-5-sonnet-20240620",
    "claude-3.5-sonnet-20240620": "claude-3-5-sonnet-20240620",
}

BASH_TOOL_DEFINITION: dict[str, Any] = {"type": "bash_20250124", "name": "bash"}


def resolve_model(name: str) -> str:
    """Map a user-supplied model name to its API id.

    Unknown names pass through unchanged so newer models work without a
    catalog update.
    """
    cleaned = str(name or "").strip()
    if not cleaned:
        return DEFAULT_MODEL
    return MODEL_ALIASES.get(cleaned, cleaned)


def _is_claude_4(model: str) -> bool:
    return any(marker in model for marker in ("claude-4", "claude-sonnet-4", "claude-opus-4"))


def text_editor_tool_for_model(model: str) -> dict[str, Any]:
    """Return the text editor tool declaration the model was trained on."""
    if _is_claude_4(model):
        return {"type": "text_editor_20250429", "name": "str_replace_based_edit_tool"}
    return {"type": "text_editor_20250124", "name": "str_replace_editor"}


def text_editor_tool_name(model: str) -> str:
    """Return the text editor tool name for a model."""
    return text_editor_tool_for_model(model)["name"]


def format_supported_models() -> str:
    """Render the supported model list for --list-models."""
    return "\n".join(
        [
            "Supported model names:",
            "Claude 4 models (text_editor_20250429):",
            "  claude-sonnet-4-0, claude-4-sonnet (default)",
            "  claude-sonnet-4-20250514, claude-4-sonnet-20250514",
            "  claude-opus-4-0, claude-4-opus",
            "  claude-opus-4-20250514, claude-4-opus-20250514",
            "",
            "Claude 3.7 models (text_editor_20250124):",
            "  claude-3-7-sonnet-latest, claude-3.7-sonnet-latest",
            "  claude-3-7-sonnet-20250219, claude-3.7-sonnet-20250219",
            "",
            "Claude 3.5 Sonnet models (text_editor_20250124):",
            "  claude-3-5-sonnet-latest, claude-3.5-sonnet-latest",
            "  claude-3-5-sonnet-20241022, claude-3.5-sonnet-20241022",
            "  claude-3-5-sonnet-20240620, claude-3.5-sonnet-20240620",
            "",
            "Any other model name is passed to the API unchanged.",
        ]
    )


class AnthropicProvider:
    """Streaming client for the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = ANTHROPIC_BASE_URL,
        max_tokens: int = 1024,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model name or alias
            base_url: API base URL
            max_tokens: Max tokens to generate per response
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.model = resolve_model(model)
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": COMPUTER_USE_BETA,
        }

    def build_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
    ) -> dict[str, Any]:
        """Build the streaming request body."""
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": list(messages),
            "stream": True,
        }
        if tools:
            body["tools"] = list(tools)
        if system:
            body["system"] = [{"type": "text", "text": system}]
        return body

    async def stream_events(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send the full history and yield the response as stream events.

        Raises:
            LLMAPIError: non-2xx status or connection failure
        """
        url = f"{self.base_url}/v1/messages"
        body = self.build_request(messages, tools=tools, system=system)

        try:
            log.debug("Calling Anthropic", model=self.model, url=url, msg_count=len(messages))
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Anthropic API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if line.startswith("data:"):
                        data_lines.append(line[5:].lstrip())
                        continue
                    if line.strip():
                        # "event:" names repeat the payload type; comments start with ":".
                        continue
                    event = self._decode(data_lines)
                    data_lines = []
                    if event is None:
                        continue
                    yield event
                    if isinstance(event, MessageStop):
                        return

                event = self._decode(data_lines)
                if event is not None:
                    yield event

        except httpx.HTTPError as e:
            raise LLMAPIError(f"Anthropic streaming error: {e}")

    @staticmethod
    def _decode(data_lines: list[str]) -> StreamEvent | None:
        """Decode one SSE event's data lines."""
        if not data_lines:
            return None
        raw = "\n".join(data_lines)
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LLMError(f"Anthropic stream decode error: {e}")
        if not isinstance(payload, dict):
            return None
        return parse_stream_event(payload)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    api_key: str,
    model: str = DEFAULT_MODEL,
    base_url: str | None = None,
    max_tokens: int = 1024,
    timeout: float = 120.0,
) -> AnthropicProvider:
    """Create the model transport.

    Args:
        api_key: Anthropic API key
        model: Model name or alias
        base_url: Optional base URL
        max_tokens: Default max tokens
        timeout: HTTP timeout in seconds

    Returns:
        Configured AnthropicProvider instance
    """
    return AnthropicProvider(
        api_key=api_key,
        model=model,
        base_url=base_url or ANTHROPIC_BASE_URL,
        max_tokens=max_tokens,
        timeout=timeout,
    )


__all__ = [
    "AnthropicProvider",
    "BASH_TOOL_DEFINITION",
    "ContentBlockDelta",
    "ContentBlockStart",
    "ContentBlockStop",
    "DEFAULT_MODEL",
    "MessageDelta",
    "MessageStart",
    "MessageStop",
    "StreamError",
    "StreamEvent",
    "create_provider",
    "format_supported_models",
    "resolve_model",
    "text_editor_tool_for_model",
    "text_editor_tool_name",
]
