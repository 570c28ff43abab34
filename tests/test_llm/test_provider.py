import json

import httpx
import pytest

from bashpilot.exceptions import LLMAPIError
from bashpilot.llm import (
    AnthropicProvider,
    DEFAULT_MODEL,
    create_provider,
    format_supported_models,
    resolve_model,
    text_editor_tool_for_model,
    text_editor_tool_name,
)
from bashpilot.llm.events import ContentBlockDelta, ContentBlockStart, ContentBlockStop, MessageStart, MessageStop


def _sse(*payloads: dict) -> bytes:
    chunks = []
    for payload in payloads:
        chunks.append(f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n")
    return "".join(chunks).encode("utf-8")


SIMPLE_STREAM = _sse(
    {"type": "message_start", "message": {"id": "msg_1", "model": "claude-sonnet-4-0"}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_stop"},
)


async def _collect(provider: AnthropicProvider, **kwargs) -> list:
    return [event async for event in provider.stream_events([{"role": "user", "content": "hi"}], **kwargs)]


def test_resolve_model_aliases():
    assert resolve_model("claude-4-sonnet") == "claude-sonnet-4-0"
    assert resolve_model("claude-3.7-sonnet-latest") == "claude-3-7-sonnet-latest"
    assert resolve_model("") == DEFAULT_MODEL
    assert resolve_model("claude-future-9") == "claude-future-9"


def test_text_editor_tool_depends_on_model_generation():
    assert text_editor_tool_for_model("claude-sonnet-4-0") == {
        "type": "text_editor_20250429",
        "name": "str_replace_based_edit_tool",
    }
    assert text_editor_tool_name("claude-opus-4-20250514") == "str_replace_based_edit_tool"
    assert text_editor_tool_for_model("claude-3-5-sonnet-latest") == {
        "type": "text_editor_20250124",
        "name": "str_replace_editor",
    }


def test_format_supported_models_lists_default():
    text = format_supported_models()
    assert "claude-sonnet-4-0" in text
    assert "(default)" in text


def test_create_provider_resolves_alias():
    provider = create_provider(api_key="sk-test", model="claude-4-opus")
    assert isinstance(provider, AnthropicProvider)
    assert provider.model == "claude-opus-4-0"
    assert provider.base_url == "https://api.anthropic.com"


def test_build_request_includes_system_and_tools():
    provider = AnthropicProvider(api_key="sk-test", max_tokens=256)
    body = provider.build_request(
        [{"role": "user", "content": [{"type": "text", "text": "hi"}]}],
        tools=[{"type": "bash_20250124", "name": "bash"}],
        system="be brief",
    )
    assert body["stream"] is True
    assert body["max_tokens"] == 256
    assert body["system"] == [{"type": "text", "text": "be brief"}]
    assert body["tools"] == [{"type": "bash_20250124", "name": "bash"}]


@pytest.mark.asyncio
async def test_stream_events_parses_sse_and_sends_headers():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=SIMPLE_STREAM, headers={"content-type": "text/event-stream"})

    provider = AnthropicProvider(api_key="sk-test", transport=httpx.MockTransport(handler))
    try:
        events = await _collect(provider, system="sys")
    finally:
        await provider.close()

    assert events == [
        MessageStart(message_id="msg_1", model="claude-sonnet-4-0"),
        ContentBlockStart(index=0, block_type="text", text=""),
        ContentBlockDelta(index=0, text="Hello"),
        ContentBlockStop(index=0),
        MessageStop(),
    ]
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["headers"]["anthropic-beta"] == "computer-use-2025-01-24"
    assert seen["body"]["model"] == "claude-sonnet-4-0"


@pytest.mark.asyncio
async def test_stream_events_raises_api_error_on_http_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"type": "error", "error": {"type": "authentication_error"}})

    provider = AnthropicProvider(api_key="bad", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(LLMAPIError) as exc_info:
            await _collect(provider)
    finally:
        await provider.close()

    assert exc_info.value.status_code == 401
    assert "authentication_error" in str(exc_info.value)


@pytest.mark.asyncio
async def test_stream_events_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = AnthropicProvider(api_key="sk-test", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(LLMAPIError, match="connection refused"):
            await _collect(provider)
    finally:
        await provider.close()
