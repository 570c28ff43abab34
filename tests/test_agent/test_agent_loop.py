import pytest

from bashpilot.agent import Agent
from bashpilot.cli import TerminalUI
from bashpilot.exceptions import StreamInterruptedError
from bashpilot.llm.events import ContentBlockDelta, ContentBlockStart, ContentBlockStop, MessageStart, MessageStop
from bashpilot.main import build_tool_registry
from bashpilot.tools.shell import CommandExecutor, CommandOutput


def _text_response(text: str) -> list:
    return [
        MessageStart(message_id="m"),
        ContentBlockStart(index=0, block_type="text"),
        ContentBlockDelta(index=0, text=text),
        ContentBlockStop(index=0),
        MessageStop(),
    ]


def _bash_call(tool_id: str, raw_input: str, finish: bool = True) -> list:
    events = [
        MessageStart(message_id="m"),
        ContentBlockStart(index=0, block_type="tool_use", tool_name="bash", tool_id=tool_id),
        ContentBlockDelta(index=0, partial_json=raw_input),
        ContentBlockStop(index=0),
    ]
    if finish:
        events.append(MessageStop())
    return events


class ScriptedProvider:
    model = "claude-sonnet-4-0"

    def __init__(self, *responses: list):
        self.responses = list(responses)
        self.requests: list[dict] = []

    async def stream_events(self, messages, tools=None, system=None):
        self.requests.append({"messages": messages, "tools": tools, "system": system})
        for event in self.responses.pop(0):
            yield event


class RecordingExecutor(CommandExecutor):
    def __init__(self):
        self.commands: list[str] = []

    async def execute(self, command: str) -> CommandOutput:
        self.commands.append(command)
        return CommandOutput(stdout=f"ran {command}\n")

    async def restart(self) -> str:
        return "restarted"


def _agent(tmp_path, provider: ScriptedProvider, executor: RecordingExecutor) -> Agent:
    ui = TerminalUI(history_file=tmp_path / "history", use_readline=False)
    registry = build_tool_registry(executor, provider.model)
    return Agent(provider, registry, ui, system_prompt="You can run bash commands.")


@pytest.mark.asyncio
async def test_text_only_turn_makes_one_request(tmp_path, capsys):
    provider = ScriptedProvider(_text_response("Hi there"))
    agent = _agent(tmp_path, provider, RecordingExecutor())

    await agent.run_turn("hello")

    assert len(provider.requests) == 1
    assert provider.requests[0]["system"] == "You can run bash commands."
    assert [turn.role for turn in agent.conversation.turns] == ["user", "assistant"]
    assert "Hi there" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_tool_call_result_is_sent_back_and_loop_continues(tmp_path):
    provider = ScriptedProvider(_bash_call("toolu_1", '{"command": "echo hi"}'), _text_response("Done"))
    executor = RecordingExecutor()
    agent = _agent(tmp_path, provider, executor)

    await agent.run_turn("say hi")

    assert executor.commands == ["echo hi"]
    assert [turn.role for turn in agent.conversation.turns] == ["user", "assistant", "tool_result", "assistant"]

    second_request = provider.requests[1]["messages"]
    assert second_request[1]["content"][0]["id"] == "toolu_1"
    tool_result = second_request[2]
    assert tool_result["role"] == "user"
    assert tool_result["content"] == [
        {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": "<stdout>ran echo hi\n</stdout><stderr></stderr>",
            "is_error": False,
        }
    ]
    tool_names = {tool["name"] for tool in provider.requests[0]["tools"]}
    assert tool_names == {"bash", "str_replace_based_edit_tool"}


@pytest.mark.asyncio
async def test_malformed_tool_input_returns_error_result(tmp_path):
    provider = ScriptedProvider(_bash_call("toolu_bad", '{"command": '), _text_response("Sorry"))
    executor = RecordingExecutor()
    agent = _agent(tmp_path, provider, executor)

    await agent.run_turn("go")

    assert executor.commands == []
    [result] = agent.conversation.turns[2].content
    assert result["tool_use_id"] == "toolu_bad"
    assert result["is_error"] is True
    assert result["content"].startswith("Error parsing tool input")


@pytest.mark.asyncio
async def test_interrupted_stream_records_finalized_tool_calls(tmp_path):
    provider = ScriptedProvider(_bash_call("toolu_1", '{"command": "ls"}', finish=False))
    executor = RecordingExecutor()
    agent = _agent(tmp_path, provider, executor)

    with pytest.raises(StreamInterruptedError):
        await agent.run_turn("list files")

    assert executor.commands == ["ls"]
    assert [turn.role for turn in agent.conversation.turns] == ["user", "assistant", "tool_result"]
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_history_is_replayed_in_full_each_request(tmp_path):
    provider = ScriptedProvider(_text_response("one"), _text_response("two"))
    agent = _agent(tmp_path, provider, RecordingExecutor())

    await agent.run_turn("first")
    await agent.run_turn("second")

    assert len(provider.requests[0]["messages"]) == 1
    assert len(provider.requests[1]["messages"]) == 3
    assert provider.requests[1]["messages"][1] == {"role": "assistant", "content": [{"type": "text", "text": "one"}]}


@pytest.mark.asyncio
async def test_new_conversation_clears_history(tmp_path):
    provider = ScriptedProvider(_text_response("one"), _text_response("two"))
    agent = _agent(tmp_path, provider, RecordingExecutor())

    await agent.run_turn("first")
    agent.new_conversation()
    await agent.run_turn("again")

    assert len(provider.requests[1]["messages"]) == 1
    assert len(agent.conversation) == 2
