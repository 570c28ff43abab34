from bashpilot.session import Conversation
from bashpilot.tools.registry import ToolResult


def test_turns_are_appended_in_order():
    conversation = Conversation()
    conversation.add_user_message("list files")
    conversation.add_assistant_message(
        [{"type": "tool_use", "id": "toolu_1", "name": "bash", "input": {"command": "ls"}}]
    )
    conversation.add_tool_results([ToolResult(tool_use_id="toolu_1", content="a.txt")])

    assert len(conversation) == 3
    assert [turn.role for turn in conversation.turns] == ["user", "assistant", "tool_result"]
    assert conversation.messages == [
        {"role": "user", "content": [{"type": "text", "text": "list files"}]},
        {
            "role": "assistant",
            "content": [{"type": "tool_use", "id": "toolu_1", "name": "bash", "input": {"command": "ls"}}],
        },
        {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "a.txt", "is_error": False}],
        },
    ]


def test_tool_results_share_one_turn_in_order():
    conversation = Conversation()
    conversation.add_tool_results(
        [
            ToolResult(tool_use_id="first", content="1"),
            ToolResult.failure("nope", tool_use_id="second"),
        ]
    )

    [turn] = conversation.turns
    assert [block["tool_use_id"] for block in turn.content] == ["first", "second"]


def test_messages_snapshot_cannot_mutate_history():
    content = [{"type": "text", "text": "hello"}]
    conversation = Conversation()
    conversation.add_assistant_message(content)

    content[0]["text"] = "changed by caller"
    snapshot = conversation.messages
    snapshot[0]["content"][0]["text"] = "changed by request"

    assert conversation.messages[0]["content"][0]["text"] == "hello"
