import builtins

import pytest

from bashpilot.cli import TerminalUI


def _ui(tmp_path) -> TerminalUI:
    return TerminalUI(prompt="> ", history_file=tmp_path / "history", use_readline=False)


def _feed(monkeypatch, *lines):
    pending = list(lines)

    def fake_input(prompt=""):
        value = pending.pop(0)
        if isinstance(value, BaseException):
            raise value
        return value

    monkeypatch.setattr(builtins, "input", fake_input)


def test_special_command_completion(tmp_path):
    ui = _ui(tmp_path)
    ui.register_command("history", "Show history", lambda: None)

    assert ui._complete_special_command("/h", 0) == "/help"
    assert ui._complete_special_command("/h", 1) == "/history"
    assert ui._complete_special_command("/h", 2) is None
    assert ui._complete_special_command("hello", 0) is None


def test_command_tables_are_per_instance(tmp_path):
    first = _ui(tmp_path)
    second = _ui(tmp_path)

    first.register_command("new", "Start over", lambda: None)

    assert "new" in first.registered_commands()
    assert "new" not in second.registered_commands()
    assert second._complete_special_command("/n", 0) is None


def test_registered_command_runs_and_can_be_removed(tmp_path, capsys):
    ui = _ui(tmp_path)
    calls = []
    ui.register_command("/New", "Start over", lambda: calls.append("new"))

    assert ui.process_input("/new") is None
    assert calls == ["new"]

    ui.unregister_command("new")
    ui.process_input("/new")
    assert calls == ["new"]
    assert "Unknown command: /new" in capsys.readouterr().out


def test_exit_commands_raise_eof(tmp_path):
    ui = _ui(tmp_path)

    with pytest.raises(EOFError):
        ui.process_input("/exit")
    with pytest.raises(EOFError):
        ui.process_input("/QUIT")


def test_help_lists_registered_commands(tmp_path, capsys):
    ui = _ui(tmp_path)
    ui.register_command("new", "Start a new conversation", lambda: None)

    ui.process_input("/help")

    out = capsys.readouterr().out
    assert "/new - Start a new conversation" in out
    assert "/exit - Exit the application" in out


def test_read_input_skips_blank_lines_and_commands(tmp_path, monkeypatch):
    ui = _ui(tmp_path)
    _feed(monkeypatch, "", "   ", "/help", "  list my files  ")

    assert ui.read_input() == "list my files"


def test_read_input_ctrl_c_on_empty_line_exits(tmp_path, monkeypatch):
    ui = _ui(tmp_path)
    _feed(monkeypatch, KeyboardInterrupt())

    with pytest.raises(EOFError):
        ui.read_input()


def test_read_input_eof_propagates(tmp_path, monkeypatch, capsys):
    ui = _ui(tmp_path)
    _feed(monkeypatch, EOFError())

    with pytest.raises(EOFError):
        ui.read_input()
    assert "Goodbye!" in capsys.readouterr().out


def test_tool_output_formatting(tmp_path, capsys):
    ui = _ui(tmp_path)

    ui.print_tool_notice("bash", {"command": "ls -la"})
    ui.print_tool_notice("str_replace_based_edit_tool", {"command": "view", "path": "/tmp"})
    ui.print_tool_result("bash", "x" * 2500, is_error=True)

    out = capsys.readouterr().out
    assert "$ ls -la" in out
    assert '[str_replace_based_edit_tool] {"command": "view", "path": "/tmp"}' in out
    assert "[TOOL ERROR] bash:" in out
    assert "[2500 chars]" in out


def test_assistant_stream_prefix_and_chunks(tmp_path, capsys):
    ui = _ui(tmp_path)

    ui.begin_assistant_stream()
    ui.print_streaming("Hel")
    ui.print_streaming("lo")
    ui.end_assistant_stream()
    ui.end_assistant_stream()

    out = capsys.readouterr().out
    assert "Assistant: Hello\n" in out
    assert out.endswith("Hello\n")
