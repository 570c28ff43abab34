"""Terminal input and output for Bashpilot."""

import atexit
import json
import os
from dataclasses import dataclass
from pathlib import Path
import sys
from typing import Any, Callable

from bashpilot.config import get_config
from bashpilot.logging import get_logger

log = get_logger(__name__)

CommandHandler = Callable[[], None]

_TOOL_RESULT_PREVIEW_CHARS = 2000


@dataclass
class SlashCommand:
    """A registered /command."""

    name: str
    description: str
    handler: CommandHandler


class TerminalUI:
    """Line-editing input with slash commands, and plain terminal output.

    Slash commands live in a per-instance table; the readline completer is
    derived from it, so two UIs never share command state.
    """

    def __init__(
        self,
        prompt: str | None = None,
        history_file: Path | str | None = None,
        use_readline: bool = True,
    ):
        config = get_config()
        self.prompt_text = prompt if prompt is not None else config.ui.prompt
        self._history_file = Path(history_file or config.ui.history_file).expanduser()
        self._commands: dict[str, SlashCommand] = {}
        self._readline = None
        self._ansi_enabled = sys.stdout.isatty() and not bool(os.environ.get("NO_COLOR"))
        self._assistant_output_active = False
        if use_readline:
            self._setup_readline()
        self._register_builtin_commands()

    def _setup_readline(self) -> None:
        """Set up line editing, history, and command completion."""
        try:
            import readline  # type: ignore
        except Exception:
            return

        self._readline = readline

        try:
            self._history_file.parent.mkdir(parents=True, exist_ok=True)
            if self._history_file.exists():
                readline.read_history_file(str(self._history_file))
            readline.set_history_length(1000)
            if hasattr(readline, "set_auto_history"):
                readline.set_auto_history(False)
            readline.parse_and_bind("tab: complete")
            readline.set_completer(self._complete_special_command)
            atexit.register(self._save_history)
        except Exception as e:
            log.debug("Readline setup failed", error=str(e))

    def _save_history(self) -> None:
        """Persist readline history to disk."""
        if self._readline is None:
            return
        try:
            self._readline.write_history_file(str(self._history_file))
        except Exception as e:
            log.debug("Failed to save history", error=str(e))

    # Slash commands

    def register_command(self, name: str, description: str, handler: CommandHandler) -> None:
        """Register ``/name``. Names are case-insensitive and given without the slash."""
        key = name.strip().lstrip("/").lower()
        if not key:
            raise ValueError("Command name must not be empty")
        self._commands[key] = SlashCommand(name=key, description=description, handler=handler)

    def unregister_command(self, name: str) -> None:
        self._commands.pop(name.strip().lstrip("/").lower(), None)

    def registered_commands(self) -> list[str]:
        """Registered command names, without the slash, sorted."""
        return sorted(self._commands)

    def _register_builtin_commands(self) -> None:
        self.register_command("exit", "Exit the application", self._exit)
        self.register_command("quit", "Exit the application", self._exit)
        self.register_command("clear", "Clear the screen", self.clear_screen)
        self.register_command("help", "Show this help", self.print_help)

    def _exit(self) -> None:
        print("Goodbye!")
        raise EOFError

    def _complete_special_command(self, text: str, state: int) -> str | None:
        """Readline completer for slash commands."""
        if not text.startswith("/"):
            return None
        matches = [f"/{name}" for name in self.registered_commands() if f"/{name}".startswith(text.lower())]
        if state < len(matches):
            return matches[state]
        return None

    def handle_special_command(self, text: str) -> None:
        """Run a /command.

        Raises:
            EOFError when the command asks to exit
        """
        parts = text.strip()[1:].split(None, 1)
        name = parts[0].lower() if parts else ""
        command = self._commands.get(name)
        if command is None:
            print(f"Unknown command: {text}\nType '/help' to see available commands.")
            return
        command.handler()

    def process_input(self, text: str) -> str | None:
        """Return text for the model, or None when it was empty or a /command."""
        cleaned = text.strip()
        if not cleaned:
            return None
        if not cleaned.startswith("/"):
            return cleaned
        self.handle_special_command(cleaned)
        return None

    # Input

    def prompt(self, prompt_text: str | None = None) -> str:
        """Prompt for one line."""
        value = input(self.prompt_text if prompt_text is None else prompt_text)
        if self._readline and value.strip():
            try:
                self._readline.add_history(value)
            except Exception:
                pass
        return value

    def read_input(self) -> str:
        """Read lines until one is meant for the model.

        Ctrl-C on an empty line exits; on a partial line it discards it.

        Raises:
            EOFError when the user exits
        """
        while True:
            try:
                line = self.prompt()
            except KeyboardInterrupt:
                buffered = self._readline.get_line_buffer() if self._readline else ""
                if not buffered.strip():
                    print("\nGoodbye!")
                    raise EOFError
                print()
                continue
            except EOFError:
                print("\nGoodbye!")
                raise

            processed = self.process_input(line)
            if processed:
                return processed

    # Output

    def print_welcome(self, model: str = "", shell_mode: str = "") -> None:
        """Print welcome message."""
        print("=== Bashpilot ===")
        print("Commands are executed locally on your machine.")
        if model:
            print(f"Model: {model}" + (f" | bash: {shell_mode}" if shell_mode else ""))
        print("Type '/help' for commands.\n")

    def print_help(self) -> None:
        """Print help generated from the registered commands."""
        lines = ["", "Special commands:"]
        for name in self.registered_commands():
            lines.append(f"  /{name} - {self._commands[name].description}")
        lines.extend(
            [
                "",
                "Keyboard shortcuts:",
                "  Ctrl+R       - Reverse history search",
                "  Ctrl+C       - Interrupt current input",
                "  Ctrl+D       - Exit (EOF)",
                "  Up/Down      - Navigate history",
            ]
        )
        print("\n".join(lines))

    def _styled(self, text: str, style: str) -> str:
        if not self._ansi_enabled:
            return text
        return f"\033[{style}m{text}\033[0m"

    def begin_assistant_stream(self) -> None:
        """Start assistant streaming."""
        self._assistant_output_active = True
        print("\n" + self._styled("Assistant:", "30;102") + " ", end="", flush=True)

    def end_assistant_stream(self) -> None:
        """Finish the assistant's line."""
        if not self._assistant_output_active:
            return
        self._assistant_output_active = False
        print()

    def print_streaming(self, chunk: str) -> None:
        """Print streaming response chunk."""
        print(chunk, end="", flush=True)

    def print_tool_preparing(self, tool_name: str) -> None:
        """Announce a tool call the model has started writing."""
        print(f"\n[Preparing to run {tool_name}...]", flush=True)

    def print_tool_notice(self, tool_name: str, arguments: Any) -> None:
        """Print tool call."""
        if tool_name == "bash" and isinstance(arguments, dict) and arguments.get("command"):
            print(self._styled("$", "1") + f" {arguments['command']}")
            return
        if isinstance(arguments, dict):
            rendered = json.dumps(arguments, ensure_ascii=False)
        else:
            rendered = str(arguments)
        print(f"[{tool_name}] {rendered}")

    def print_tool_result(self, tool_name: str, content: str, is_error: bool = False) -> None:
        """Print tool result."""
        text = content
        if len(text) > _TOOL_RESULT_PREVIEW_CHARS:
            text = text[:_TOOL_RESULT_PREVIEW_CHARS] + f"... [{len(content)} chars]"
        label = "[TOOL ERROR]" if is_error else "[TOOL RESULT]"
        print(f"{self._styled(label, '30;103' if is_error else '30;106')} {tool_name}: {text}")

    def print_error(self, error: str) -> None:
        """Print an error message."""
        print(f"Error: {error}")

    def print_success(self, message: str) -> None:
        """Print success message."""
        print(f"OK: {message}")

    def clear_screen(self) -> None:
        """Clear the terminal screen."""
        if self._ansi_enabled:
            print("\033[2J\033[H", end="", flush=True)
        else:
            print("\n" + "=" * 50 + "\n")
