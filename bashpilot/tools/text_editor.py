"""Text editor tool: view, create, and edit files with single-level undo."""

from pathlib import Path
from typing import Any

from bashpilot.exceptions import TextEditorError
from bashpilot.logging import get_logger
from bashpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)


def _read(path: Path) -> str:
    # surrogateescape keeps arbitrary bytes intact through an edit and undo.
    return path.read_bytes().decode("utf-8", errors="surrogateescape")


def _read_for_display(path: Path) -> str:
    # Lone surrogates cannot be sent to the API, so undecodable bytes become U+FFFD.
    return path.read_bytes().decode("utf-8", errors="replace")


def _displayable(name: str) -> str:
    return name.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


def _write(path: Path, content: str) -> None:
    path.write_bytes(content.encode("utf-8", errors="surrogateescape"))


def _split_lines(content: str) -> list[str]:
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def add_line_numbers(text: str, start: int | None = None) -> str:
    """Prefix each line with its number, counting from ``start`` (default 1)."""
    if not text:
        return ""
    first = start if start is not None else 1
    return "\n".join(f"{first + i}: {line}" for i, line in enumerate(_split_lines(text)))


class TextEditor:
    """File operations backing the text editor tool.

    Every successful edit remembers the file's previous content, so the
    most recent edit of each file can be undone once.
    """

    def __init__(self) -> None:
        self._undo_history: dict[Path, str] = {}

    @staticmethod
    def _key(path: str | Path) -> Path:
        try:
            return Path(path).expanduser().resolve()
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Invalid path {path!r}: {e}")

    def view(self, path: str | Path, start: int | None = None, end: int | None = None) -> str:
        """Return a file's content (optionally a 1-indexed inclusive line range) or a directory listing.

        ``end`` of -1 means the end of the file.
        """
        target = Path(path).expanduser()
        if not target.exists():
            raise TextEditorError(f"Path not found: {path}")
        if target.is_dir():
            return self._view_directory(target)
        return self._view_file(target, start, end)

    @staticmethod
    def _view_directory(target: Path) -> str:
        try:
            entries = sorted(target.iterdir(), key=lambda entry: entry.name)
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to read directory {target}: {e}")
        return "\n".join(_displayable(entry.name) + ("/" if entry.is_dir() else "") for entry in entries)

    @staticmethod
    def _view_file(target: Path, start: int | None, end: int | None) -> str:
        try:
            lines = _split_lines(_read_for_display(target))
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to read file {target}: {e}")

        if start is None and end is None:
            return "\n".join(lines)

        start_idx = 0
        end_idx = len(lines)
        if start is not None:
            if start < 1:
                raise TextEditorError(f"Start line must be >= 1, got {start}")
            start_idx = start - 1
            if start_idx >= len(lines):
                raise TextEditorError(f"Start line {start} exceeds file length {len(lines)}")
        if end is not None and end != -1:
            if end < 1:
                raise TextEditorError(f"End line must be >= 1 or -1, got {end}")
            if end > len(lines):
                raise TextEditorError(f"End line {end} exceeds file length {len(lines)}")
            end_idx = end
        if start_idx >= end_idx:
            raise TextEditorError(f"Start line {start_idx + 1} must not be after end line {end_idx}")

        return "\n".join(lines[start_idx:end_idx])

    def string_replace(self, path: str | Path, old: str, new: str) -> None:
        """Replace the single occurrence of ``old`` with ``new``."""
        target = Path(path).expanduser()
        if not old:
            raise TextEditorError("old_str must not be empty")
        try:
            original = _read(target)
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to read file {path}: {e}")

        count = original.count(old)
        if count == 0:
            raise TextEditorError(f"String {old!r} not found in file {path}")
        if count > 1:
            raise TextEditorError(f"String {old!r} appears {count} times in file {path}, expected exactly 1")

        self._commit(target, original, original.replace(old, new, 1))

    def create(self, path: str | Path, content: str) -> None:
        """Create a new file, making parent directories as needed."""
        target = Path(path).expanduser()
        if target.exists():
            raise TextEditorError(f"File {path} already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            _write(target, content)
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to create file {path}: {e}")

    def insert(self, path: str | Path, after_line: int, text: str) -> None:
        """Insert ``text`` after line ``after_line`` (0 inserts at the top)."""
        target = Path(path).expanduser()
        if after_line < 0:
            raise TextEditorError(f"insert_line must be >= 0, got {after_line}")
        try:
            original = _read(target)
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to read file {path}: {e}")

        had_final_newline = original.endswith("\n")
        lines = _split_lines(original)
        if after_line > len(lines):
            raise TextEditorError(f"insert_line {after_line} exceeds file length {len(lines)}")

        new_lines = lines[:after_line] + [text] + lines[after_line:]
        updated = "\n".join(new_lines)
        if had_final_newline or not lines:
            updated += "\n"

        self._commit(target, original, updated)

    def undo_edit(self, path: str | Path) -> None:
        """Restore the content the file had before its last edit."""
        key = self._key(path)
        if key not in self._undo_history:
            raise TextEditorError(f"No undo history available for file {path}")
        try:
            _write(key, self._undo_history[key])
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to undo edit for file {path}: {e}")
        del self._undo_history[key]

    def _commit(self, target: Path, original: str, updated: str) -> None:
        key = self._key(target)
        try:
            _write(target, updated)
        except (OSError, ValueError) as e:
            raise TextEditorError(f"Failed to write file {target}: {e}")
        self._undo_history[key] = original
        log.debug("File edited", path=str(target))


def _optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TextEditorError(f"'{field}' must be an integer")
    return value


class TextEditorTool(Tool):
    """Expose a TextEditor under the model's text editor tool name."""

    description = "View, create and edit files."
    parameters = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "enum": ["view", "str_replace", "create", "insert", "undo_edit"]},
            "path": {"type": "string"},
        },
        "required": ["command", "path"],
    }

    def __init__(self, editor: TextEditor, definition: dict[str, Any]):
        self.editor = editor
        self.definition = dict(definition)
        self.name = self.definition["name"]

    def get_definition(self) -> dict[str, Any]:
        """Declare the built-in text editor tool for this model."""
        return dict(self.definition)

    async def execute(self, command: str, path: str, **kwargs: Any) -> ToolResult:
        """Run one editor command.

        Args:
            command: view, str_replace, create, insert or undo_edit
            path: File or directory path

        Returns:
            ToolResult with the command outcome
        """
        try:
            content = self._run(command, path, kwargs)
        except TextEditorError as e:
            log.info("Text editor command failed", command=command, path=path, error=str(e))
            return ToolResult.failure(f"Error: {e}")
        return ToolResult(content=content)

    def _run(self, command: str, path: str, args: dict[str, Any]) -> str:
        if command == "view":
            start, end = self._view_bounds(args)
            text = self.editor.view(path, start, end)
            if Path(path).expanduser().is_dir():
                return text
            return add_line_numbers(text, start)

        if command == "str_replace":
            old_str = args.get("old_str")
            if not isinstance(old_str, str):
                raise TextEditorError("old_str is required for str_replace command")
            self.editor.string_replace(path, old_str, str(args.get("new_str") or ""))
            return "String replacement completed successfully"

        if command == "create":
            self.editor.create(path, str(args.get("file_text") or ""))
            return f"File {path} created successfully"

        if command == "insert":
            insert_line = _optional_int(args.get("insert_line"), "insert_line")
            if insert_line is None:
                raise TextEditorError("insert_line is required for insert command")
            text = args.get("new_str")
            if text is None:
                text = args.get("new_text")
            self.editor.insert(path, insert_line, str(text or ""))
            return "Text insertion completed successfully"

        if command == "undo_edit":
            self.editor.undo_edit(path)
            return "Undo completed successfully"

        raise TextEditorError(f"Unknown text editor command: {command}")

    @staticmethod
    def _view_bounds(args: dict[str, Any]) -> tuple[int | None, int | None]:
        view_range = args.get("view_range")
        start = end = None
        if isinstance(view_range, list):
            if len(view_range) >= 1:
                start = _optional_int(view_range[0], "view_range")
            if len(view_range) >= 2:
                end = _optional_int(view_range[1], "view_range")
        if start is None:
            start = _optional_int(args.get("start"), "start")
        if end is None:
            end = _optional_int(args.get("end"), "end")
        return start, end
