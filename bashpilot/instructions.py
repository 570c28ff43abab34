"""Load the system prompt sent with every request."""

from pathlib import Path

from bashpilot.exceptions import ConfigurationError

DEFAULT_PROMPT_PATH = Path(__file__).resolve().parent / "prompt.txt"


def load_system_prompt(path: Path | str | None = None) -> str:
    """Return the system prompt.

    Args:
        path: Optional override file; the bundled prompt is used otherwise

    Raises:
        ConfigurationError if the file cannot be read
    """
    prompt_path = Path(path).expanduser() if path else DEFAULT_PROMPT_PATH
    try:
        return prompt_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read system prompt {prompt_path}: {e}")
