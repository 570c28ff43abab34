"""Main entry point for Bashpilot."""

import asyncio
import sys
from pathlib import Path

import typer

from bashpilot.agent import Agent
from bashpilot.cli import TerminalUI
from bashpilot.config import Config, set_config
from bashpilot.exceptions import BashpilotError, ConfigurationError, StreamInterruptedError
from bashpilot.instructions import load_system_prompt
from bashpilot.llm import AnthropicProvider, create_provider, format_supported_models, text_editor_tool_for_model
from bashpilot.logging import configure_logging, log
from bashpilot.tools import BashTool, CommandExecutor, TextEditor, TextEditorTool, ToolRegistry, create_executor


def build_tool_registry(executor: CommandExecutor, model: str, editor: TextEditor | None = None) -> ToolRegistry:
    """Register the bash tool and the model's text editor tool."""
    registry = ToolRegistry()
    registry.register(BashTool(executor))
    registry.register(TextEditorTool(editor or TextEditor(), text_editor_tool_for_model(model)))
    return registry


def load_runtime_config(
    config: str = "",
    model: str = "",
    shell_mode: str = "",
    system_prompt_file: str = "",
    max_tokens: int = 0,
) -> Config:
    """Load configuration and apply command-line overrides.

    Raises:
        ConfigurationError: the config file is invalid or no API key is set
    """
    try:
        cfg = Config.load(Path(config) if config else None)
    except Exception as e:
        raise ConfigurationError(f"Failed to load config: {e}")

    if model:
        cfg.model.name = model
    if shell_mode:
        if shell_mode not in ("stateful", "stateless"):
            raise ConfigurationError(f"Unknown shell mode: {shell_mode} (expected stateful or stateless)")
        cfg.shell.mode = shell_mode  # type: ignore[assignment]
    if system_prompt_file:
        cfg.system_prompt_file = system_prompt_file
    if max_tokens > 0:
        cfg.model.max_tokens = max_tokens

    if not cfg.resolved_api_key():
        raise ConfigurationError(
            "No API key configured. Set ANTHROPIC_API_KEY or model.api_key in config.yaml"
        )
    return cfg


async def run_interactive(
    cfg: Config,
    ui: TerminalUI | None = None,
    provider: AnthropicProvider | None = None,
    executor: CommandExecutor | None = None,
) -> None:
    """Read user input and run agent turns until the user exits."""
    system_prompt = load_system_prompt(cfg.system_prompt_file or None)
    ui = ui or TerminalUI()
    provider = provider or create_provider(
        api_key=cfg.resolved_api_key(),
        model=cfg.model.name,
        base_url=cfg.model.base_url,
        max_tokens=cfg.model.max_tokens,
        timeout=cfg.model.request_timeout,
    )
    executor = executor or create_executor(cfg.shell.mode, cfg.shell.executable, cfg.shell.timeout)
    registry = build_tool_registry(executor, provider.model)
    agent = Agent(provider, registry, ui, system_prompt)

    def _new_conversation() -> None:
        agent.new_conversation()
        ui.print_success("Started a new conversation")

    ui.register_command("new", "Start a new conversation", _new_conversation)
    ui.print_welcome(provider.model, cfg.shell.mode)
    log.info("Session started", model=provider.model, shell_mode=cfg.shell.mode)

    try:
        while True:
            try:
                user_input = ui.read_input()
            except EOFError:
                break

            try:
                await agent.run_turn(user_input)
            except StreamInterruptedError as e:
                ui.print_error(str(e))
            except BashpilotError as e:
                log.error("Turn failed", error=str(e))
                ui.print_error(str(e))
    finally:
        await executor.close()
        await provider.close()
        log.info("Session closed")


def main(
    config: str = "",
    model: str = "",
    shell_mode: str = "",
    system_prompt_file: str = "",
    max_tokens: int = 0,
    list_models: bool = False,
    verbose: bool = False,
) -> None:
    """Start a Bashpilot interactive session."""
    if list_models:
        print(format_supported_models())
        return

    # Config loading can log; keep it on stderr before the file says otherwise.
    configure_logging("DEBUG" if verbose else "WARNING", "console")
    try:
        cfg = load_runtime_config(config, model, shell_mode, system_prompt_file, max_tokens)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)

    try:
        asyncio.run(run_interactive(cfg))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except BashpilotError as e:
        log.error("Fatal error", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def version() -> None:
    """Show version information."""
    from bashpilot import __version__
    print(f"Bashpilot v{__version__}")


app = typer.Typer(help="Bashpilot - a terminal agent with local bash and file editing", add_completion=False)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Model name or alias"),
    shell_mode: str = typer.Option("", "--shell-mode", help="stateful or stateless bash"),
    system_prompt_file: str = typer.Option("", "--system-prompt-file", help="Override the system prompt"),
    max_tokens: int = typer.Option(0, "--max-tokens", help="Max tokens per response"),
    list_models: bool = typer.Option(False, "--list-models", help="List supported models and exit"),
    show_version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    if show_version:
        version()
        return
    main(config, model, shell_mode, system_prompt_file, max_tokens, list_models, verbose)


if __name__ == "__main__":
    app()
