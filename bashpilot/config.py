"""Configuration management for Bashpilot."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bashpilot.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.bashpilot/config.yaml").expanduser()
DEFAULT_HISTORY_PATH = Path("~/.bashpilot/history").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"
API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"


class ModelConfig(BaseModel):
    """Model configuration."""

    name: str = "claude-sonnet-4-0"
    api_key: str = ""
    base_url: str = "https://api.anthropic.com"
    max_tokens: int = 1024
    request_timeout: float = 120.0


class ShellConfig(BaseModel):
    """Shell executor configuration."""

    mode: Literal["stateful", "stateless"] = "stateful"
    executable: str = "bash"
    # None keeps commands unbounded; a hung command then blocks the turn.
    timeout: float | None = None


class UIConfig(BaseModel):
    """UI configuration."""

    prompt: str = "~~> "
    history_file: str = str(DEFAULT_HISTORY_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Bashpilot."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    system_prompt_file: str = ""

    model_config = SettingsConfigDict(
        env_prefix="BASHPILOT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load a YAML config file; a missing file yields the defaults.

        Raises:
            ConfigurationError if the file does not hold a mapping
        """
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()
        if not config_path.exists():
            return cls()

        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path} must contain a YAML mapping")
        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML, with BASHPILOT_* env vars filling the rest."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_api_key(self) -> str:
        """Return the configured API key, falling back to ANTHROPIC_API_KEY."""
        return (self.model.api_key or os.environ.get(API_KEY_ENV_VAR, "")).strip()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
