"""Configuration management for Infobyte."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from infobyte.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.infobyte/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "openai"
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 1000
    api_key: str = ""
    base_url: str = ""


class MCPConfig(BaseModel):
    """MCP server connection configuration (timeouts in seconds)."""

    url: str = "http://localhost:8000"
    sse_path: str = "/sse"
    message_path: str = "/messages"
    connect_timeout: float = 10.0
    list_timeout: float = 30.0
    call_timeout: float = 60.0
    session_timeout: float = 10.0
    catalog_ttl: float = 300.0


class AgentConfig(BaseModel):
    """Agent pipeline configuration."""

    selection_temperature: float = 0.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"


class Config(BaseSettings):
    """Main configuration for Infobyte."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="INFOBYTE_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats YAML, which arrives as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration, preferring env vars over YAML."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def validate_runtime(self) -> None:
        """Check values that pydantic types alone do not constrain.

        Raises:
            ConfigurationError: If a value is out of range
        """
        if not 0 <= self.model.temperature <= 2:
            raise ConfigurationError("model.temperature must be a number between 0 and 2")
        if self.model.max_tokens < 1:
            raise ConfigurationError("model.max_tokens must be a positive number")
        for name in (
            "connect_timeout",
            "list_timeout",
            "call_timeout",
            "session_timeout",
            "catalog_ttl",
        ):
            if getattr(self.mcp, name) <= 0:
                raise ConfigurationError(f"mcp.{name} must be positive")
        if not self.mcp.url.startswith(("http://", "https://")):
            raise ConfigurationError(f"mcp.url must be an http(s) URL, got {self.mcp.url!r}")


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
