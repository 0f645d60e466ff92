"""Configuration management for Loopwright."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.loopwright/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_AGENT_NAME = "AI-Worker"
DEFAULT_AGENT_DESCRIPTION = "Autonomous AI Agent that works towards its goals one command at a time"


class ModelConfig(BaseModel):
    """Chat model configuration."""

    provider: Literal["openai", "ollama"] = "openai"
    model: str = "gpt-3.5-turbo"
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.8
    # Overrides the per-model context window when set.
    token_limit: int | None = None
    reply_tokens: int = 1000
    request_timeout_seconds: float = 120.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 20.0


class EmbeddingsConfig(BaseModel):
    """Embedding provider configuration."""

    provider: Literal["openai", "ollama", "local_hash"] = "local_hash"
    model: str = "text-embedding-ada-002"
    api_key: str = ""
    base_url: str = ""
    # Expected vector size; inferred from the first stored record when unset.
    dimensions: int | None = None
    request_timeout_seconds: float = 30.0


class AgentConfig(BaseModel):
    """Agent persona configuration."""

    name: str = DEFAULT_AGENT_NAME
    description: str = DEFAULT_AGENT_DESCRIPTION
    goals: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)


class ContextConfig(BaseModel):
    """Prompt assembly configuration."""

    history_window: int = 10
    memory_results: int = 5
    include_tools_prompt: bool = True
    json_extraction_fallback: bool = True


class WebSearchToolConfig(BaseModel):
    """Web search tool configuration."""

    api_key: str = ""
    cx_id: str = ""
    base_url: str = "https://www.googleapis.com/customsearch/v1"
    max_results: int = 8
    timeout: int = 20


class WebPageScraperToolConfig(BaseModel):
    """Web page scraper tool configuration."""

    max_chars: int = 4000
    chunk_chars: int = 1500
    timeout: int = 30


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "web_search",
        "web_page_scraper",
    ]
    timeout_seconds: float = 60.0
    web_search: WebSearchToolConfig = Field(default_factory=WebSearchToolConfig)
    web_page_scraper: WebPageScraperToolConfig = Field(default_factory=WebPageScraperToolConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Loopwright."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="LOOPWRIGHT_",
        env_file=".env",
        env_nested_delimiter="__",
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
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML, with LOOPWRIGHT_* env vars for unset sections."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


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
