"""Configuration management for the SEO pages agent."""

from contextvars import ContextVar
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


# Paths
DEFAULT_CONFIG_PATH = Path("~/.seopages-agent/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.seopages-agent/store.db").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

# YAML file read by the settings source while from_yaml() builds a Config.
_yaml_file: ContextVar[Path | None] = ContextVar("seopages_yaml_file", default=None)


class ModelConfig(BaseModel):
    """Completion endpoint configuration."""

    provider: str = "azure"
    model: str = "gpt-4.1"
    api_key: str = ""
    base_url: str = ""
    resource_name: str = ""
    api_version: str = "2024-10-21"
    temperature: float = 0.7
    max_tokens: int = 16000
    max_steps: int = 35


class ContextConfig(BaseModel):
    """Context window bounds and redaction thresholds."""

    max_turns: int = 8
    content_truncate_chars: int = 10000
    markup_truncate_chars: int = 1000
    soft_ceiling_chars: int = 300000
    strict_size_check: bool = False
    knowledge_max_chars: int = 50000
    record_outline_chars: int = 2000
    record_serp_chars: int = 1000
    record_keyword_chars: int = 500
    record_reference_urls: int = 10


class GenerationConfig(BaseModel):
    """Generation request limits."""

    # Full page workflows (research, drafting, images, save) take minutes.
    timeout_seconds: float = 300.0


class SkillsConfig(BaseModel):
    """Skill catalog and routing configuration."""

    disabled: list[str] = []
    classification_routes: dict[str, str] = {
        "blog": "blog-writer",
        "landing_page": "landing-page-writer",
        "comparison": "comparison-writer",
        "guide": "guide-writer",
        "listicle": "listicle-writer",
        "alternative": "alternative-page-generator",
    }
    default_tools: list[str] = []
    core_skill_id: str = "planning"


class StoreConfig(BaseModel):
    """Persistent store configuration."""

    path: str = str(DEFAULT_DB_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for the SEO pages agent."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SEOPAGES_",
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
        """Order sources: init kwargs, env, .env, YAML file, secrets."""
        sources: tuple[PydanticBaseSettingsSource, ...] = (init_settings, env_settings, dotenv_settings)
        yaml_file = _yaml_file.get()
        if yaml_file is not None:
            sources += (YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),)
        return sources + (file_secret_settings,)

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file; environment variables take precedence."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        token = _yaml_file.set(config_path)
        try:
            return cls()
        finally:
            _yaml_file.reset(token)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration, preferring env vars over YAML."""
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
