from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from revscope.constants import (
    DEFAULT_MAX_COUNT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_STREAM_BUFFER_SIZE,
    DEFAULT_YIELD_INTERVAL_MS,
    TERMINATION_GRACE_PERIOD,
)
from revscope.exceptions import ConfigError
from revscope.logging import get_logger
from revscope.vcs.flags import LogOptions

__all__ = [
    "CommandConfig",
    "DiffConfig",
    "FileHistoryConfig",
    "JobConfig",
    "RevscopeConfig",
    "get_user_config_path",
    "load_config",
]

logger = get_logger(__name__)

PROJECT_CONFIG_NAME = "revscope.yaml"


class CommandConfig(BaseModel):
    """Executables used for each backend.

    Attributes:
        git_cmd: Command vector for git (default: ``["git"]``).
        hg_cmd: Command vector for Mercurial (default: ``["hg"]``).
    """

    git_cmd: list[str] = Field(default_factory=lambda: ["git"])
    hg_cmd: list[str] = Field(default_factory=lambda: ["hg"])

    @field_validator("git_cmd", "hg_cmd")
    @classmethod
    def check_not_empty(cls, v: list[str]) -> list[str]:
        if not v or not v[0]:
            raise ValueError("command vector must name an executable")
        return v


class JobConfig(BaseModel):
    """Settings for subprocess jobs and history streaming.

    Attributes:
        max_retries: Re-runs for jobs whose output fails validation.
        retry_delay: Initial backoff between re-runs in seconds.
        yield_interval_ms: Wall time a history driver may run before yielding.
        termination_grace_period: Seconds between SIGTERM and SIGKILL.
        stream_buffer_size: History events buffered ahead of the consumer.
    """

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=10)
    retry_delay: float = Field(default=DEFAULT_RETRY_DELAY, ge=0.0, le=5.0)
    yield_interval_ms: float = Field(default=DEFAULT_YIELD_INTERVAL_MS, gt=0.0, le=1000.0)
    termination_grace_period: float = Field(
        default=TERMINATION_GRACE_PERIOD, gt=0.0, le=60.0
    )
    stream_buffer_size: int = Field(default=DEFAULT_STREAM_BUFFER_SIZE, ge=1, le=100000)


class DiffConfig(BaseModel):
    """Settings for diff file lists.

    Attributes:
        show_untracked: List untracked files. None defers to the repository
            (``status.showUntrackedFiles`` for git).
    """

    show_untracked: bool | None = None


def _single_file_defaults() -> LogOptions:
    return LogOptions(follow=True, diff_merges="combined", max_count=DEFAULT_MAX_COUNT)


def _multi_file_defaults() -> LogOptions:
    return LogOptions(diff_merges="first-parent", max_count=DEFAULT_MAX_COUNT)


class FileHistoryConfig(BaseModel):
    """Default history options, chosen by whether a single file is traced.

    Example revscope.yaml:
        file_history:
          single_file:
            follow: true
            max_count: 512
          multi_file:
            diff_merges: first-parent
    """

    single_file: LogOptions = Field(default_factory=_single_file_defaults)
    multi_file: LogOptions = Field(default_factory=_multi_file_defaults)

    def defaults_for(self, single_file: bool) -> LogOptions:
        return self.single_file if single_file else self.multi_file


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source that loads one YAML file."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file = yaml_file
        self._config_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            try:
                with open(yaml_file) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(
                    message=f"Invalid YAML in {yaml_file}: {e}",
                    field=None,
                    value=None,
                ) from e
            if loaded is None:
                logger.warning("config_file_empty", path=str(yaml_file))
            elif not isinstance(loaded, dict):
                raise ConfigError(
                    message=f"Top level of {yaml_file} must be a mapping",
                    value=loaded,
                )
            else:
                self._config_data = loaded

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        if field_name in self._config_data:
            return self._config_data[field_name], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._config_data


class RevscopeConfig(BaseSettings):
    """Root configuration object."""

    model_config = SettingsConfigDict(
        env_prefix="REVSCOPE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    commands: CommandConfig = Field(default_factory=CommandConfig)
    jobs: JobConfig = Field(default_factory=JobConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    file_history: FileHistoryConfig = Field(default_factory=FileHistoryConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources.

        Priority (highest to lowest):
        1. Explicit keyword arguments
        2. Environment variables (REVSCOPE_*)
        3. Project YAML config (./revscope.yaml)
        4. User YAML config (~/.config/revscope/config.yaml)
        """
        return (
            init_settings,
            env_settings,
            YamlConfigSource(settings_cls, Path.cwd() / PROJECT_CONFIG_NAME),
            YamlConfigSource(settings_cls, get_user_config_path()),
        )


def get_user_config_path() -> Path:
    """Get the path to the user configuration file.

    Returns:
        Path to ~/.config/revscope/config.yaml
    """
    return Path.home() / ".config" / "revscope" / "config.yaml"


def load_config(config_path: Path | None = None) -> RevscopeConfig:
    """Load configuration with hierarchy: defaults -> user -> project -> env.

    Args:
        config_path: Explicit config file. Its values take precedence over
            every other source.

    Returns:
        RevscopeConfig instance with merged configuration.

    Raises:
        ConfigError: If configuration is invalid.
    """
    explicit: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}", value=str(config_path))
        explicit = YamlConfigSource(RevscopeConfig, config_path)()

    try:
        return RevscopeConfig(**explicit)
    except ValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error["loc"])
        raise ConfigError(
            message=f"Invalid configuration: {first_error['msg']}",
            field=field,
            value=first_error.get("input"),
        ) from e
