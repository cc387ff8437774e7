from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from url_poller.poller.cache_slot import resolve_cache_paths
from url_poller.poller.models import PollPolicy, ResourceTarget


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Directory holding the master and candidate files; a temporary one is created when unset
    cache_dir: Optional[str] = None
    # Absolute path inside cache_dir, or a bare file name; defaults to "master"
    master_file: Optional[str] = None

    @model_validator(mode="after")
    def _check_master_file(self) -> CacheSettings:
        resolve_cache_paths(self.cache_dir, self.master_file)
        return self


class PollerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    target: ResourceTarget
    policy: PollPolicy = PollPolicy()
    cache: CacheSettings = CacheSettings()


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = Field(default=7, ge=0)


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Empty disables file logging
    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "WARNING"
    file: FileLoggingSettings = FileLoggingSettings()


class CommandSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Program and arguments run on every change; "{}" is replaced by the master file path
    argv: Sequence[str] = ()
    # Keep polling even when the command exits non-zero
    keep_going: bool = False


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    poller: PollerSettings
    logging: LoggingSettings = LoggingSettings()
    command: CommandSettings = CommandSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Inputs for the configuration loader.

    Precedence, lowest first: model defaults, YAML file, environment variables,
    then ``overrides`` (typically command-line options).
    """

    yaml_path: Optional[str] = None
    env_prefix: str = "URL_POLLER__"
    dotenv_path: Optional[str] = ".env"
    overrides: Mapping[str, Any] = field(default_factory=dict)
