# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.config",
#   "purpose": "Typed settings for the compiler, downloader, releaser and logging",
#   "sections": [
#     {
#       "id": "compilersettings",
#       "name": "CompilerSettings",
#       "anchor": "class-compilersettings",
#       "kind": "class"
#     },
#     {
#       "id": "downloadersettings",
#       "name": "DownloaderSettings",
#       "anchor": "class-downloadersettings",
#       "kind": "class"
#     },
#     {
#       "id": "releasersettings",
#       "name": "ReleaserSettings",
#       "anchor": "class-releasersettings",
#       "kind": "class"
#     },
#     {
#       "id": "loggingsettings",
#       "name": "LoggingSettings",
#       "anchor": "class-loggingsettings",
#       "kind": "class"
#     },
#     {
#       "id": "releasekitconfig",
#       "name": "ReleaseKitConfig",
#       "anchor": "class-releasekitconfig",
#       "kind": "class"
#     },
#     {
#       "id": "environmentoverrides",
#       "name": "EnvironmentOverrides",
#       "anchor": "class-environmentoverrides",
#       "kind": "class"
#     },
#     {
#       "id": "load-config",
#       "name": "load_config",
#       "anchor": "function-load-config",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Typed configuration for ReleaseKit.

Settings are pydantic v2 models with ``extra="forbid"`` so typos in a config
mapping fail loudly. :func:`load_config` validates an optional mapping of
per-section overrides and then applies ``RELEASEKIT_*`` environment variables,
logging every override it applies.

Environment variables:

- ``RELEASEKIT_PARALLELISM``, ``RELEASEKIT_LD_FLAGS``
- ``RELEASEKIT_DOWNLOAD_TIMEOUT_S``, ``RELEASEKIT_ATTEMPT_TIMEOUT_S``,
  ``RELEASEKIT_DOWNLOAD_DIR``
- ``RELEASEKIT_BUCKET``, ``RELEASEKIT_REGION``, ``RELEASEKIT_ENDPOINT_URL``
- ``RELEASEKIT_LOG_LEVEL``, ``RELEASEKIT_LOG_DIR``
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ReleaseKit.errors import ConfigError

__all__ = [
    "CompilerSettings",
    "DownloaderSettings",
    "ReleaserSettings",
    "LoggingSettings",
    "ReleaseKitConfig",
    "EnvironmentOverrides",
    "load_config",
]

logger = logging.getLogger(__name__)

_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class CompilerSettings(BaseModel):
    """Compile pool sizing and default linker flags."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    parallelism: int = Field(default=2, ge=1, description="Concurrent toolchain processes")
    ld_flags: str = Field(default="", description="Linker flags for every build")
    queue_size: int = Field(default=100, ge=1, description="Pending work capacity")


class DownloaderSettings(BaseModel):
    """Cache location and timing for artifact downloads."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    timeout_s: float = Field(default=60.0, gt=0, description="Overall deadline per download")
    attempt_timeout_s: Optional[float] = Field(
        default=None, gt=0, description="Deadline per network attempt; defaults to timeout_s"
    )
    directory: Path = Field(default=Path("../bin"), description="Download cache directory")
    user_agent: str = Field(default="ReleaseKit (downloader)")


class ReleaserSettings(BaseModel):
    """Destination bucket and S3 client options."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    bucket: str = Field(default="circleci-binary-releases", min_length=1)
    region: Optional[str] = Field(default=None, description="AWS region for the S3 client")
    endpoint_url: Optional[str] = Field(default=None, description="S3-compatible endpoint override")


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    level: str = Field(default="INFO")
    log_dir: Optional[Path] = None
    json_format: bool = Field(default=False, description="Emit JSON lines on the console")

    @field_validator("level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _LEVELS:
            raise ValueError(f"level must be one of {sorted(_LEVELS)}")
        return upper


class ReleaseKitConfig(BaseModel):
    """All settings grouped by component."""

    model_config = ConfigDict(extra="forbid")

    compiler: CompilerSettings = Field(default_factory=CompilerSettings)
    downloader: DownloaderSettings = Field(default_factory=DownloaderSettings)
    releaser: ReleaserSettings = Field(default_factory=ReleaserSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class EnvironmentOverrides(BaseSettings):
    parallelism: Optional[int] = Field(default=None, alias="RELEASEKIT_PARALLELISM")
    ld_flags: Optional[str] = Field(default=None, alias="RELEASEKIT_LD_FLAGS")
    download_timeout_s: Optional[float] = Field(default=None, alias="RELEASEKIT_DOWNLOAD_TIMEOUT_S")
    attempt_timeout_s: Optional[float] = Field(default=None, alias="RELEASEKIT_ATTEMPT_TIMEOUT_S")
    download_dir: Optional[Path] = Field(default=None, alias="RELEASEKIT_DOWNLOAD_DIR")
    bucket: Optional[str] = Field(default=None, alias="RELEASEKIT_BUCKET")
    region: Optional[str] = Field(default=None, alias="RELEASEKIT_REGION")
    endpoint_url: Optional[str] = Field(default=None, alias="RELEASEKIT_ENDPOINT_URL")
    log_level: Optional[str] = Field(default=None, alias="RELEASEKIT_LOG_LEVEL")
    log_dir: Optional[Path] = Field(default=None, alias="RELEASEKIT_LOG_DIR")

    model_config = SettingsConfigDict(env_prefix="RELEASEKIT_", case_sensitive=False, extra="ignore")


# (override field, section, section field)
_OVERRIDE_TARGETS = (
    ("parallelism", "compiler", "parallelism"),
    ("ld_flags", "compiler", "ld_flags"),
    ("download_timeout_s", "downloader", "timeout_s"),
    ("attempt_timeout_s", "downloader", "attempt_timeout_s"),
    ("download_dir", "downloader", "directory"),
    ("bucket", "releaser", "bucket"),
    ("region", "releaser", "region"),
    ("endpoint_url", "releaser", "endpoint_url"),
    ("log_level", "logging", "level"),
    ("log_dir", "logging", "log_dir"),
)


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}")
    return "Configuration validation failed:\n  " + "\n  ".join(messages)


def _apply_env_overrides(config: ReleaseKitConfig) -> None:
    env = EnvironmentOverrides()
    for name, section, field in _OVERRIDE_TARGETS:
        value = getattr(env, name)
        if value is None:
            continue
        setattr(getattr(config, section), field, value)
        logger.info("Config overridden: %s=%s", name, value, extra={"stage": "config"})


def load_config(overrides: Optional[Mapping[str, Any]] = None) -> ReleaseKitConfig:
    """Build the effective configuration.

    Args:
        overrides: Optional mapping shaped like :class:`ReleaseKitConfig`
            (``{"compiler": {"parallelism": 4}, ...}``).

    Raises:
        ConfigError: If the mapping or an environment override is invalid.
    """
    try:
        config = ReleaseKitConfig.model_validate(dict(overrides or {}))
        _apply_env_overrides(config)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc
    return config
