"""Run options and images configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from image_shepherd.entities.images import ImageSpec, MatchConstraints

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes"}


class ConfigError(Exception):
    """The images configuration could not be read or validated."""


class RunOptions(BaseSettings):
    """Run-scoped settings, built once and passed down to the engine.

    Every field can be overridden via IMAGE_SHEPHERD_* environment variables
    or a .env file::

        export IMAGE_SHEPHERD_OWNER_PROJECT_ID=3f1c...
        export IMAGE_SHEPHERD_REQUIRE_PUBLIC=yes
        export IMAGE_SHEPHERD_UPLOAD_TIMEOUT_SECS=9000

    Timeout overrides that are not positive integers are ignored in favour
    of the default.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_SHEPHERD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Matching constraints
    owner_project_id: str = ""
    require_protected: bool = False
    require_public: bool = False

    # Per-phase timeouts (seconds)
    list_timeout_secs: int = 60
    probe_timeout_secs: int = 60
    download_timeout_secs: int = 300
    upload_timeout_secs: int = 6000
    tool_timeout_secs: int = 3600

    work_dir: Path = Path(".")
    dry_run: bool = False

    @field_validator("owner_project_id", mode="before")
    @classmethod
    def strip_owner(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("require_protected", "require_public", "dry_run", mode="before")
    @classmethod
    def parse_flag(cls, v: Any) -> Any:
        """Only true/1/yes (any case) enable a flag given as text."""
        if isinstance(v, str):
            return v.strip().lower() in _TRUE_VALUES
        return v

    @field_validator(
        "list_timeout_secs",
        "probe_timeout_secs",
        "download_timeout_secs",
        "upload_timeout_secs",
        "tool_timeout_secs",
        mode="before",
    )
    @classmethod
    def positive_or_default(cls, v: Any, info: ValidationInfo) -> Any:
        default = cls.model_fields[info.field_name].default
        try:
            seconds = int(v)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid %s=%r; using %d", info.field_name, v, default)
            return default
        if seconds <= 0:
            logger.warning("Ignoring non-positive %s=%r; using %d", info.field_name, v, default)
            return default
        return seconds

    @property
    def constraints(self) -> MatchConstraints:
        return MatchConstraints(
            owner=self.owner_project_id,
            require_protected=self.require_protected,
            require_public=self.require_public,
        )


class ImagesConfig(BaseModel):
    """The images.yaml document."""

    images: list[ImageSpec] = Field(default_factory=list)

    @field_validator("images", mode="before")
    @classmethod
    def default_images(cls, v: Any) -> Any:
        return [] if v is None else v


def load_images_config(path: Path) -> ImagesConfig:
    """Read and validate an images configuration file.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or invalid.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Failed to read config file {path}: {e}"
        raise ConfigError(msg) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        msg = f"Failed to parse YAML in {path}: {e}"
        raise ConfigError(msg) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Expected a mapping at the top of {path}, got {type(data).__name__}"
        raise ConfigError(msg)

    try:
        config = ImagesConfig.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid images configuration in {path}: {e}"
        raise ConfigError(msg) from e

    logger.info("Loaded %d image specs from %s", len(config.images), path)
    return config
