"""Settings for yuque-mirror, powered by :mod:`pydantic_settings`.

Precedence (highest first): explicit overrides (CLI flags), ``YUQUE_*``
environment variables, the ``[mirror]`` table of an optional TOML file,
then the defaults declared here.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from yuque_mirror.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "https://www.yuque.com"
DEFAULT_OUTPUT_DIR = Path("./storage")
DEFAULT_CONCURRENCY = 10
UNCATEGORIZED_TITLE = "_未分类文档"

ENV_PREFIX = "YUQUE_"
META_DIR_NAME = ".meta"
ASSETS_DIR_NAME = "assets"
TEMP_DIR_NAME = ".temp"


class MirrorSettings(BaseSettings):
    """Runtime settings for one crawl/build invocation."""

    model_config = SettingsConfigDict(
        extra="forbid",
        validate_assignment=True,
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    token: str | None = Field(default=None, description="Personal access token")
    host: str = Field(default=DEFAULT_HOST, description="Service host, without trailing slash")
    user_agent: str = "yuque-mirror"
    output_dir: Path = DEFAULT_OUTPUT_DIR
    repo_dir: str | None = Field(
        default=None,
        description="Custom directory name for the repo root; '.' maps the repo onto the output root",
    )
    clean: bool = False
    skip_draft: bool = True
    uncategorized_title: str = UNCATEGORIZED_TITLE
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0, description="Initial backoff in seconds")

    @field_validator("host")
    @classmethod
    def _strip_host(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            msg = f"host must be an http(s) URL, got {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("repo_dir")
    @classmethod
    def _validate_repo_dir(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        if value != "." and ("/" in value or "\\" in value or value == ".."):
            msg = "repo_dir must be a single directory name or '.'"
            raise ValueError(msg)
        return value

    @property
    def meta_dir(self) -> Path:
        return self.output_dir / META_DIR_NAME

    @property
    def assets_dir(self) -> Path:
        return self.output_dir / ASSETS_DIR_NAME

    @property
    def root_passthrough(self) -> bool:
        """True when the repo root should *be* the output root."""
        return self.repo_dir == "."


def _env_overridden(field_name: str) -> bool:
    return f"{ENV_PREFIX}{field_name}".upper() in os.environ


def _read_config_file(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise ConfigError(msg)
    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        msg = f"Failed to parse {config_path}: {exc}"
        raise ConfigError(msg) from exc

    table = data.get("mirror", data)
    if not isinstance(table, dict):
        msg = f"[mirror] in {config_path} must be a table"
        raise ConfigError(msg)
    return table


def load_settings(config_path: Path | None = None, **overrides: Any) -> MirrorSettings:
    """Build :class:`MirrorSettings` from file, environment and overrides.

    ``None`` overrides are ignored so unset CLI options fall through to the
    lower layers.
    """
    merged: dict[str, Any] = {}
    if config_path is not None:
        file_data = _read_config_file(config_path)
        merged.update({key: value for key, value in file_data.items() if not _env_overridden(key)})
        logger.debug("Loaded settings file %s", config_path)

    merged.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return MirrorSettings(**merged)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        msg = f"Invalid configuration: {details}"
        raise ConfigError(msg) from exc
