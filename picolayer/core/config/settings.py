"""
Settings — process-wide configuration resolved from the environment.

picolayer has no config file: container build scripts drive it with
flags and ``PICOLAYER_*`` environment variables. ``Settings.from_env``
reads them once at startup; everything downstream receives the
resulting model explicitly.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from picolayer.core.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PICOLAYER_"

DEFAULT_TEMP_ROOT = Path("/tmp/picolayer")
DEFAULT_LOCK_DIR = Path("/tmp/picolayer")
DEFAULT_GITHUB_API = "https://api.github.com"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class Settings(BaseModel):
    """Resolved runtime configuration."""

    log_level: str = "WARNING"
    log_file: Path | None = None
    log_file_level: str | None = None

    analytics_enabled: bool = True
    verify_cache: bool = True

    temp_root: Path = DEFAULT_TEMP_ROOT
    lock_dir: Path = DEFAULT_LOCK_DIR

    github_api: str = DEFAULT_GITHUB_API
    github_token: str | None = Field(default=None, repr=False)
    user_agent: str = "picolayer"
    http_timeout: int = 60

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``environ`` (default: ``os.environ``).

        Raises:
            ConfigError: If a variable holds a value that cannot be parsed.
        """
        env = os.environ if environ is None else environ
        data: dict[str, object] = {}

        if level := env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            data["log_level"] = level.upper()
        if log_file := env.get(f"{ENV_PREFIX}LOG_FILE"):
            data["log_file"] = log_file
        if file_level := env.get(f"{ENV_PREFIX}LOG_FILE_LEVEL"):
            data["log_file_level"] = file_level.upper()

        no_analytics = env.get(f"{ENV_PREFIX}NO_ANALYTICS")
        if no_analytics is not None and no_analytics.strip().lower() in _TRUE:
            data["analytics_enabled"] = False

        verify = env.get(f"{ENV_PREFIX}VERIFY_CACHE")
        if verify is not None:
            data["verify_cache"] = _parse_bool(f"{ENV_PREFIX}VERIFY_CACHE", verify)

        if temp_dir := env.get(f"{ENV_PREFIX}TEMP_DIR"):
            data["temp_root"] = temp_dir
        if lock_dir := env.get(f"{ENV_PREFIX}LOCK_DIR"):
            data["lock_dir"] = lock_dir
        if api := env.get(f"{ENV_PREFIX}GITHUB_API"):
            data["github_api"] = api.rstrip("/")
        if token := env.get("GITHUB_TOKEN"):
            data["github_token"] = token

        try:
            settings = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid picolayer environment: {e}") from e

        if not isinstance(getattr(logging, settings.log_level, None), int):
            raise ConfigError(f"Unknown log level: {settings.log_level}")
        return settings


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean (got {raw!r})")
