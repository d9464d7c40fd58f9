"""
User settings for lousy-agents.

Reads configuration from ``~/.config/lousy-agents/config.toml`` (POSIX) or
``%APPDATA%/lousy-agents/config.toml`` (Windows).  Environment variables
override config-file values.

Settings are loaded once per command invocation and passed down::

    from .settings import load_settings
    settings = load_settings()
    print(settings.log_level)
"""

import logging
import os
import platform
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .formatters import FORMAT_CHOICES

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _default_config_dir() -> Path:
    """Return the platform-appropriate config directory."""
    if platform.system() == "Windows":
        appdata = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        return Path(appdata) / "lousy-agents"
    return Path.home() / ".config" / "lousy-agents"


def default_config_path() -> Path:
    return _default_config_dir() / "config.toml"


@dataclass
class Settings:
    """Resolved settings (config file + env var overrides)."""

    # [logging]
    log_level: str = "WARNING"

    # [github]
    github_token: str = ""

    # [lint]
    default_format: str = "human"

    # Path to the config file that was loaded (empty string if none)
    config_file: str = ""


def _parse_log_level(raw: object, source: str) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        logger.warning("Ignoring unknown log level %r from %s", raw, source)
        return None
    return level


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from the config file, then apply env var overrides."""
    settings = Settings()
    path = config_path or default_config_path()

    if path.is_file():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
            settings.config_file = str(path)

            level = _parse_log_level(data.get("logging", {}).get("level"), str(path))
            if level:
                settings.log_level = level

            github = data.get("github", {})
            settings.github_token = str(github.get("token", "")).strip()

            fmt = data.get("lint", {}).get("default_format")
            if fmt in FORMAT_CHOICES:
                settings.default_format = fmt
            elif fmt is not None:
                logger.warning("Ignoring unknown lint format %r in %s", fmt, path)

            logger.debug("Loaded settings from %s", path)
        except (OSError, tomllib.TOMLDecodeError, AttributeError):
            logger.warning("Failed to parse config file %s", path, exc_info=True)

    # Env var overrides take priority over the config file
    env_level = _parse_log_level(os.environ.get("LOUSY_AGENTS_LOG_LEVEL"), "LOUSY_AGENTS_LOG_LEVEL")
    if env_level:
        settings.log_level = env_level

    for var in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(var, "").strip()
        if token:
            settings.github_token = token
            break

    return settings
