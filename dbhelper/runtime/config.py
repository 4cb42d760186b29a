"""Tool configuration loading.

Configuration is optional. When present it is a YAML file with a top-level
``config:`` key; ``${VAR}``, ``${VAR:-default}`` and ``${VAR:?message}``
placeholders are substituted from the environment before parsing. Values
given on the command line always override the file.

Example ``dbhelper.yaml``::

    config:
      jobs: 4
      max_attempts: 3
      retry_base_delay: 2.0
      tool_dir: ${PG_BIN_DIR:-/usr/lib/postgresql/16/bin}
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dbhelper.copy.models import DEFAULT_MAX_ATTEMPTS, DEFAULT_PROGRESS_INTERVAL

CONFIG_ENV_VAR = "DBHELPER_CONFIG"
DEFAULT_CONFIG_PATH = Path("dbhelper.yaml")

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


class ToolConfig(BaseModel):
    """Defaults for copy runs."""

    model_config = ConfigDict(extra="forbid")

    jobs: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    progress_interval: float = Field(default=DEFAULT_PROGRESS_INTERVAL, gt=0)
    copy_timeout: int | None = Field(default=None, gt=0)
    connection_timeout: int | None = Field(default=None, gt=0)
    log_dir: Path | None = None
    tool_dir: Path | None = None


def substitute_env_vars(text: str) -> str:
    """Substitute environment variable placeholders in text.

    Supports formats:
    - ${VAR_NAME} - required variable (raises error if missing)
    - ${VAR_NAME:-default} - optional with default value
    - ${VAR_NAME:?error_message} - required with custom error message

    Raises:
        ValueError: If a required variable is not set
    """

    def replacer(match: re.Match[str]) -> str:
        expr = match.group(1)

        if ":-" in expr:
            name, default = expr.split(":-", 1)
            return os.getenv(name, default)

        if ":?" in expr:
            name, message = expr.split(":?", 1)
            value = os.getenv(name)
            if value is None:
                raise ValueError(f"Required environment variable {name}: {message}")
            return value

        value = os.getenv(expr)
        if value is None:
            raise ValueError(f"Required environment variable {expr} not set")
        return value

    return _PLACEHOLDER.sub(replacer, text)


def config_path() -> Path:
    """Config file location: ``$DBHELPER_CONFIG`` or ``./dbhelper.yaml``."""
    custom = os.getenv(CONFIG_ENV_VAR)
    return Path(custom) if custom else DEFAULT_CONFIG_PATH


def load_config(file_path: Path | None = None, *, env_file: Path | None = None) -> ToolConfig:
    """Load the tool configuration.

    A missing file is not an error; defaults are returned. ``.env`` is
    loaded first (without overriding the process environment) so its
    variables are available to placeholders.

    Args:
        file_path: YAML file to read (default: ``config_path()``)
        env_file: dotenv file to load (default: ``./.env`` if present)

    Returns:
        Validated ToolConfig

    Raises:
        ValueError: If the YAML is malformed, lacks the 'config' key, or
            fails validation
    """
    load_dotenv(env_file or Path(".env"), override=False)

    path = file_path or config_path()
    if not path.exists():
        if file_path is not None or os.getenv(CONFIG_ENV_VAR):
            raise ValueError(f"Config file not found: {path}")
        logger.debug(f"No config file at {path}; using defaults")
        config = ToolConfig()
    else:
        logger.debug(f"Loading configuration from {path}")
        config = _parse(path.read_text(encoding="utf-8"))

    if config.log_dir is None and os.getenv("LOG_DIR"):
        config = config.model_copy(update={"log_dir": Path(os.environ["LOG_DIR"])})
    return config


def _parse(content: str) -> ToolConfig:
    content = substitute_env_vars(content)
    try:
        loaded: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML: {e}") from e

    if not isinstance(loaded, dict) or "config" not in loaded:
        raise ValueError("Invalid YAML structure: missing 'config' key")

    try:
        return ToolConfig(**(loaded["config"] or {}))
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e
