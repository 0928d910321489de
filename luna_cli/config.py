"""Configuration loading and validation.

Settings are resolved in this order (first hit wins):

    1. explicit overrides (command-line flags)
    2. environment variables (after loading ~/.luna/.env, then ./.env)
    3. ~/.luna/config.yaml
    4. DEFAULT_CONFIG

LUNA_HOME overrides the ~/.luna location.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from luna_constants import (
    DEFAULT_AGENT_NAME,
    DEFAULT_LOGS_DIR,
    DEFAULT_MODEL,
    LUNA_HOME_ENV,
    OPENROUTER_BASE_URL,
)

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "agent_name": DEFAULT_AGENT_NAME,
    "model": DEFAULT_MODEL,
    "base_url": OPENROUTER_BASE_URL,
    "logs_dir": DEFAULT_LOGS_DIR,
    "max_steps": 5,
    "title_interval": 5,
    "enable_cache": True,
    "command_timeout": 60,
}

# setting name -> environment variable
ENV_OVERRIDES = {
    "agent_name": "AGENT_NAME",
    "model": "LUNA_MODEL",
    "base_url": "LUNA_BASE_URL",
    "logs_dir": "LUNA_LOGS_DIR",
    "max_steps": "LUNA_MAX_STEPS",
    "title_interval": "LUNA_TITLE_INTERVAL",
    "enable_cache": "LUNA_ENABLE_CACHE",
    "command_timeout": "TERMINAL_TIMEOUT",
}

API_KEY_ENVS = ("OPENROUTER_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY")


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""
    pass


@dataclass
class AgentSettings:
    agent_name: str
    model: str
    base_url: str
    logs_dir: Path
    max_steps: int
    title_interval: int
    enable_cache: bool
    command_timeout: int
    api_key: Optional[str] = None


def get_luna_home() -> Path:
    return Path(os.getenv(LUNA_HOME_ENV, Path.home() / ".luna"))


def load_env(project_dir: Path = None) -> Optional[Path]:
    """Load ``LUNA_HOME/.env``, falling back to the project ``.env``.

    Returns the file that was loaded, if any. Existing environment variables
    are never overridden.
    """
    candidates = [get_luna_home() / ".env", Path(project_dir or Path.cwd()) / ".env"]
    for env_path in candidates:
        if not env_path.exists():
            continue
        try:
            load_dotenv(dotenv_path=env_path, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(dotenv_path=env_path, encoding="latin-1")
        logger.info("Loaded environment variables from %s", env_path)
        return env_path
    logger.info("No .env file found. Using system environment variables.")
    return None


def load_config(config_path: Path = None) -> Dict[str, Any]:
    """Read config.yaml merged over DEFAULT_CONFIG.

    A missing file yields the defaults; an unreadable or non-mapping file is
    logged and ignored.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = config_path or get_luna_home() / "config.yaml"
    if not config_path.exists():
        return config
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return config
    if not isinstance(loaded, dict):
        logger.warning("Ignoring config %s: top level is not a mapping", config_path)
        return config
    for key, value in loaded.items():
        if key in DEFAULT_CONFIG and value is not None:
            config[key] = value
    return config


def _coerce(key: str, value: Any) -> Any:
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"{key} must be an integer, got {value!r}")
    return str(value)


def resolve_settings(overrides: Dict[str, Any] = None, config: Dict[str, Any] = None) -> AgentSettings:
    """Combine overrides, environment, config file and defaults.

    Raises:
        ConfigValidationError: if a numeric setting is not a number or is < 1.
    """
    config = config if config is not None else load_config()
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    values: Dict[str, Any] = {}
    for key in DEFAULT_CONFIG:
        if key in overrides:
            raw = overrides[key]
        elif os.getenv(ENV_OVERRIDES[key]):
            raw = os.getenv(ENV_OVERRIDES[key])
        else:
            raw = config.get(key, DEFAULT_CONFIG[key])
        values[key] = _coerce(key, raw)

    for key in ("max_steps", "title_interval", "command_timeout"):
        if values[key] < 1:
            raise ConfigValidationError(f"{key} must be at least 1, got {values[key]}")

    api_key = overrides.get("api_key")
    if not api_key:
        api_key = next((os.getenv(name) for name in API_KEY_ENVS if os.getenv(name)), None)

    return AgentSettings(
        agent_name=values["agent_name"],
        model=values["model"],
        base_url=values["base_url"].rstrip("/"),
        logs_dir=Path(values["logs_dir"]).expanduser(),
        max_steps=values["max_steps"],
        title_interval=values["title_interval"],
        enable_cache=values["enable_cache"],
        command_timeout=values["command_timeout"],
        api_key=api_key,
    )


def validate_api_key(settings: AgentSettings) -> Tuple[bool, str]:
    """Check that an inference provider key is configured.

    Returns:
        (is_valid, message) tuple
    """
    if settings.api_key:
        return (True, "Inference provider configured")
    return (False, "No inference provider configured. Set " + ", ".join(API_KEY_ENVS[:-1])
            + f" or {API_KEY_ENVS[-1]}")
