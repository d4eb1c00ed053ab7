import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_BASE_URL = "https://api.todoist.com/api/v1"
DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_LOG_LEVEL = "info"
DEFAULT_DOTENV_DIR = "~/.config/todoist-mcp"

VALID_LOG_LEVELS = ("error", "warn", "info", "debug")
LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclasses.dataclass(frozen=True)
class APIConfiguration:
    token: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@dataclasses.dataclass(frozen=True)
class AppConfig:
    api: APIConfiguration
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS[self.log_level]


def load_env_file(dotenv_dir: str = DEFAULT_DOTENV_DIR) -> Optional[Path]:
    """Loads `<dotenv_dir>/.env` if it exists. Returns the path that was loaded."""
    dotenv_path = Path(dotenv_dir).expanduser() / ".env"
    if not dotenv_path.is_file():
        logging.info(f"No .env file at {dotenv_path}; using process environment only.")
        return None
    if load_dotenv(dotenv_path=dotenv_path, override=True):
        logging.info(f"Loaded environment variables from: {dotenv_path}")
        return dotenv_path
    logging.warning(f".env file at {dotenv_path} was empty or unreadable.")
    return None


def _parse_int(env: Mapping[str, str], name: str, default: int, low: int, high: int, message: str) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(message, {"variable": name})
    if not low <= value <= high:
        raise ConfigurationError(message, {"variable": name})
    return value


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Builds the application config from environment variables.

    Expected variables:
        TODOIST_API_TOKEN (required)
        TODOIST_API_BASE_URL, REQUEST_TIMEOUT (ms), RETRY_ATTEMPTS, LOG_LEVEL (optional)

    Raises:
        ConfigurationError: a variable is missing or out of range.
    """
    env = os.environ if env is None else env

    token = (env.get("TODOIST_API_TOKEN") or "").strip()
    if not token:
        raise ConfigurationError(
            "TODOIST_API_TOKEN environment variable is required. "
            "Please set it in your MCP client configuration or .env file."
        )
    if len(token) < 10:
        raise ConfigurationError(
            "TODOIST_API_TOKEN appears to be invalid. Please check your API token from Todoist settings."
        )

    timeout_ms = _parse_int(
        env, "REQUEST_TIMEOUT", DEFAULT_TIMEOUT_MS, 1000, 60000,
        "REQUEST_TIMEOUT must be between 1000 and 60000 milliseconds",
    )
    retry_attempts = _parse_int(
        env, "RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, 0, 10,
        "RETRY_ATTEMPTS must be between 0 and 10",
    )

    base_url = env.get("TODOIST_API_BASE_URL") or DEFAULT_BASE_URL
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError("TODOIST_API_BASE_URL must be a valid URL")

    log_level = (env.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).lower()
    if log_level not in VALID_LOG_LEVELS:
        raise ConfigurationError(f"LOG_LEVEL must be one of: {', '.join(VALID_LOG_LEVELS)}")

    return AppConfig(
        api=APIConfiguration(
            token=token,
            base_url=base_url.rstrip("/"),
            timeout_ms=timeout_ms,
            retry_attempts=retry_attempts,
        ),
        log_level=log_level,
    )


def config_summary(config: AppConfig) -> Dict[str, Any]:
    """Config view that is safe to log (never includes the token)."""
    return {
        "api": {
            "base_url": config.api.base_url,
            "timeout_ms": config.api.timeout_ms,
            "retry_attempts": config.api.retry_attempts,
            "has_token": bool(config.api.token),
        },
        "log_level": config.log_level,
    }
