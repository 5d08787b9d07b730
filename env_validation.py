"""Environment variable validation and management."""

import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


_DEFAULTS: Dict[str, str] = {
    "DB_PATH": "data.db",
    "LOG_LEVEL": "INFO",
    "PRUNE_AFTER_DAYS": "30",
    "MAX_ACTIVE_RECOMMENDATIONS": "5",
    "DEFAULT_TEACHER_ID": "educator",
}

_INT_VARS = {"PRUNE_AFTER_DAYS": 1, "MAX_ACTIVE_RECOMMENDATIONS": 1}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_environment() -> None:
    """Apply defaults and validate configuration values.

    Raises EnvironmentError if validation fails.
    """
    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in _DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    for var, minimum in _INT_VARS.items():
        raw = os.getenv(var, "")
        try:
            parsed = int(raw)
        except ValueError:
            raise EnvironmentError(f"{var} must be an integer, got {raw!r}") from None
        if parsed < minimum:
            raise EnvironmentError(f"{var} must be at least {minimum}, got {parsed}")

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    if level not in _LOG_LEVELS:
        raise EnvironmentError(f"Invalid LOG_LEVEL: {level}")


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, value, default)
        return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
