"""Process-wide logging setup for the EAA Assistant."""

import logging

from .config import AssistantConfig

_DEFAULT_LEVELS = {
    "development": logging.DEBUG,
    "test": logging.WARNING,
    "production": logging.INFO,
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def resolve_log_level(config: AssistantConfig) -> int:
    """LOG_LEVEL wins over the environment default."""
    if config.server.log_level:
        level = logging.getLevelName(config.server.log_level.upper())
        if isinstance(level, int):
            return level
    return _DEFAULT_LEVELS.get(config.server.environment, logging.INFO)


def configure_logging(config: AssistantConfig) -> int:
    """Configure the root logger once at startup and return the level used."""
    level = resolve_log_level(config)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("eaa_assistant").setLevel(level)
    # Third-party HTTP clients are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))
    return level
