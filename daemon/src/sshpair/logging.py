"""Logging configuration for sshpair.

All modules log through children of the ``sshpair`` logger. In verbose
mode the aiohttp access log is routed to the same handlers, so every
request an accepter makes shows up next to the pairing events.
"""

import logging
from pathlib import Path

from sshpair.config import Config

LOGGER_NAME = "sshpair"
ACCESS_LOGGER_NAME = "aiohttp.access"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger: logging.Logger | None = None


def _level(config: Config, verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(config.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _handlers(config: Config) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Config, verbose: bool = False) -> logging.Logger:
    """Configure the sshpair logger once per process.

    Args:
        config: Supplies ``log_level`` and the optional ``log_file``.
        verbose: Force DEBUG and include the HTTP access log.

    Returns:
        The ``sshpair`` logger. Later calls return it unchanged.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level(config, verbose))
    logger.handlers.clear()
    handlers = _handlers(config)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    if verbose:
        access = logging.getLogger(ACCESS_LOGGER_NAME)
        access.setLevel(logging.INFO)
        access.handlers.clear()
        for handler in handlers:
            access.addHandler(handler)
        access.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    for name in (LOGGER_NAME, ACCESS_LOGGER_NAME):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        target.propagate = True
    _logger = None
