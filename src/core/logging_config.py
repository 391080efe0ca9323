"""
Logging configuration for Client Pulse.

The web server and the CLI share one setup: a console handler plus an
optional rotating file handler on the root logger. CLIENT_PULSE_LOG_LEVEL
overrides the level passed by the caller so a deployed server can be made
verbose without a code change.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional


LOG_LEVEL_ENV = "CLIENT_PULSE_LOG_LEVEL"

LOG_FORMATS = {
    "standard": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    # Source location for chasing webhook and background task failures
    "detailed": "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d %(funcName)s): %(message)s",
}

# Client libraries that log every HTTP call at INFO
QUIET_LOGGERS = {
    "urllib3": logging.WARNING,
    "requests": logging.WARNING,
    "httpx": logging.WARNING,
    "anthropic": logging.INFO,
    "google": logging.WARNING,
    "msal": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "slowapi": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_FILE_BACKUPS = 5


def resolve_level(log_level: str) -> int:
    """Level from the environment override or the caller; unknown names fall back to INFO."""
    name = (os.getenv(LOG_LEVEL_ENV) or log_level or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_format: str = "standard",
) -> logging.Logger:
    """
    Configure application logging.

    Args:
        log_level: Logging level name, overridden by CLIENT_PULSE_LOG_LEVEL
        log_file: Path to log file (None = no file logging)
        log_to_console: Whether to log to console
        log_format: 'standard' or 'detailed'

    Returns:
        The configured root logger
    """
    formatter = logging.Formatter(LOG_FORMATS.get(log_format, LOG_FORMATS["standard"]), datefmt="%Y-%m-%d %H:%M:%S")
    level = resolve_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).info(
        f"Client Pulse logging ready: level={logging.getLevelName(level)}, file={log_file or 'none'}"
    )
    return root_logger
