"""Logging utilities for maestro.

Every maestro module logs through get_logger(__name__). The level is chosen
once per process: set_level() (the CLI's --log-level or logging.level from
the config file) wins over the MAESTRO_LOG_LEVEL environment variable, which
wins over INFO. set_level() also applies to loggers created before it was
called, so the transport's per-datagram DEBUG output (including hex dumps of
undecodable packets) follows the command-line setting.
"""
import logging
import sys
import os
import threading
from typing import Optional


LOG_LEVEL_ENV = "MAESTRO_LOG_LEVEL"
ROOT_NAME = "maestro"

# Thread-safe lock for logger initialization and level changes
_logger_init_lock = threading.Lock()
_level_override: Optional[str] = None


class MaestroFormatter(logging.Formatter):
    """Compact single-line formatter.

    Format: [{level[0]} {time} {module_basename[:9]}] {message}
    Example: [I 21:04:11.532 osc      ] Listening on 0.0.0.0:50123
    """

    def format(self, record):
        level_char = record.levelname[0]

        module_padded = record.name.split('.')[-1][:9].ljust(9)

        timestamp = self.formatTime(record, "%H:%M:%S")
        msecs = f"{record.msecs:03.0f}"

        line = f"[{level_char} {timestamp}.{msecs} {module_padded}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _resolve_level(level: Optional[str]) -> int:
    if level is None:
        level = _level_override or os.getenv(LOG_LEVEL_ENV, "INFO")
    return getattr(logging, level.upper(), logging.INFO)


def _maestro_loggers():
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if isinstance(logger, logging.Logger) and (name == ROOT_NAME or name.startswith(ROOT_NAME + ".")):
            yield logger


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get logger for a maestro component.

    Args:
        name: Component name (usually __name__)
        level: Optional level (DEBUG/INFO/WARNING/ERROR)
               Falls back to set_level(), then MAESTRO_LOG_LEVEL, then INFO

    Returns:
        Configured logger instance

    Example:
        >>> from maestro.log import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Connected to mixer")
        [I 21:04:11.532 mixer    ] Connected to mixer
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    with _logger_init_lock:
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(MaestroFormatter())
            logger.addHandler(handler)

    return logger


def set_level(level: Optional[str]) -> None:
    """Set the level of every maestro logger, existing and future.

    Passing None drops the override and goes back to MAESTRO_LOG_LEVEL/INFO.

    Example:
        >>> set_level("DEBUG")   # osc, mixer, cli and the emulator all log DEBUG
    """
    global _level_override
    with _logger_init_lock:
        _level_override = level.upper() if level else None
        resolved = _resolve_level(None)
        for logger in _maestro_loggers():
            logger.setLevel(resolved)
