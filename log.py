"""
Logger setup shared by all modules
"""
import logging
import sys
from pathlib import Path
from typing import Optional

__all__ = ["get_logger", "configure"]

DEFAULT_FORMAT = '%(asctime)s [%(name)s] [%(levelname)s]: %(message)s'

_level = "INFO"
_log_file: Optional[Path] = None
_loggers = []


def _add_file_handler(logger: logging.Logger, log_file: Path):
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    logger.addHandler(file_handler)


def configure(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Apply level/file to loggers already handed out and to the ones created later."""
    global _level, _log_file
    _level = log_level.upper()
    new_file = log_file is not None and log_file != _log_file
    _log_file = log_file
    for logger in _loggers:
        logger.setLevel(getattr(logging, _level, logging.INFO))
        if new_file:
            _add_file_handler(logger, log_file)


def get_logger(name: str, log_level: Optional[str] = None, log_file: Optional[Path] = None) -> logging.Logger:
    """
    Get or create a logger.

    Args:
        name: Logger name (typically __name__ from calling module)
        log_level: DEBUG, INFO, WARNING, ERROR, CRITICAL (defaults to configured level)
        log_file: Optional path to log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Nie dokładamy handlerów drugi raz
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, (log_level or _level).upper(), logging.INFO))

    console_handler = logging.StreamHandler(stream=sys.stderr)
    console_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    logger.addHandler(console_handler)

    log_file = log_file or _log_file
    if log_file:
        _add_file_handler(logger, log_file)

    _loggers.append(logger)
    return logger
