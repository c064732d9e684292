import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from formulary.constants import (
    DEBUG_LOG_FORMAT,
    INFO_LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FILE_NAME,
    LOG_LEVEL_ENV_VAR,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

# Kept so reconfiguration can remove and close the previous file handler
_file_handler: Optional[RotatingFileHandler] = None


def _resolve_level(level_name: Optional[str], default: int = logging.INFO) -> int:
    """
    Translate a level name such as "debug" or "INFO" into a logging level.

    Returns `default` when the name is empty or not a known logging level.
    """
    if not level_name:
        return default
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        logger.warning(f"Invalid log level name: {level_name}. Using default.")
        return default
    return level


def add_file_logging(log_dir_path: Path, level_name: str = "INFO") -> Path:
    """
    Enable rotating file logging for the formulary logger.

    Creates the directory if necessary and attaches a RotatingFileHandler writing to
    `formulary.log` inside it. Any file handler previously installed by this module
    is removed and closed first.

    Returns:
        Path: The log file path.
    """
    global _file_handler
    if _file_handler and _file_handler in logger.handlers:
        logger.removeHandler(_file_handler)
        _file_handler.close()

    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file = log_dir_path / LOG_FILE_NAME

    file_log_level = _resolve_level(level_name)
    if file_log_level >= logging.INFO:
        file_formatter = logging.Formatter(INFO_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        file_formatter = logging.Formatter(DEBUG_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    _file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    _file_handler.setFormatter(file_formatter)
    _file_handler.setLevel(file_log_level)

    logger.addHandler(_file_handler)
    logger.info(
        f"File logging enabled at {log_file} with level {logging.getLevelName(file_log_level)}"
    )
    return log_file


def configure_logging(
    level_name: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the formulary logger with a Rich console handler and return it.

    Existing handlers are removed and propagation to the root logger is disabled.
    The level comes from `level_name`, then from the environment variable named by
    LOG_LEVEL_ENV_VAR, then defaults to INFO. When `log_dir` is given a rotating
    file handler is added as well.

    The returned logger is what callers hand to `RunContext`; nothing in the
    pipeline reaches for this module's globals.
    """
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        log_time_format=LOG_DATE_FORMAT,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    initial_level = _resolve_level(
        level_name or os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")
    )
    logger.addHandler(console_handler)
    logger.setLevel(initial_level)
    console_handler.setLevel(initial_level)

    if log_dir is not None:
        add_file_logging(log_dir, logging.getLevelName(initial_level))

    return logger
