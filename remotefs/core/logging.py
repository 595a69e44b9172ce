"""
Rich-based logging for the remotefs package

Modules log through ``get_logger(__name__)``; nothing is printed until an
application calls ``setup_logging``. Handlers hang off the ``remotefs``
package logger, so the host application's root logger is left alone.
"""
import sys
import logging
from typing import List, Optional
from pathlib import Path

from rich.logging import RichHandler
from rich.console import Console
from rich.traceback import install as install_traceback

PACKAGE_LOGGER = "remotefs"

FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"

_stdout_console = Console(file=sys.stdout)
_stderr_console = Console(file=sys.stderr)

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())

# Handlers owned by the last setup_logging call
_installed: List[logging.Handler] = []


def _level(name: str, default: int) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rich_tracebacks: bool = True,
    transport_level: str = "WARNING",
) -> logging.Logger:
    """
    Route remotefs logs to stderr through rich, and optionally to a file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Level name for remotefs loggers; unknown names mean INFO
        log_file: Plain-text log file, parent directories are created
        rich_tracebacks: Render uncaught exceptions with rich
        transport_level: Level for paramiko, whose INFO output covers every
            banner and auth negotiation

    Returns:
        The package logger
    """
    log_level = _level(level, logging.INFO)

    if rich_tracebacks:
        install_traceback(console=_stderr_console, show_locals=False, width=120)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    transport_logger = logging.getLogger("paramiko")
    for handler in _installed:
        package_logger.removeHandler(handler)
        transport_logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    package_logger.setLevel(log_level)
    package_logger.propagate = False

    console_handler = RichHandler(
        console=_stderr_console,
        show_path=log_level <= logging.DEBUG,
        rich_tracebacks=rich_tracebacks,
        markup=False,
    )
    package_logger.addHandler(console_handler)
    _installed.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        package_logger.addHandler(file_handler)
        _installed.append(file_handler)

    transport_logger.setLevel(_level(transport_level, logging.WARNING))
    transport_logger.addHandler(console_handler)

    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, e.g. ``get_logger(__name__)``"""
    return logging.getLogger(name)


def get_stdout_console() -> Console:
    """Console for user-facing output"""
    return _stdout_console


def get_stderr_console() -> Console:
    """Console shared with the log handler"""
    return _stderr_console
