"""
Core infrastructure layer
"""
from .client import RemoteClient, CommandResult
from .constants import *
from .exceptions import *
from .logging import setup_logging, get_logger, get_stdout_console, get_stderr_console
from .interfaces import ConnectionFactory, SecretStore, PromptProvider, LocalFileSystem
from .telemetry import Telemetry, get_telemetry
from .utils import (
    lookup_ssh_alias,
    normalize_remote_path,
    remote_parent,
    join_remote,
    format_speed,
    parse_speed,
)

__all__ = [
    "RemoteClient",
    "CommandResult",
    "setup_logging",
    "get_logger",
    "get_stdout_console",
    "get_stderr_console",
    "ConnectionFactory",
    "SecretStore",
    "PromptProvider",
    "LocalFileSystem",
    "Telemetry",
    "get_telemetry",
    "lookup_ssh_alias",
    "normalize_remote_path",
    "remote_parent",
    "join_remote",
    "format_speed",
    "parse_speed",
]
