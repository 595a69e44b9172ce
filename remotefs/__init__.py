"""
remotefs - remote file access over SSH/SFTP

Provides a shared connection pool and the services built on it:
- Remote file sessions with listing cache, retries, timeouts and health checks
- Background transfer queue with global and per-host concurrency caps
- Directory comparison and synchronization between local and remote trees
"""

__version__ = "0.1.0"

from .core import (
    RemoteClient,
    CommandResult,
    setup_logging,
    get_logger,
)
from .core.exceptions import (
    RemoteError,
    ConfigError,
    ConnectionError,
    AuthenticationError,
    PermissionDeniedError,
    NotFoundError,
    OperationTimeoutError,
    ChecksumMismatchError,
    FilenameEncodingError,
    TransferCancelledError,
    RetryExhaustedError,
)
from .domain.connection import AuthMethod, HostDescriptor, ConnectionPool
from .domain.session import FileEntry, FileType, SessionConfig, RemoteFileSession, SessionManager
from .domain.transfer import TransferCoordinator, TransferJob, JobStatus, TransferKind
from .domain.sync import DirectorySynchronizer, SyncEndpoint, SyncOptions, SyncItem, SyncDirection
from .adapters import RemoteFs, ConfigLoader, RemoteFsConfig

__all__ = [
    "__version__",
    "RemoteClient",
    "CommandResult",
    "setup_logging",
    "get_logger",
    "RemoteError",
    "ConfigError",
    "ConnectionError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "OperationTimeoutError",
    "ChecksumMismatchError",
    "FilenameEncodingError",
    "TransferCancelledError",
    "RetryExhaustedError",
    "AuthMethod",
    "HostDescriptor",
    "ConnectionPool",
    "FileEntry",
    "FileType",
    "SessionConfig",
    "RemoteFileSession",
    "SessionManager",
    "TransferCoordinator",
    "TransferJob",
    "JobStatus",
    "TransferKind",
    "DirectorySynchronizer",
    "SyncEndpoint",
    "SyncOptions",
    "SyncItem",
    "SyncDirection",
    "RemoteFs",
    "ConfigLoader",
    "RemoteFsConfig",
]
