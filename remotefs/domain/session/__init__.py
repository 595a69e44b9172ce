"""
Remote file session domain
"""
from .models import (
    FileType,
    FileEntry,
    SessionState,
    HealthSnapshot,
    RetryPolicy,
    SessionConfig,
    sort_entries,
)
from .cache import DirectoryCache
from .health import ConnectionHealth, HealthMonitor
from .resilience import is_retryable, retry_call, run_with_timeout, translate_error
from .service import RemoteFileSession
from .manager import SessionManager

__all__ = [
    "FileType",
    "FileEntry",
    "SessionState",
    "HealthSnapshot",
    "RetryPolicy",
    "SessionConfig",
    "sort_entries",
    "DirectoryCache",
    "ConnectionHealth",
    "HealthMonitor",
    "is_retryable",
    "retry_call",
    "run_with_timeout",
    "translate_error",
    "RemoteFileSession",
    "SessionManager",
]
