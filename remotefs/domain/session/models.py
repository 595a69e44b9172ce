"""
Remote file session data models
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ...core.constants import (
    DEFAULT_CACHE_MAX_BYTES,
    DEFAULT_CACHE_TTL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_HEALTH_FAILURE_THRESHOLD,
    DEFAULT_HEALTH_HISTORY,
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_HEALTH_PROBE_TIMEOUT,
    DEFAULT_HIGH_LATENCY_MS,
    DEFAULT_INIT_TIMEOUT,
    DEFAULT_LATENCY_WARNING_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_OPERATION_TIMEOUT,
    DEFAULT_PATH_EXPAND_TIMEOUT,
    DEFAULT_RETRY_FACTOR,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_STALL_THRESHOLD,
)


class FileType(str, Enum):
    """Kind of filesystem node"""
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class SessionState(str, Enum):
    """Lifecycle of a RemoteFileSession"""
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    UNHEALTHY = "unhealthy"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class FileEntry:
    """One node of a directory listing"""
    name: str
    path: str
    size: int
    type: FileType
    mtime: float
    permissions: str = ""
    owner: str = ""
    group: str = ""
    link_target: Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.type == FileType.DIRECTORY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "type": self.type.value,
            "mtime": self.mtime,
            "permissions": self.permissions,
            "owner": self.owner,
            "group": self.group,
            "link_target": self.link_target,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileEntry":
        """Create from dictionary"""
        data = dict(data)
        data["type"] = FileType(data["type"])
        return cls(**data)


def sort_entries(entries: List[FileEntry]) -> List[FileEntry]:
    """Directories first, then lexical by name"""
    return sorted(entries, key=lambda e: (not e.is_dir, e.name))


@dataclass
class CacheEntry:
    """Cached listing of one directory"""
    entries: List[FileEntry]
    fetched_at: float
    last_access: float
    size: int
    access_count: int = 0


@dataclass
class HealthSnapshot:
    """Point-in-time view of a session's connection health"""
    host_id: str
    healthy: bool
    last_check: float
    consecutive_failures: int
    average_latency_ms: float
    latency_history: List[float] = field(default_factory=list)
    last_error: Optional[str] = None


@dataclass
class RetryPolicy:
    """Exponential backoff settings"""
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY
    factor: float = DEFAULT_RETRY_FACTOR

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)"""
        return min(self.initial_delay * (self.factor ** (attempt - 1)), self.max_delay)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "factor": self.factor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        """Create from dictionary"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


@dataclass
class SessionConfig:
    """Remote file session configuration"""
    # Directory cache
    cache_ttl: float = DEFAULT_CACHE_TTL
    cache_max_bytes: int = DEFAULT_CACHE_MAX_BYTES

    # Timeouts (seconds)
    init_timeout: float = DEFAULT_INIT_TIMEOUT
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    path_expand_timeout: float = DEFAULT_PATH_EXPAND_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT

    # Retry
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    # Health monitoring
    health_interval: float = DEFAULT_HEALTH_INTERVAL
    health_history: int = DEFAULT_HEALTH_HISTORY
    health_probe_timeout: float = DEFAULT_HEALTH_PROBE_TIMEOUT
    failure_threshold: int = DEFAULT_HEALTH_FAILURE_THRESHOLD
    high_latency_ms: float = DEFAULT_HIGH_LATENCY_MS
    latency_warning_ms: float = DEFAULT_LATENCY_WARNING_MS
    health_monitoring: bool = True

    # Transfers
    chunk_size: int = DEFAULT_CHUNK_SIZE
    stall_threshold: float = DEFAULT_STALL_THRESHOLD
    verify_checksum: bool = False
    checksum_algorithm: str = "md5"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = {k: getattr(self, k) for k in self.__dataclass_fields__ if k != "retry"}
        data["retry"] = self.retry.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        """Create from dictionary"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if isinstance(valid_fields.get("retry"), dict):
            valid_fields["retry"] = RetryPolicy.from_dict(valid_fields["retry"])
        return cls(**valid_fields)


# (percent, speed label)
ProgressCallback = Callable[[float, str], None]
