"""
Transfer data models
"""
import itertools
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ...core.constants import (
    DEFAULT_LARGE_FILE_THRESHOLD,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_MAX_PER_HOST,
    DEFAULT_PRIORITY,
    DEFAULT_TICK_INTERVAL,
)

# Creation timestamps can collide; the sequence keeps FIFO order stable
_sequence = itertools.count()


class JobStatus(str, Enum):
    """Transfer job status"""
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.CANCELLED, JobStatus.COMPLETED, JobStatus.ERROR)


class TransferKind(str, Enum):
    """Transfer direction"""
    DOWNLOAD = "download"  # remote → local
    UPLOAD = "upload"      # local → remote


@dataclass
class TransferConfig:
    """Transfer coordinator configuration"""
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    max_per_host: int = DEFAULT_MAX_PER_HOST
    tick_interval: float = DEFAULT_TICK_INTERVAL
    default_priority: int = DEFAULT_PRIORITY
    large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "max_concurrent": self.max_concurrent,
            "max_per_host": self.max_per_host,
            "tick_interval": self.tick_interval,
            "default_priority": self.default_priority,
            "large_file_threshold": self.large_file_threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferConfig":
        """Create from dictionary"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


@dataclass
class TransferJob:
    """One upload or download, owned and mutated by the coordinator"""
    kind: TransferKind
    host_id: str
    local_path: str
    remote_path: str
    total_size: int = 0
    priority: int = DEFAULT_PRIORITY
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    speed: str = ""
    bytes_transferred: int = 0
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    sequence: int = field(default_factory=lambda: next(_sequence), repr=False)

    @property
    def name(self) -> str:
        path = self.remote_path if self.kind == TransferKind.DOWNLOAD else self.local_path
        return path.rstrip("/").rsplit("/", 1)[-1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "host_id": self.host_id,
            "local_path": self.local_path,
            "remote_path": self.remote_path,
            "total_size": self.total_size,
            "priority": self.priority,
            "status": self.status.value,
            "progress": self.progress,
            "speed": self.speed,
            "bytes_transferred": self.bytes_transferred,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
        }


@dataclass
class QueueSummary:
    """Aggregate view of the coordinator"""
    active_count: int
    queued_count: int
    completed_count: int
    total_speed: float  # bytes per second
