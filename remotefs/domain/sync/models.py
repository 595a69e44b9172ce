"""
Directory sync data models
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ...core.constants import DEFAULT_MTIME_TOLERANCE
from ..session.models import FileType


class SyncDirection(str, Enum):
    """Which way an item flows"""
    LEFT_TO_RIGHT = "left_to_right"
    RIGHT_TO_LEFT = "right_to_left"
    CONFLICT = "conflict"


class SyncAction(str, Enum):
    """What to do with an item"""
    COPY = "copy"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


class SyncSide(str, Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class SyncEndpoint:
    """Root of one tree; local when host_id is None"""
    path: str
    host_id: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.host_id is None

    def __str__(self) -> str:
        if self.is_local:
            return self.path
        return f"{self.host_id}:{self.path}"


@dataclass
class SyncOptions:
    """Comparison policy"""
    compare_size: bool = True
    compare_date: bool = True
    tolerance: float = DEFAULT_MTIME_TOLERANCE  # seconds
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOptions":
        """Create from dictionary"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


@dataclass
class SyncItem:
    """One difference between the two trees"""
    name: str  # path relative to both roots, '/'-separated
    direction: SyncDirection
    action: SyncAction
    reason: str
    type: FileType
    left_path: Optional[str] = None
    right_path: Optional[str] = None
    left_size: Optional[int] = None
    right_size: Optional[int] = None
    left_mtime: Optional[float] = None
    right_mtime: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "name": self.name,
            "direction": self.direction.value,
            "action": self.action.value,
            "reason": self.reason,
            "type": self.type.value,
            "left_path": self.left_path,
            "right_path": self.right_path,
            "left_size": self.left_size,
            "right_size": self.right_size,
            "left_mtime": self.left_mtime,
            "right_mtime": self.right_mtime,
        }


@dataclass
class SyncResult:
    """Outcome of executing a sync plan"""
    copied: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    queued_jobs: List[str] = field(default_factory=list)


@dataclass
class SelectionCriteria:
    """Filters for advanced selection; unset fields do not filter"""
    pattern: Optional[str] = None
    newer_than: Optional[float] = None  # epoch seconds
    older_than: Optional[float] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    content_contains: Optional[str] = None
