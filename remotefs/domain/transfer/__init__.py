"""
Transfer domain - background job queue
"""
from .models import JobStatus, TransferKind, TransferConfig, TransferJob, QueueSummary
from .queue import TransferQueue
from .coordinator import TransferCoordinator

__all__ = [
    "JobStatus",
    "TransferKind",
    "TransferConfig",
    "TransferJob",
    "QueueSummary",
    "TransferQueue",
    "TransferCoordinator",
]
