"""
Priority queue of transfer jobs
"""
from typing import List, Optional

from .models import TransferJob


class TransferQueue:
    """
    Jobs ordered by priority (higher first), then creation order.

    Not thread-safe; the coordinator guards it with its own lock.
    """

    def __init__(self):
        self._jobs: List[TransferJob] = []

    def push(self, job: TransferJob) -> None:
        self._jobs.append(job)
        self._jobs.sort(key=lambda j: (-j.priority, j.created_at, j.sequence))

    def remove(self, job_id: str) -> Optional[TransferJob]:
        for index, job in enumerate(self._jobs):
            if job.id == job_id:
                return self._jobs.pop(index)
        return None

    def get(self, job_id: str) -> Optional[TransferJob]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def peek(self) -> Optional[TransferJob]:
        return self._jobs[0] if self._jobs else None

    def jobs(self) -> List[TransferJob]:
        return list(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return self.get(job_id) is not None

    def clear(self) -> None:
        self._jobs.clear()
