"""
Transfer coordinator - background upload/download scheduling
"""
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ...core.exceptions import TransferCancelledError
from ...core.logging import get_logger
from ...core.telemetry import Telemetry, get_telemetry
from ...core.utils import format_size, parse_speed
from ..session.manager import SessionManager
from .models import JobStatus, QueueSummary, TransferConfig, TransferJob, TransferKind
from .queue import TransferQueue

logger = get_logger(__name__)


@dataclass
class _ActiveRun:
    job: TransferJob
    abort: threading.Event
    done: threading.Event


class TransferCoordinator:
    """
    Runs transfer jobs under a global and a per-host concurrency cap.

    A scheduler thread ticks every ``tick_interval`` seconds and admits
    pending jobs in priority/FIFO order while both caps have headroom; a
    job whose host is at its cap waits for a later tick. Admitted jobs run
    on a worker pool through RemoteFileSession.get/put.

    Every job is in exactly one of: queue (pending or paused), active set,
    completed list (completed, error or cancelled). Pause and cancel set
    the job's abort signal and move it immediately; the worker notices the
    signal between chunks and leaves the job where it was moved.

    Callbacks run on worker and scheduler threads, possibly concurrently.
    """

    def __init__(
        self,
        sessions: SessionManager,
        config: Optional[TransferConfig] = None,
        on_update: Optional[Callable[[TransferJob], None]] = None,
        on_queue_change: Optional[Callable[[QueueSummary], None]] = None,
        telemetry: Optional[Telemetry] = None,
        autostart: bool = True,
    ):
        """
        Initialize coordinator.

        Args:
            sessions: Source of per-host RemoteFileSessions
            config: Caps, tick interval and default priority
            on_update: Called with a job after each state or progress change
            on_queue_change: Called with the aggregate summary
            telemetry: Metrics sink (global collector if None)
            autostart: Start the scheduler thread immediately
        """
        self.sessions = sessions
        self.config = TransferConfig() if config is None else config
        self.on_update = on_update
        self.on_queue_change = on_queue_change
        self.telemetry = get_telemetry() if telemetry is None else telemetry

        self._queue = TransferQueue()
        self._active: Dict[str, _ActiveRun] = {}
        self._completed: List[TransferJob] = []
        # Paused jobs whose previous worker may still hold the partial file
        self._draining: Dict[str, threading.Event] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent,
            thread_name_prefix="transfer",
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._disposed = False

        if autostart:
            self.start()

    # ============================================================
    # Scheduler
    # ============================================================

    def start(self) -> None:
        """Start the scheduler thread"""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._scheduler_loop, name="transfer-scheduler", daemon=True)
        self._thread.start()

    def _scheduler_loop(self) -> None:
        while not self._stop.wait(self.config.tick_interval):
            try:
                self.process_queue()
            except Exception as e:
                logger.error(f"Transfer scheduler tick failed: {e}")

    def process_queue(self) -> int:
        """
        Admit as many pending jobs as the caps allow (one scheduler tick).

        Returns:
            Number of jobs started
        """
        admitted: List[_ActiveRun] = []
        with self._lock:
            if self._disposed:
                return 0
            per_host: Dict[str, int] = {}
            for run in self._active.values():
                per_host[run.job.host_id] = per_host.get(run.job.host_id, 0) + 1

            for job in self._queue.jobs():
                if len(self._active) >= self.config.max_concurrent:
                    break
                if job.status != JobStatus.PENDING:
                    continue
                if per_host.get(job.host_id, 0) >= self.config.max_per_host:
                    continue
                draining = self._draining.get(job.id)
                if draining is not None and not draining.is_set():
                    continue
                self._draining.pop(job.id, None)

                self._queue.remove(job.id)
                job.status = JobStatus.ACTIVE
                job.started_at = time.time()
                job.error = None
                run = _ActiveRun(job=job, abort=threading.Event(), done=threading.Event())
                self._active[job.id] = run
                per_host[job.host_id] = per_host.get(job.host_id, 0) + 1
                admitted.append(run)

        for run in admitted:
            logger.info(f"Starting {run.job.kind.value} of {run.job.name} on {run.job.host_id}")
            self._executor.submit(self._run_job, run)
            self._notify_update(run.job)
        if admitted:
            self._notify_queue()
        return len(admitted)

    # ============================================================
    # Job execution
    # ============================================================

    def _run_job(self, run: _ActiveRun) -> None:
        try:
            self._execute(run)
        finally:
            run.done.set()

    def _execute(self, run: _ActiveRun) -> None:
        job = run.job

        def on_progress(percent: float, speed: str) -> None:
            with self._lock:
                if not self._is_current(run):
                    return
                job.progress = percent
                job.speed = speed
                job.bytes_transferred = int(job.total_size * percent / 100)
            self._notify_update(job)
            self._notify_queue()

        try:
            session = self.sessions.session(job.host_id)
            if job.kind == TransferKind.DOWNLOAD:
                if not job.total_size:
                    job.total_size = session.stat(job.remote_path).size
                session.get(job.remote_path, job.local_path, on_progress=on_progress, cancel_event=run.abort)
            else:
                if not job.total_size:
                    job.total_size = os.path.getsize(job.local_path)
                session.put(job.local_path, job.remote_path, on_progress=on_progress, cancel_event=run.abort)
        except TransferCancelledError:
            if not run.abort.is_set():
                self._finish(run, JobStatus.ERROR, "transfer aborted")
            return
        except Exception as e:
            if run.abort.is_set():
                logger.debug(f"Job {job.id} failed after abort: {e}")
                return
            logger.error(f"Transfer {job.id} ({job.name}) failed: {e}")
            self._finish(run, JobStatus.ERROR, str(e))
            return

        self._finish(run, JobStatus.COMPLETED)

    def _is_current(self, run: _ActiveRun) -> bool:
        current = self._active.get(run.job.id)
        return current is not None and current.abort is run.abort

    def _finish(self, run: _ActiveRun, status: JobStatus, error: Optional[str] = None) -> None:
        job = run.job
        with self._lock:
            if not self._is_current(run):
                return
            del self._active[job.id]
            job.status = status
            job.completed_at = time.time()
            job.error = error
            job.speed = ""
            if status == JobStatus.COMPLETED:
                job.progress = 100.0
                job.bytes_transferred = job.total_size
            self._completed.append(job)

        if status == JobStatus.COMPLETED:
            logger.info(f"Completed {job.kind.value} of {job.name} ({format_size(job.total_size)})")
            self.telemetry.record_event("transfer.completed", {"job": job.id, "bytes": job.total_size})
        else:
            self.telemetry.record_event("transfer.failed", {"job": job.id, "error": error})
        self._notify_update(job)
        self._notify_queue()

    # ============================================================
    # Public API
    # ============================================================

    def add_job(
        self,
        kind: TransferKind,
        host_id: str,
        local_path: str,
        remote_path: str,
        total_size: int = 0,
        priority: Optional[int] = None,
    ) -> TransferJob:
        """
        Queue a transfer.

        Args:
            kind: Upload or download
            host_id: Remote host
            local_path: Local file
            remote_path: Remote file
            total_size: Size in bytes if known (looked up when 0)
            priority: Higher runs sooner (config default if None)

        Returns:
            The pending job
        """
        job = TransferJob(
            kind=TransferKind(kind),
            host_id=host_id,
            local_path=str(local_path),
            remote_path=remote_path,
            total_size=total_size,
            priority=self.config.default_priority if priority is None else priority,
        )
        with self._lock:
            self._queue.push(job)
        logger.debug(f"Queued {job.kind.value} {job.id} ({job.name}, priority {job.priority})")
        self._notify_update(job)
        self._notify_queue()
        return job

    def pause(self, job_id: str) -> bool:
        """Pause an active or pending job; it stays queued until resumed"""
        with self._lock:
            run = self._active.pop(job_id, None)
            if run is not None:
                run.abort.set()
                job = run.job
                job.status = JobStatus.PAUSED
                job.speed = ""
                self._draining[job_id] = run.done
                self._queue.push(job)
            else:
                job = self._queue.get(job_id)
                if job is None or job.status != JobStatus.PENDING:
                    return False
                job.status = JobStatus.PAUSED

        logger.info(f"Paused transfer {job_id}")
        self._notify_update(job)
        self._notify_queue()
        return True

    def resume(self, job_id: str) -> bool:
        """Make a paused job pending again"""
        with self._lock:
            job = self._queue.get(job_id)
            if job is None or job.status != JobStatus.PAUSED:
                return False
            job.status = JobStatus.PENDING

        logger.info(f"Resumed transfer {job_id}")
        self._notify_update(job)
        self._notify_queue()
        return True

    def cancel(self, job_id: str) -> bool:
        """Cancel an active, pending or paused job"""
        with self._lock:
            run = self._active.pop(job_id, None)
            if run is not None:
                run.abort.set()
                job = run.job
            else:
                job = self._queue.remove(job_id)
                if job is None:
                    return False
                self._draining.pop(job_id, None)
            job.status = JobStatus.CANCELLED
            job.completed_at = time.time()
            job.speed = ""
            self._completed.append(job)

        logger.info(f"Cancelled transfer {job_id}")
        self.telemetry.record_event("transfer.cancelled", {"job": job_id})
        self._notify_update(job)
        self._notify_queue()
        return True

    def clear_completed(self) -> int:
        """Drop all terminal jobs; returns how many were removed"""
        with self._lock:
            kept = [job for job in self._completed if not job.status.is_terminal]
            removed = len(self._completed) - len(kept)
            self._completed = kept
        if removed:
            self._notify_queue()
        return removed

    def get_job(self, job_id: str) -> Optional[TransferJob]:
        with self._lock:
            for job in self._all_jobs():
                if job.id == job_id:
                    return job
        return None

    def get_all_jobs(self) -> List[TransferJob]:
        """Active jobs, then queued, then completed"""
        with self._lock:
            return self._all_jobs()

    def get_summary(self) -> QueueSummary:
        with self._lock:
            return QueueSummary(
                active_count=len(self._active),
                queued_count=len(self._queue),
                completed_count=len(self._completed),
                total_speed=sum(parse_speed(run.job.speed) for run in self._active.values()),
            )

    def dispose(self) -> None:
        """Stop scheduling and abort everything in flight"""
        self._stop.set()
        with self._lock:
            self._disposed = True
            runs = list(self._active.values())
            queued = self._queue.jobs()
            self._active.clear()
            self._queue.clear()
            self._draining.clear()
            for run in runs:
                run.abort.set()
            cancelled_at = time.time()
            for job in [run.job for run in runs] + queued:
                job.status = JobStatus.CANCELLED
                job.completed_at = cancelled_at
                job.speed = ""
                self._completed.append(job)
        if self._thread is not None:
            self._thread.join(timeout=self.config.tick_interval * 2)
            self._thread = None
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug(f"Transfer coordinator disposed ({len(runs)} transfers aborted, {len(queued)} queued jobs cancelled)")

    # ============================================================
    # Internal
    # ============================================================

    def _all_jobs(self) -> List[TransferJob]:
        return [run.job for run in self._active.values()] + self._queue.jobs() + list(self._completed)

    def _notify_update(self, job: TransferJob) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(job)
        except Exception as e:
            logger.error(f"Transfer update callback failed: {e}")

    def _notify_queue(self) -> None:
        if self.on_queue_change is None:
            return
        try:
            self.on_queue_change(self.get_summary())
        except Exception as e:
            logger.error(f"Queue change callback failed: {e}")
