"""
Connection health tracking and periodic liveness probes
"""
import threading
import time
from collections import deque
from typing import Callable, Optional

from ...core.constants import (
    DEFAULT_HEALTH_FAILURE_THRESHOLD,
    DEFAULT_HEALTH_HISTORY,
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_HIGH_LATENCY_MS,
)
from ...core.logging import get_logger
from .models import HealthSnapshot

logger = get_logger(__name__)


class ConnectionHealth:
    """Latency ring buffer plus consecutive-failure counter for one host"""

    def __init__(
        self,
        host_id: str,
        history: int = DEFAULT_HEALTH_HISTORY,
        failure_threshold: int = DEFAULT_HEALTH_FAILURE_THRESHOLD,
        high_latency_ms: float = DEFAULT_HIGH_LATENCY_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.host_id = host_id
        self.failure_threshold = failure_threshold
        self.high_latency_ms = high_latency_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._latencies = deque(maxlen=history)
        self._failures = 0
        self._healthy = True
        self._last_check = 0.0
        self._last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        with self._lock:
            return self._healthy

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def average_latency_ms(self) -> float:
        with self._lock:
            return self._average()

    def record_success(self, latency_ms: float) -> None:
        with self._lock:
            self._latencies.append(latency_ms)
            self._failures = 0
            self._healthy = True
            self._last_check = self._clock()
            self._last_error = None

    def record_failure(self, error: BaseException) -> bool:
        """
        Count a failed probe.

        Returns:
            True when this failure flipped the host to unhealthy
        """
        with self._lock:
            self._failures += 1
            self._last_check = self._clock()
            self._last_error = str(error)
            if self._healthy and self._failures >= self.failure_threshold:
                self._healthy = False
                return True
            return False

    def needs_reconnect(self) -> bool:
        """Unhealthy, or slow enough on average to warrant a fresh transport"""
        with self._lock:
            if not self._healthy:
                return True
            return bool(self._latencies) and self._average() > self.high_latency_ms

    def reset(self) -> None:
        with self._lock:
            self._latencies.clear()
            self._failures = 0
            self._healthy = True
            self._last_error = None

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(
                host_id=self.host_id,
                healthy=self._healthy,
                last_check=self._last_check,
                consecutive_failures=self._failures,
                average_latency_ms=self._average(),
                latency_history=list(self._latencies),
                last_error=self._last_error,
            )

    def _average(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)


class HealthMonitor:
    """Calls ``probe`` every ``interval`` seconds on a daemon thread"""

    def __init__(self, name: str, probe: Callable[[], None], interval: float = DEFAULT_HEALTH_INTERVAL):
        self.name = name
        self.probe = probe
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"health-{self.name}", daemon=True)
        self._thread.start()
        logger.debug(f"Health monitoring started for {self.name} every {self.interval:g}s")

    def stop(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.probe()
            except Exception as e:
                logger.error(f"Health probe for {self.name} crashed: {e}")
