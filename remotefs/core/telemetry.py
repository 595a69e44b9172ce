"""
Telemetry and metrics collection
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class Metric:
    """Single metric value"""
    name: str
    value: float
    timestamp: float = field(default_factory=time.time)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class Event:
    """Event record"""
    name: str
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)


class Telemetry:
    """
    In-memory telemetry collector.

    Shared by pool, sessions and the transfer coordinator, which record from
    several worker threads, so every access goes through one lock. History is
    bounded; the oldest records are dropped first.
    """

    def __init__(self, max_records: int = 10000):
        self._lock = threading.Lock()
        self._max_records = max_records
        self._metrics: List[Metric] = []
        self._events: List[Event] = []

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a metric"""
        with self._lock:
            self._metrics.append(Metric(name=name, value=value, tags=tags or {}))
            del self._metrics[:-self._max_records]

    def record_event(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record an event"""
        with self._lock:
            self._events.append(Event(name=name, metadata=metadata or {}))
            del self._events[:-self._max_records]

    def get_metrics(self, name: Optional[str] = None) -> List[Metric]:
        """Get recorded metrics, optionally filtered by name"""
        with self._lock:
            return [m for m in self._metrics if name is None or m.name == name]

    def get_events(self, name: Optional[str] = None) -> List[Event]:
        """Get recorded events, optionally filtered by name"""
        with self._lock:
            return [e for e in self._events if name is None or e.name == name]

    def count(self, event_name: str) -> int:
        """Number of recorded events with this name"""
        with self._lock:
            return sum(1 for e in self._events if e.name == event_name)

    def clear(self) -> None:
        """Clear all metrics and events"""
        with self._lock:
            self._metrics.clear()
            self._events.clear()


# Global telemetry instance
_telemetry = Telemetry()


def get_telemetry() -> Telemetry:
    """Get global telemetry instance"""
    return _telemetry
