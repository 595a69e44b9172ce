"""
Session registry - one RemoteFileSession per host, one shared listing cache
"""
import threading
from typing import Dict, List, Optional

from ...core.exceptions import ConfigError
from ...core.logging import get_logger
from ...core.telemetry import Telemetry
from ..connection.models import HostDescriptor
from ..connection.pool import ConnectionPool
from .cache import DirectoryCache
from .models import SessionConfig
from .service import RemoteFileSession

logger = get_logger(__name__)


class SessionManager:
    """Creates sessions on demand and closes them together"""

    def __init__(
        self,
        pool: ConnectionPool,
        config: Optional[SessionConfig] = None,
        cache: Optional[DirectoryCache] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        self.pool = pool
        self.config = SessionConfig() if config is None else config
        if cache is None:
            cache = DirectoryCache(self.config.cache_ttl, self.config.cache_max_bytes)
        self.cache = cache
        self.telemetry = telemetry
        self._hosts: Dict[str, HostDescriptor] = {}
        self._sessions: Dict[str, RemoteFileSession] = {}
        self._lock = threading.Lock()

    def register(self, host: HostDescriptor) -> None:
        """Make a host known so sessions can be opened by id"""
        with self._lock:
            self._hosts[host.id] = host

    def hosts(self) -> List[HostDescriptor]:
        with self._lock:
            return list(self._hosts.values())

    def open(self, host: HostDescriptor) -> RemoteFileSession:
        """Register ``host`` and return its session"""
        self.register(host)
        return self.session(host.id)

    def session(self, host_id: str) -> RemoteFileSession:
        """
        Get the session for a registered host, creating it if needed.

        Raises:
            ConfigError: If the host was never registered
        """
        with self._lock:
            session = self._sessions.get(host_id)
            if session is not None:
                return session
            host = self._hosts.get(host_id)
            if host is None:
                raise ConfigError(f"Unknown host: {host_id}")
            session = RemoteFileSession(
                host,
                self.pool,
                cache=self.cache,
                config=self.config,
                telemetry=self.telemetry,
            )
            self._sessions[host_id] = session
            return session

    def close(self, host_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(host_id, None)
        if session is not None:
            session.close()

    def dispose(self) -> None:
        """Close every session; the pool itself is left to its owner"""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        logger.debug(f"Closed {len(sessions)} sessions")
