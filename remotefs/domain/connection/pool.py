"""
Reference-counted connection pool
"""
import itertools
import threading
from typing import Dict, List, Optional

from ...core.client import RemoteClient
from ...core.interfaces import ConnectionFactory
from ...core.logging import get_logger
from ...core.telemetry import Telemetry, get_telemetry
from .auth import CredentialResolver
from .models import HostDescriptor, PooledConnection

logger = get_logger(__name__)


class ConnectionPool:
    """
    Owns zero or one live transport per host id.

    Every consumer (shell, file browser, background transfers) acquires and
    releases through the pool; an entry exists exactly while its reference
    count is positive. Construct one pool at startup and pass it to the
    components that need it.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        credential_resolver: CredentialResolver,
        telemetry: Optional[Telemetry] = None,
    ):
        """
        Initialize the pool.

        Args:
            connection_factory: Opens authenticated transports
            credential_resolver: Default auth strategy for acquire
            telemetry: Metrics sink (global collector if None)
        """
        self.connection_factory = connection_factory
        self.credential_resolver = credential_resolver
        self.telemetry = get_telemetry() if telemetry is None else telemetry

        self._entries: Dict[str, PooledConnection] = {}
        self._lock = threading.Lock()
        self._host_locks: Dict[str, threading.Lock] = {}
        self._generations = itertools.count(1)

    def acquire(self, host: HostDescriptor, resolver: Optional[CredentialResolver] = None) -> RemoteClient:
        """
        Get the shared transport for ``host``, opening it if needed.

        Args:
            host: Host to connect to
            resolver: Overrides the pool's credential resolver for a new connection

        Returns:
            Connected RemoteClient; pair every acquire with one release

        Raises:
            ConnectionError: Transport could not be opened
            AuthenticationError: Credentials missing or rejected
        """
        # Serialize opens per host so two callers never race to open twice
        with self._host_lock(host.id):
            stale = None
            with self._lock:
                entry = self._entries.get(host.id)
                if entry is not None and entry.client.is_active():
                    entry.ref_count += 1
                    logger.debug(f"Reusing connection to {host.id} (refs={entry.ref_count})")
                    return entry.client
                if entry is not None:
                    stale = self._entries.pop(host.id)

            if stale is not None:
                logger.info(f"Dropping dead connection to {host.id}")
                self._close(stale, "stale")

            auth = (resolver or self.credential_resolver).resolve(host)
            logger.info(f"Opening connection to {host}")
            client = self.connection_factory.create(host, auth)

            entry = PooledConnection(host=host, client=client, ref_count=1, generation=next(self._generations))
            client.add_close_listener(lambda error, lost=entry: self._on_transport_lost(lost, error))
            with self._lock:
                self._entries[host.id] = entry
            self.telemetry.record_event("pool.opened", {"host": host.id, "generation": entry.generation})
            return client

    def release(self, host_id: str, client: Optional[RemoteClient] = None) -> None:
        """
        Drop one reference; closes the transport when the count reaches zero.

        Args:
            host_id: Host identity
            client: The transport the caller acquired; a release for a
                transport the pool already replaced is ignored
        """
        with self._lock:
            entry = self._entries.get(host_id)
            if entry is None:
                logger.debug(f"Release for {host_id} without a pooled connection")
                return
            if client is not None and entry.client is not client:
                logger.debug(f"Ignoring release of a replaced connection to {host_id}")
                return
            entry.ref_count -= 1
            if entry.ref_count > 0:
                logger.debug(f"Released connection to {host_id} (refs={entry.ref_count})")
                return
            del self._entries[host_id]

        self._close(entry, "released")

    def discard(self, host_id: str, client: Optional[RemoteClient] = None, reason: str = "discarded") -> None:
        """
        Force the entry out regardless of its reference count.

        Outstanding holders keep a closed transport and must reacquire.
        """
        with self._lock:
            entry = self._entries.get(host_id)
            if entry is None or (client is not None and entry.client is not client):
                return
            del self._entries[host_id]

        logger.warning(f"Discarding connection to {host_id}: {reason}")
        self._close(entry, reason)

    def get_connection(self, host_id: str) -> Optional[RemoteClient]:
        with self._lock:
            entry = self._entries.get(host_id)
            return entry.client if entry else None

    def has_connection(self, host_id: str) -> bool:
        with self._lock:
            return host_id in self._entries

    def get_ref_count(self, host_id: str) -> int:
        with self._lock:
            entry = self._entries.get(host_id)
            return entry.ref_count if entry else 0

    def dispose(self) -> None:
        """Close every live transport and clear the pool"""
        with self._lock:
            entries: List[PooledConnection] = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            self._close(entry, "disposed")
        logger.debug(f"Connection pool disposed ({len(entries)} connections closed)")

    # ------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------

    def _host_lock(self, host_id: str) -> threading.Lock:
        with self._lock:
            lock = self._host_locks.get(host_id)
            if lock is None:
                lock = self._host_locks[host_id] = threading.Lock()
            return lock

    def _on_transport_lost(self, entry: PooledConnection, error: Optional[BaseException]) -> None:
        with self._lock:
            if self._entries.get(entry.host.id) is not entry:
                return
            del self._entries[entry.host.id]
        logger.warning(f"Connection to {entry.host.id} closed unexpectedly: {error}")
        self.telemetry.record_event("pool.lost", {"host": entry.host.id, "error": str(error)})

    def _close(self, entry: PooledConnection, reason: str) -> None:
        try:
            entry.client.close()
        except Exception as e:
            logger.debug(f"Error closing connection to {entry.host.id}: {e}")
        logger.info(f"Closed connection to {entry.host.id} ({reason})")
        self.telemetry.record_event("pool.closed", {"host": entry.host.id, "reason": reason})
