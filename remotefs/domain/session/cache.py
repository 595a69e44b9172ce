"""
Directory listing cache

TTL-bound, byte-budgeted, LRU by last access across all hosts.
"""
import json
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from ...core.constants import DEFAULT_CACHE_MAX_BYTES, DEFAULT_CACHE_TTL
from ...core.logging import get_logger
from ...core.utils import normalize_remote_path, remote_parent
from .models import CacheEntry, FileEntry

logger = get_logger(__name__)

CacheKey = Tuple[str, str]


def estimate_size(entries: List[FileEntry]) -> int:
    """Approximate memory footprint as the JSON length of the listing"""
    return len(json.dumps([e.to_dict() for e in entries]))


class DirectoryCache:
    """
    Shared listing cache keyed by (host id, normalized path).

    The running size total never exceeds ``max_bytes``: before an insert the
    least recently accessed entries are evicted until the new one fits.
    Entries larger than the whole budget are not cached.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL,
        max_bytes: int = DEFAULT_CACHE_MAX_BYTES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_bytes = max_bytes
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._total = 0
        self._lock = threading.Lock()

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return self._key(*key) in self._entries

    def get(self, host_id: str, path: str) -> Optional[List[FileEntry]]:
        """Return a fresh listing or None; expired entries are dropped"""
        key = self._key(host_id, path)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now - entry.fetched_at > self.ttl:
                self._remove(key)
                return None
            entry.last_access = now
            entry.access_count += 1
            return list(entry.entries)

    def put(self, host_id: str, path: str, entries: List[FileEntry]) -> None:
        """Insert or replace a listing, evicting LRU entries to make room"""
        key = self._key(host_id, path)
        size = estimate_size(entries)
        if size > self.max_bytes:
            logger.debug(f"Listing of {path} ({size} bytes) exceeds cache capacity, not cached")
            return

        now = self._clock()
        with self._lock:
            self._remove(key)
            while self._entries and self._total + size > self.max_bytes:
                oldest = min(self._entries, key=lambda k: self._entries[k].last_access)
                logger.debug(f"Evicting cached listing {oldest[0]}:{oldest[1]}")
                self._remove(oldest)
            self._entries[key] = CacheEntry(
                entries=list(entries),
                fetched_at=now,
                last_access=now,
                size=size,
            )
            self._total += size

    def invalidate(self, host_id: str, path: str) -> None:
        with self._lock:
            self._remove(self._key(host_id, path))

    def invalidate_parent(self, host_id: str, path: str) -> None:
        """Drop the listing that contains ``path``"""
        self.invalidate(host_id, remote_parent(path))

    def clear(self, host_id: Optional[str] = None, path: Optional[str] = None) -> None:
        """Clear everything, one host, or one host path"""
        with self._lock:
            if host_id is None:
                self._entries.clear()
                self._total = 0
                return
            if path is not None:
                self._remove(self._key(host_id, path))
                return
            for key in [k for k in self._entries if k[0] == host_id]:
                self._remove(key)

    def _key(self, host_id: str, path: str) -> CacheKey:
        return host_id, normalize_remote_path(path)

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total -= entry.size
