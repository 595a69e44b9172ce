"""
Remote file session - cached, retried, resumable file operations for one host
"""
import codecs
import os
import posixpath
import re
import shlex
import socket
import stat as stat_module
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import paramiko
from paramiko.sftp import CMD_CLOSE, CMD_HANDLE, CMD_NAME, CMD_OPENDIR, CMD_READDIR, SFTPError

from ...core.client import CommandResult, RemoteClient
from ...core.constants import (
    CHECKSUM_ALGORITHMS,
    DIRECTORY_SIZE_UNKNOWN,
    PARTIAL_SUFFIX,
    UNRESOLVED_LINK,
)
from ...core.exceptions import (
    CommandError,
    ConnectionError,
    ChecksumMismatchError,
    FilenameEncodingError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RemoteError,
    TransferCancelledError,
    TransferError,
)
from ...core.logging import get_logger
from ...core.telemetry import Telemetry, get_telemetry
from ...core.utils import (
    compute_file_hash,
    format_speed,
    is_home_relative,
    join_remote,
    normalize_remote_path,
    remote_parent,
)
from ..connection.auth import CredentialResolver
from ..connection.models import HostDescriptor
from ..connection.pool import ConnectionPool
from .cache import DirectoryCache
from .health import ConnectionHealth, HealthMonitor
from .models import (
    FileEntry,
    FileType,
    HealthSnapshot,
    ProgressCallback,
    SessionConfig,
    SessionState,
    sort_entries,
)
from .resilience import is_transport_failure, retry_call, run_with_timeout, translate_error

logger = get_logger(__name__)

# (items done, items total, current path)
ItemProgressCallback = Callable[[int, int, str], None]

_DIGEST_RE = re.compile(r"^\\?([a-f0-9]+)")


def listdir_attr_decoded(sftp: paramiko.SFTPClient, path: str, encoding: str) -> List[paramiko.SFTPAttributes]:
    """
    ``SFTPClient.listdir_attr`` for hosts whose filenames are not UTF-8.

    paramiko decodes names as strict UTF-8. This reads the raw names and
    decodes them with ``encoding``; undecodable bytes become U+FFFD.
    """
    t, msg = sftp._request(CMD_OPENDIR, path.encode(encoding))
    if t != CMD_HANDLE:
        raise SFTPError("Expected handle")
    handle = msg.get_binary()
    attrs = []
    try:
        while True:
            try:
                t, msg = sftp._request(CMD_READDIR, handle)
            except EOFError:
                break
            if t != CMD_NAME:
                raise SFTPError("Expected name response")
            for _ in range(msg.get_int()):
                filename = msg.get_string().decode(encoding, errors="replace")
                longname = msg.get_string().decode(encoding, errors="replace")
                attr = paramiko.SFTPAttributes._from_msg(msg, filename, longname)
                if filename not in (".", ".."):
                    attrs.append(attr)
    finally:
        sftp._request(CMD_CLOSE, handle)
    return attrs


def _shell_path(path: str) -> str:
    """Quote a path for the remote shell; never let it read as an option"""
    if path.startswith("-"):
        path = "./" + path
    return shlex.quote(path)


class RemoteFileSession:
    """
    File operations on one host over a pooled transport.

    The session leases the host's transport from the ConnectionPool and
    opens its own SFTP channel on it. Listings are served from a shared
    DirectoryCache, every call runs under a timeout and a retry policy, and
    a background probe keeps track of connection health. An unhealthy or
    slow session drops its lease and reconnects on the next call.

    State: uninitialized -> connecting -> ready -> (unhealthy -> reconnecting
    -> ready) -> closed.
    """

    def __init__(
        self,
        host: HostDescriptor,
        pool: ConnectionPool,
        cache: Optional[DirectoryCache] = None,
        config: Optional[SessionConfig] = None,
        resolver: Optional[CredentialResolver] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        """
        Initialize session.

        Args:
            host: Host this session talks to
            pool: Shared connection pool
            cache: Listing cache (usually shared across sessions)
            config: Timeouts, retry, cache and health settings
            resolver: Credential resolver override for this host
            telemetry: Metrics sink (global collector if None)
        """
        self.host = host
        self.pool = pool
        self.config = SessionConfig() if config is None else config
        if cache is None:
            cache = DirectoryCache(self.config.cache_ttl, self.config.cache_max_bytes)
        self.cache = cache
        self.resolver = resolver
        self.telemetry = get_telemetry() if telemetry is None else telemetry
        self.health_state = ConnectionHealth(
            host.id,
            history=self.config.health_history,
            failure_threshold=self.config.failure_threshold,
            high_latency_ms=self.config.high_latency_ms,
        )

        self._monitor = HealthMonitor(host.id, self.check_health, self.config.health_interval)
        self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix=f"sftp-{host.id}")
        self._lock = threading.RLock()
        self._client: Optional[RemoteClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._state = SessionState.UNINITIALIZED
        self._home: Optional[str] = None

    @property
    def host_id(self) -> str:
        return self.host.id

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    # ============================================================
    # Channel lifecycle
    # ============================================================

    def _set_state(self, state: SessionState) -> None:
        if self._state != state:
            logger.debug(f"Session {self.host.id}: {self._state.value} -> {state.value}")
            self._state = state

    def _ensure_channel(self) -> paramiko.SFTPClient:
        """Return the SFTP channel, (re)connecting through the pool if needed"""
        with self._lock:
            if self._state == SessionState.CLOSED:
                raise ConnectionError(f"Session for {self.host.id} is closed")

            if self._sftp is not None and self.health_state.needs_reconnect():
                logger.warning(
                    f"Reconnecting {self.host.id} preemptively "
                    f"(avg latency {self.health_state.average_latency_ms:.0f}ms)"
                )
                self._drop(discard=True, reason="degraded connection")
            if self._sftp is not None:
                return self._sftp

            first = self._state in (SessionState.UNINITIALIZED, SessionState.CONNECTING)
            self._set_state(SessionState.CONNECTING if first else SessionState.RECONNECTING)

            client = self.pool.acquire(self.host, self.resolver)
            try:
                sftp = run_with_timeout(
                    self._executor,
                    client.open_sftp,
                    self.config.init_timeout,
                    f"SFTP initialization on {self.host.id}",
                    phase=OperationTimeoutError.INIT,
                )
            except OperationTimeoutError:
                # A hung subsystem request leaves the transport suspect
                self.pool.discard(self.host.id, client, "SFTP initialization timed out")
                raise
            except Exception:
                self.pool.release(self.host.id, client)
                raise

            self._client, self._sftp = client, sftp
            self.health_state.reset()
            self._set_state(SessionState.READY)
            if self.config.health_monitoring:
                self._monitor.start()
            return sftp

    def _ensure_client(self) -> RemoteClient:
        with self._lock:
            self._ensure_channel()
            return self._client

    def _drop(self, discard: bool, reason: str) -> None:
        """Close the SFTP channel and give the transport lease back"""
        with self._lock:
            sftp, client = self._sftp, self._client
            self._sftp = self._client = None
            if self._state == SessionState.READY:
                self._set_state(SessionState.RECONNECTING)

        if sftp is not None:
            try:
                sftp.close()
            except Exception as e:
                logger.debug(f"Error closing SFTP channel for {self.host.id}: {e}")
        if client is not None:
            logger.info(f"Dropping session channel for {self.host.id}: {reason}")
            if discard:
                self.pool.discard(self.host.id, client, reason)
            else:
                self.pool.release(self.host.id, client)

    # ============================================================
    # Call wrappers
    # ============================================================

    def _attempt(
        self,
        name: str,
        path: str,
        fn: Callable[[paramiko.SFTPClient], object],
        timeout: Optional[float] = None,
        phase: str = OperationTimeoutError.OPERATION,
        drop_on_timeout: bool = False,
        stream: bool = False,
    ):
        """
        One attempt of an SFTP call.

        Streams (transfers) run on the caller's thread without a wall-clock
        limit; everything else runs under the operation timeout.
        """
        sftp = self._ensure_channel()
        try:
            if stream:
                return fn(sftp)
            return run_with_timeout(
                self._executor,
                lambda: fn(sftp),
                timeout or self.config.operation_timeout,
                f"{name} {path}",
                phase=phase,
            )
        except OperationTimeoutError:
            if drop_on_timeout:
                self._drop(discard=False, reason=f"{name} timed out")
            raise
        except RemoteError:
            raise
        except Exception as e:
            translated = translate_error(e, path)
            if translated is not e:
                raise translated from e
            if is_transport_failure(e):
                self._drop(discard=True, reason=f"{name} failed: {e}")
            raise

    def _call(self, name: str, path: str, fn: Callable[[paramiko.SFTPClient], object], **kwargs):
        """_attempt under the retry policy"""
        return retry_call(
            lambda: self._attempt(name, path, fn, **kwargs),
            self.config.retry,
            f"{name} {path} on {self.host.id}",
        )

    # ============================================================
    # Paths
    # ============================================================

    def expand_path(self, path: str) -> str:
        """Resolve '~' against the remote home directory and normalize"""
        if not is_home_relative(path):
            return normalize_remote_path(path)
        rest = path[1:].lstrip("/")
        home = self._home_directory()
        return join_remote(home, rest) if rest else home

    def _home_directory(self) -> str:
        if self._home is not None:
            return self._home
        sftp = self._ensure_channel()
        try:
            home = run_with_timeout(
                self._executor,
                lambda: sftp.normalize("."),
                self.config.path_expand_timeout,
                f"home directory lookup on {self.host.id}",
                phase=OperationTimeoutError.PATH_EXPAND,
            )
        except (OperationTimeoutError, IOError, paramiko.SSHException) as e:
            logger.warning(f"Cannot expand ~ on {self.host.id} ({e}), using current directory")
            return "."
        self._home = home
        return home

    # ============================================================
    # Entries
    # ============================================================

    def _to_entry(
        self,
        sftp: paramiko.SFTPClient,
        path: str,
        attr: paramiko.SFTPAttributes,
        directory_sentinel: bool,
    ) -> FileEntry:
        mode = attr.st_mode or 0
        link_target = None
        if stat_module.S_ISLNK(mode):
            file_type = FileType.SYMLINK
            try:
                link_target = sftp.readlink(path) or UNRESOLVED_LINK
            except (IOError, paramiko.SSHException, UnicodeDecodeError):
                link_target = UNRESOLVED_LINK
        elif stat_module.S_ISDIR(mode):
            file_type = FileType.DIRECTORY
        else:
            file_type = FileType.FILE

        size = attr.st_size or 0
        if directory_sentinel and file_type == FileType.DIRECTORY:
            size = DIRECTORY_SIZE_UNKNOWN

        owner, group = str(attr.st_uid or 0), str(attr.st_gid or 0)
        longname = getattr(attr, "longname", None)
        if longname:
            parts = longname.split()
            if len(parts) >= 4:
                owner, group = parts[2], parts[3]

        return FileEntry(
            name=posixpath.basename(path) or path,
            path=path,
            size=size,
            type=file_type,
            mtime=float(attr.st_mtime or 0),
            permissions=stat_module.filemode(mode),
            owner=owner,
            group=group,
            link_target=link_target,
        )

    # ============================================================
    # Read operations
    # ============================================================

    def list(self, path: str = ".", use_cache: bool = True) -> List[FileEntry]:
        """
        List a directory.

        Args:
            path: Remote directory ('~' is expanded)
            use_cache: Serve a fresh cached listing when available

        Returns:
            Entries sorted directories first, then by name. Directory sizes
            are -1; symlink targets are '(unresolved)' when unreadable.

        Raises:
            NotFoundError, PermissionDeniedError, OperationTimeoutError,
            RetryExhaustedError, FilenameEncodingError (a name is not valid
            UTF-8 on a host without an explicit encoding)
        """
        remote = self.expand_path(path)
        if use_cache:
            cached = self.cache.get(self.host.id, remote)
            if cached is not None:
                return cached

        def fetch(sftp: paramiko.SFTPClient) -> List[FileEntry]:
            entries = [
                self._to_entry(sftp, join_remote(remote, attr.filename), attr, directory_sentinel=True)
                for attr in self._listdir_attr(sftp, remote)
            ]
            return sort_entries(entries)

        entries = self._call("list", remote, fetch, drop_on_timeout=True)
        self.cache.put(self.host.id, remote, entries)
        return entries

    def _listdir_attr(self, sftp: paramiko.SFTPClient, remote: str) -> List[paramiko.SFTPAttributes]:
        encoding = self.host.encoding
        if codecs.lookup(encoding).name != "utf-8":
            return listdir_attr_decoded(sftp, remote, encoding)
        try:
            return sftp.listdir_attr(remote)
        except UnicodeDecodeError as e:
            raise FilenameEncodingError(
                f"{remote} on {self.host.id} holds a filename that is not valid UTF-8",
                hint="set the host's filename encoding, e.g. encoding = \"latin-1\"",
            ) from e

    def stat(self, path: str) -> FileEntry:
        """Describe a path, following symlinks; directories report their real size"""
        remote = self.expand_path(path)
        return self._call(
            "stat", remote, lambda sftp: self._to_entry(sftp, remote, sftp.stat(remote), directory_sentinel=False)
        )

    def _lstat(self, remote: str) -> FileEntry:
        return self._call(
            "lstat", remote, lambda sftp: self._to_entry(sftp, remote, sftp.lstat(remote), directory_sentinel=False)
        )

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
            return True
        except NotFoundError:
            return False

    def _walk(self, root: str, max_depth: int = -1) -> List[Tuple[FileEntry, int]]:
        """
        Pre-order listing of everything below ``root`` with depths.

        Uses an explicit stack; subdirectories that cannot be listed are
        skipped. Symlinked directories are not descended into.
        """
        found: List[Tuple[FileEntry, int]] = []
        stack = [(root, 1)]
        while stack:
            directory, depth = stack.pop()
            try:
                children = self.list(directory, use_cache=False)
            except (NotFoundError, PermissionDeniedError) as e:
                if directory == root:
                    raise
                logger.debug(f"Skipping {directory}: {e}")
                continue
            for child in reversed(children):
                if child.is_dir and (max_depth < 0 or depth < max_depth):
                    stack.append((child.path, depth + 1))
            found.extend((child, depth) for child in children)
        return found

    # ============================================================
    # Transfers
    # ============================================================

    def get(
        self,
        remote: str,
        local: Union[str, Path],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        restart: bool = False,
    ) -> int:
        """
        Download a file, resuming a previous partial download.

        Data goes to ``local + '.part'``; an existing smaller partial file
        is continued from its size. The partial file is renamed over
        ``local`` only after the size (and, if enabled, checksum) checks
        pass, and is kept on failure or cancellation.

        Args:
            remote: Remote file path
            local: Local destination
            on_progress: Called with (percent, speed label) once per chunk
            cancel_event: Abort signal checked between chunks
            restart: Discard any partial file first

        Returns:
            File size in bytes

        Raises:
            TransferCancelledError: Abort signal was set
            ChecksumMismatchError: Digest check failed
            TransferError: Size check failed
        """
        remote_path = self.expand_path(remote)
        local_path = Path(local)
        part = local_path.with_name(local_path.name + PARTIAL_SUFFIX)
        if restart and part.exists():
            part.unlink()

        def attempt() -> int:
            info = self._attempt("stat", remote_path, lambda sftp: sftp.stat(remote_path))
            total = info.st_size or 0
            local_path.parent.mkdir(parents=True, exist_ok=True)

            offset = part.stat().st_size if part.exists() else 0
            if offset and offset >= total:
                logger.info(f"Partial file {part} is not smaller than the source, starting over")
                part.unlink()
                offset = 0
            elif offset:
                logger.info(f"Resuming {remote_path} at byte {offset}/{total}")

            self._attempt(
                "download",
                remote_path,
                lambda sftp: self._download_stream(sftp, remote_path, part, offset, total, on_progress, cancel_event),
                stream=True,
            )
            self._verify_download(remote_path, part, total)
            os.replace(part, local_path)
            return total

        size = retry_call(attempt, self.config.retry, f"download {remote_path} from {self.host.id}")
        logger.debug(f"Downloaded {self.host.id}:{remote_path} -> {local_path} ({size} bytes)")
        return size

    def _download_stream(
        self,
        sftp: paramiko.SFTPClient,
        remote_path: str,
        part: Path,
        offset: int,
        total: int,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> None:
        transferred = offset
        started = time.monotonic()
        with sftp.open(remote_path, "rb") as src, open(part, "ab" if offset else "wb") as dst:
            if offset:
                src.seek(offset)
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise TransferCancelledError(f"Download of {remote_path} cancelled at byte {transferred}")

                chunk_started = time.monotonic()
                data = src.read(self.config.chunk_size)
                if time.monotonic() - chunk_started > self.config.stall_threshold:
                    logger.warning(f"Download of {remote_path} stalled at byte {transferred}")
                    self.health_state.record_failure(TransferError("transfer stalled"))
                if not data:
                    break

                dst.write(data)
                transferred += len(data)
                if on_progress is not None:
                    elapsed = max(time.monotonic() - started, 1e-6)
                    percent = transferred * 100.0 / total if total else 100.0
                    on_progress(percent, format_speed((transferred - offset) / elapsed))

    def _verify_download(self, remote_path: str, part: Path, total: int) -> None:
        actual = part.stat().st_size
        if actual != total:
            raise TransferError(
                f"Size mismatch for {remote_path}: expected {total} bytes, got {actual}",
                hint="the partial file was kept and the next attempt resumes from it",
            )
        if not self.config.verify_checksum:
            return

        algorithm = self.config.checksum_algorithm
        try:
            expected = self.checksum(remote_path, algorithm)
        except RemoteError as e:
            logger.warning(f"Skipping checksum verification of {remote_path}: {e}")
            return
        actual_digest = compute_file_hash(part, algorithm)
        if actual_digest != expected:
            raise ChecksumMismatchError(remote_path, expected, actual_digest)

    def put(
        self,
        local: Union[str, Path],
        remote: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Upload a file.

        Uploads are not resumable: a failed attempt is retried from the
        start by the retry policy.

        Returns:
            Bytes written
        """
        local_path = Path(local)
        if not local_path.is_file():
            raise NotFoundError(f"Local file not found: {local_path}")
        remote_path = self.expand_path(remote)
        total = local_path.stat().st_size

        size = self._call(
            "upload",
            remote_path,
            lambda sftp: self._upload_stream(sftp, local_path, remote_path, total, on_progress, cancel_event),
            stream=True,
        )
        self.cache.invalidate_parent(self.host.id, remote_path)
        logger.debug(f"Uploaded {local_path} -> {self.host.id}:{remote_path} ({size} bytes)")
        return size

    def _upload_stream(
        self,
        sftp: paramiko.SFTPClient,
        local_path: Path,
        remote_path: str,
        total: int,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> int:
        transferred = 0
        started = time.monotonic()
        with open(local_path, "rb") as src, sftp.open(remote_path, "wb") as dst:
            dst.set_pipelined(True)
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise TransferCancelledError(f"Upload of {local_path} cancelled at byte {transferred}")
                data = src.read(self.config.chunk_size)
                if not data:
                    break
                dst.write(data)
                transferred += len(data)
                if on_progress is not None:
                    elapsed = max(time.monotonic() - started, 1e-6)
                    percent = transferred * 100.0 / total if total else 100.0
                    on_progress(percent, format_speed(transferred / elapsed))
        return transferred

    def get_directory(
        self,
        remote: str,
        local: Union[str, Path],
        on_progress: Optional[ItemProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Download a directory tree; returns the number of files"""
        root = self.expand_path(remote)
        local_root = Path(local)
        local_root.mkdir(parents=True, exist_ok=True)

        entries = [entry for entry, _ in self._walk(root)]
        files = [e for e in entries if e.type == FileType.FILE]
        for entry in entries:
            if entry.is_dir:
                (local_root / posixpath.relpath(entry.path, root)).mkdir(parents=True, exist_ok=True)
        for index, entry in enumerate(files, 1):
            target = local_root / posixpath.relpath(entry.path, root)
            self.get(entry.path, target, cancel_event=cancel_event)
            if on_progress is not None:
                on_progress(index, len(files), entry.path)
        return len(files)

    def put_directory(
        self,
        local: Union[str, Path],
        remote: str,
        on_progress: Optional[ItemProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Upload a directory tree; returns the number of files"""
        local_root = Path(local)
        if not local_root.is_dir():
            raise NotFoundError(f"Local directory not found: {local_root}")
        root = self.expand_path(remote)

        directories, files = [], []
        for current, dirnames, filenames in os.walk(local_root):
            rel = Path(current).relative_to(local_root).as_posix()
            directories.extend(join_remote(root, rel, d) for d in sorted(dirnames))
            files.extend((Path(current) / f, join_remote(root, rel, f)) for f in sorted(filenames))

        self.mkdir(root, parents=True)
        for directory in directories:
            self.mkdir(directory, parents=True)
        for index, (source, target) in enumerate(files, 1):
            self.put(source, target, cancel_event=cancel_event)
            if on_progress is not None:
                on_progress(index, len(files), str(source))
        return len(files)

    # ============================================================
    # Mutating operations
    # ============================================================

    def delete(self, path: str, recursive: bool = False) -> None:
        """Delete a file, or a directory (empty unless ``recursive``)"""
        remote = self.expand_path(path)
        entry = self._lstat(remote)
        if entry.is_dir:
            if recursive:
                # Children before parents
                for child, _ in reversed(self._walk(remote)):
                    if child.is_dir:
                        self._call("rmdir", child.path, lambda sftp, p=child.path: sftp.rmdir(p))
                    else:
                        self._call("remove", child.path, lambda sftp, p=child.path: sftp.remove(p))
                    self.cache.invalidate(self.host.id, child.path)
            self._call("rmdir", remote, lambda sftp: sftp.rmdir(remote))
            self.cache.invalidate(self.host.id, remote)
        else:
            self._call("remove", remote, lambda sftp: sftp.remove(remote))
        self.cache.invalidate_parent(self.host.id, remote)

    def mkdir(self, path: str, parents: bool = False) -> None:
        """Create a directory; with ``parents`` behaves like mkdir -p"""
        remote = self.expand_path(path)
        if not parents:
            self._call("mkdir", remote, lambda sftp: sftp.mkdir(remote))
            self.cache.invalidate_parent(self.host.id, remote)
            return

        missing = []
        current = remote
        while current not in ("/", ".", ""):
            try:
                entry = self.stat(current)
            except NotFoundError:
                missing.append(current)
                current = remote_parent(current)
                continue
            if not entry.is_dir:
                raise TransferError(f"Cannot create {remote}: {current} is not a directory")
            break
        for directory in reversed(missing):
            self._call("mkdir", directory, lambda sftp, d=directory: sftp.mkdir(d))
            self.cache.invalidate_parent(self.host.id, directory)

    def rename(self, old_path: str, new_path: str) -> None:
        src = self.expand_path(old_path)
        dst = self.expand_path(new_path)
        self._call("rename", src, lambda sftp: sftp.rename(src, dst))
        self.cache.invalidate(self.host.id, src)
        self.cache.invalidate_parent(self.host.id, src)
        self.cache.invalidate_parent(self.host.id, dst)

    def move(self, src: str, dst: str) -> None:
        """Move within the host (a rename)"""
        self.rename(src, dst)

    def chmod(self, path: str, mode: Union[int, str], recursive: bool = False) -> List[str]:
        """
        Change permissions.

        Args:
            path: Remote path
            mode: Integer mode or octal string such as '755'
            recursive: Apply to the whole tree

        Returns:
            Paths that could not be changed (recursive only)
        """
        if recursive:
            return self.chmod_recursive(path, mode)
        remote = self.expand_path(path)
        value = int(mode, 8) if isinstance(mode, str) else mode
        self._call("chmod", remote, lambda sftp: sftp.chmod(remote, value))
        self.cache.invalidate_parent(self.host.id, remote)
        return []

    def chmod_recursive(
        self,
        path: str,
        mode: Union[int, str],
        on_progress: Optional[ItemProgressCallback] = None,
        progress_every: int = 10,
    ) -> List[str]:
        """
        Change permissions of a tree: discover everything first, then apply.

        Failures on individual items are collected, not raised.

        Returns:
            Paths that could not be changed
        """
        root = self.expand_path(path)
        value = int(mode, 8) if isinstance(mode, str) else mode

        targets = [root] + [entry.path for entry, _ in self._walk(root) if entry.type != FileType.SYMLINK]
        failed: List[str] = []
        for index, target in enumerate(targets, 1):
            try:
                self._call("chmod", target, lambda sftp, t=target: sftp.chmod(t, value))
            except RemoteError as e:
                logger.warning(f"chmod {oct(value)} {target} failed: {e}")
                failed.append(target)
            if on_progress is not None and (index % progress_every == 0 or index == len(targets)):
                on_progress(index, len(targets), target)

        self.cache.clear(self.host.id)
        return failed

    def copy(self, src: str, dst: str) -> None:
        """
        Copy a file or directory on the host.

        Uses ``cp -r`` on the server; when the command is unavailable or
        fails, copies through the SFTP channel instead.
        """
        source = self.expand_path(src)
        target = self.expand_path(dst)
        try:
            result = self.exec(f"cp -r {_shell_path(source)} {_shell_path(target)}")
        except RemoteError as e:
            result = None
            logger.info(f"Server-side copy of {source} unavailable ({e}), copying over SFTP")
        if result is not None and not result.success:
            logger.info(f"Server-side copy of {source} failed ({result.stderr.strip()}), copying over SFTP")
            result = None
        if result is None:
            self._stream_copy(source, target)
        self.cache.invalidate_parent(self.host.id, target)

    def _stream_copy(self, source: str, target: str) -> None:
        stack = [(source, target)]
        while stack:
            src, dst = stack.pop()
            entry = self._lstat(src)
            if entry.type == FileType.SYMLINK:
                link = self._call("readlink", src, lambda sftp, s=src: sftp.readlink(s))
                self._call("symlink", dst, lambda sftp, t=link, d=dst: sftp.symlink(t, d))
            elif entry.is_dir:
                if not self.exists(dst):
                    self._call("mkdir", dst, lambda sftp, d=dst: sftp.mkdir(d))
                for child in self.list(src, use_cache=False):
                    stack.append((child.path, join_remote(dst, child.name)))
            else:
                self._call("copy", src, lambda sftp, s=src, d=dst: self._copy_file(sftp, s, d), stream=True)
            self.cache.invalidate_parent(self.host.id, dst)

    def _copy_file(self, sftp: paramiko.SFTPClient, src: str, dst: str) -> None:
        with sftp.open(src, "rb") as reader, sftp.open(dst, "wb") as writer:
            writer.set_pipelined(True)
            for block in iter(lambda: reader.read(self.config.chunk_size), b""):
                writer.write(block)

    def create_symlink(self, target: str, link_path: str) -> None:
        link = self.expand_path(link_path)
        self._call("symlink", link, lambda sftp: sftp.symlink(target, link))
        self.cache.invalidate_parent(self.host.id, link)

    def chown(self, path: str, owner: str, group: Optional[str] = None, recursive: bool = False) -> None:
        remote = self.expand_path(path)
        owner_spec = f"{owner}:{group}" if group else owner
        flag = "-R " if recursive else ""
        self.run(f"chown {flag}{shlex.quote(owner_spec)} {_shell_path(remote)}")
        if recursive:
            self.cache.clear(self.host.id)
        else:
            self.cache.invalidate_parent(self.host.id, remote)

    # ============================================================
    # Aggregates
    # ============================================================

    def calculate_directory_size(
        self,
        path: str,
        max_depth: int = -1,
        on_progress: Optional[Callable[[int, int], None]] = None,
        progress_every: int = 10,
    ) -> int:
        """
        Total size of the files below ``path``.

        Args:
            path: Remote directory
            max_depth: Levels to descend; -1 means unlimited
            on_progress: Called with (items scanned, bytes so far)
            progress_every: Items between progress reports

        Returns:
            Size in bytes; unreadable subdirectories are skipped
        """
        root = self.expand_path(path)
        total = 0
        for index, (entry, _) in enumerate(self._walk(root, max_depth), 1):
            if entry.type == FileType.FILE:
                total += entry.size
            if on_progress is not None and index % progress_every == 0:
                on_progress(index, total)
        return total

    def checksum(self, path: str, algorithm: str = "md5") -> str:
        """Digest computed on the server with md5sum / sha1sum / sha256sum"""
        command = CHECKSUM_ALGORITHMS.get(algorithm)
        if command is None:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        remote = self.expand_path(path)
        result = self.exec(f"{command} {_shell_path(remote)}")
        if not result.success:
            stderr = result.stderr.lower()
            if "no such file" in stderr:
                raise NotFoundError(f"No such file or directory: {remote}")
            if "permission denied" in stderr:
                raise PermissionDeniedError(f"Permission denied: {remote}")
            raise CommandError(command, result)
        match = _DIGEST_RE.match(result.stdout.strip())
        if match is None:
            raise RemoteError(f"Unexpected {command} output for {remote}: {result.stdout.strip()!r}")
        return match.group(1)

    def resolve_symlink(self, path: str) -> str:
        """Canonical target of a link (readlink -f)"""
        remote = self.expand_path(path)
        return self.run(f"readlink -f {_shell_path(remote)}").stdout.strip()

    def search_files(self, path: str, pattern: str, by_content: bool = False, max_results: int = 200) -> List[str]:
        """Find files by name glob, or by content substring with ``by_content``"""
        remote = self.expand_path(path)
        if by_content:
            command = f"grep -rlF -- {shlex.quote(pattern)} {_shell_path(remote)} 2>/dev/null | head -n {max_results}"
        else:
            command = f"find {_shell_path(remote)} -name {shlex.quote(pattern)} 2>/dev/null | head -n {max_results}"
        result = self.exec(command)
        return [line for line in result.stdout.splitlines() if line.strip()]

    # ============================================================
    # Commands
    # ============================================================

    def exec(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a shell command over the pooled transport.

        Commands are not retried; they may not be idempotent.

        Raises:
            OperationTimeoutError: Command did not finish in time
        """
        limit = self.config.command_timeout if timeout is None else timeout
        client = self._ensure_client()
        try:
            return run_with_timeout(
                self._executor,
                lambda: client.exec_with_code(command, timeout=limit),
                limit,
                f"command on {self.host.id}",
                hint="long-running commands need a larger command_timeout or an explicit timeout",
            )
        except socket.timeout as e:
            raise OperationTimeoutError(
                f"Command on {self.host.id} produced no output for {limit:g}s",
                hint="increase command_timeout",
            ) from e
        except (paramiko.SSHException, EOFError, OSError) as e:
            if is_transport_failure(e):
                self._drop(discard=True, reason=f"command failed: {e}")
            raise ConnectionError(f"Command on {self.host.id} failed: {e}") from e

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """exec, raising CommandError on a non-zero exit"""
        result = self.exec(command, timeout)
        if not result.success:
            raise CommandError(command, result)
        return result

    # ============================================================
    # Cache and health
    # ============================================================

    def invalidate(self, path: str) -> None:
        """Forget the cached listing of the directory containing ``path``"""
        self.cache.invalidate_parent(self.host.id, self.expand_path(path))

    def clear_cache(self, path: Optional[str] = None) -> None:
        """Forget cached listings for this host, or for one directory"""
        self.cache.clear(self.host.id, self.expand_path(path) if path else None)

    def health(self) -> HealthSnapshot:
        return self.health_state.snapshot()

    def check_health(self) -> HealthSnapshot:
        """
        Run one liveness probe (stat of the working directory).

        Called periodically by the monitor thread. Reaching the failure
        threshold drops the channel and the pooled transport so the next
        call reconnects from scratch.
        """
        with self._lock:
            sftp = self._sftp
        if sftp is None:
            return self.health_state.snapshot()

        started = time.perf_counter()
        try:
            run_with_timeout(
                self._executor,
                lambda: sftp.stat("."),
                self.config.health_probe_timeout,
                f"health probe on {self.host.id}",
            )
        except Exception as e:
            logger.warning(f"Health probe for {self.host.id} failed: {e}")
            if self.health_state.record_failure(e):
                logger.error(f"{self.host.id} marked unhealthy after {self.health_state.consecutive_failures} failed probes")
                self.telemetry.record_event("session.unhealthy", {"host": self.host.id, "error": str(e)})
                with self._lock:
                    if self._state != SessionState.CLOSED:
                        self._set_state(SessionState.UNHEALTHY)
                self._drop(discard=True, reason="health check failed")
            return self.health_state.snapshot()

        latency_ms = (time.perf_counter() - started) * 1000
        self.health_state.record_success(latency_ms)
        self.telemetry.record_metric("session.probe_latency_ms", latency_ms, {"host": self.host.id})
        if latency_ms > self.config.latency_warning_ms:
            logger.warning(f"High latency to {self.host.id}: {latency_ms:.0f}ms")
        return self.health_state.snapshot()

    def close(self) -> None:
        """Stop monitoring, release the transport and forget cached listings"""
        with self._lock:
            if self._state == SessionState.CLOSED:
                return
            self._set_state(SessionState.CLOSED)
        self._monitor.stop()
        self._drop(discard=False, reason="session closed")
        self.cache.clear(self.host.id)
        self._executor.shutdown(wait=False, cancel_futures=True)
