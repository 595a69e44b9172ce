"""Shared pytest fixtures: an in-process SSH/SFTP stand-in backed by a temp dir."""
from __future__ import annotations

import hashlib
import os
import posixpath
import shlex
import shutil
import stat
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

import paramiko
import pytest
from paramiko.sftp import CMD_CLOSE, CMD_HANDLE, CMD_NAME, CMD_OPENDIR, CMD_READDIR, CMD_STATUS

from remotefs.core.client import CommandResult
from remotefs.core.interfaces import ConnectionFactory
from remotefs.core.telemetry import Telemetry
from remotefs.domain.connection.auth import DefaultCredentialResolver
from remotefs.domain.connection.models import HostDescriptor
from remotefs.domain.connection.pool import ConnectionPool
from remotefs.domain.session.cache import DirectoryCache
from remotefs.domain.session.models import RetryPolicy, SessionConfig
from remotefs.domain.session.service import RemoteFileSession
from remotefs.infrastructure.secrets import MemorySecretStore

HOME = "/home/tester"


class FakeSFTPFile:
    """Local file handle with the paramiko SFTPFile extras the session uses."""

    def __init__(self, handle, sftp: "FakeSFTP"):
        self._handle = handle
        self._sftp = sftp

    def seek(self, offset: int, whence: int = 0) -> int:
        self._sftp.seeks.append(offset)
        return self._handle.seek(offset, whence)

    def set_pipelined(self, pipelined: bool = True) -> None:
        pass

    def read(self, size: int = -1) -> bytes:
        self._sftp._hook("read")
        return self._handle.read(size)

    def write(self, data: bytes) -> int:
        return self._handle.write(data)

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "FakeSFTPFile":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


class FakeSFTP:
    """
    SFTP client stand-in: remote absolute paths map onto ``root``.

    ``fail(method, *errors)`` queues exceptions raised by the next calls of
    ``method``; ``delays[method]`` sleeps before each call.
    """

    def __init__(self, root: Path):
        self.root = root
        (root / HOME.lstrip("/")).mkdir(parents=True, exist_ok=True)
        self.calls: Counter = Counter()
        self.failures: Dict[str, List[BaseException]] = {}
        self.delays: Dict[str, float] = {}
        self.seeks: List[int] = []
        self.handles: Dict[bytes, tuple] = {}
        self.closed = 0

    # helpers ---------------------------------------------------------

    def local(self, path: str) -> Path:
        if not path.startswith("/"):
            path = posixpath.join(HOME, path)
        return self.root / posixpath.normpath(path).lstrip("/")

    def remote(self, local: Path) -> str:
        return "/" + local.relative_to(self.root).as_posix()

    def fail(self, method: str, *errors: BaseException) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _hook(self, method: str) -> None:
        self.calls[method] += 1
        delay = self.delays.get(method)
        if delay:
            time.sleep(delay)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    # paramiko.SFTPClient surface ---------------------------------------

    def listdir_attr(self, path: str = ".") -> List[paramiko.SFTPAttributes]:
        self._hook("listdir_attr")
        directory = self.local(path)
        # paramiko decodes names as strict UTF-8
        return [
            paramiko.SFTPAttributes.from_stat(
                os.lstat(directory / name),
                filename=name.encode("utf-8", "surrogateescape").decode("utf-8"),
            )
            for name in sorted(os.listdir(directory))
        ]

    def _request(self, t: int, *args):
        """Raw protocol requests for directory reads with undecoded names"""
        self._hook("request")
        reply = paramiko.Message()
        if t == CMD_OPENDIR:
            directory = os.path.join(os.fsencode(self.root), args[0].lstrip(b"/"))
            handle = f"dir{len(self.handles)}".encode()
            self.handles[handle] = (directory, [b".", b".."] + sorted(os.listdir(directory)))
            reply.add_string(handle)
            reply.rewind()
            return CMD_HANDLE, reply
        if t == CMD_READDIR:
            directory, names = self.handles[args[0]]
            if not names:
                raise EOFError()
            reply.add_int(len(names))
            for name in names:
                st = os.lstat(os.path.join(directory, name))
                reply.add_string(name)
                reply.add_string(stat.filemode(st.st_mode).encode() + b" 1 tester staff " + name)
                paramiko.SFTPAttributes.from_stat(st)._pack(reply)
            names.clear()
            reply.rewind()
            return CMD_NAME, reply
        if t == CMD_CLOSE:
            del self.handles[args[0]]
            return CMD_STATUS, reply
        raise NotImplementedError(t)

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        self._hook("stat")
        return paramiko.SFTPAttributes.from_stat(os.stat(self.local(path)))

    def lstat(self, path: str) -> paramiko.SFTPAttributes:
        self._hook("lstat")
        return paramiko.SFTPAttributes.from_stat(os.lstat(self.local(path)))

    def readlink(self, path: str) -> str:
        self._hook("readlink")
        return os.readlink(self.local(path))

    def symlink(self, source: str, dest: str) -> None:
        self._hook("symlink")
        os.symlink(source, self.local(dest))

    def normalize(self, path: str) -> str:
        self._hook("normalize")
        return posixpath.normpath(posixpath.join(HOME, path))

    def open(self, path: str, mode: str = "r") -> FakeSFTPFile:
        self._hook("open")
        return FakeSFTPFile(open(self.local(path), mode), self)

    def mkdir(self, path: str, mode: int = 0o777) -> None:
        self._hook("mkdir")
        os.mkdir(self.local(path), mode)

    def rmdir(self, path: str) -> None:
        self._hook("rmdir")
        os.rmdir(self.local(path))

    def remove(self, path: str) -> None:
        self._hook("remove")
        os.remove(self.local(path))

    def rename(self, old: str, new: str) -> None:
        self._hook("rename")
        os.rename(self.local(old), self.local(new))

    def chmod(self, path: str, mode: int) -> None:
        self._hook("chmod")
        os.chmod(self.local(path), mode)

    def close(self) -> None:
        self.closed += 1


class FakeClient:
    """RemoteClient stand-in; shell commands are interpreted against the SFTP root."""

    def __init__(self, host: HostDescriptor, sftp: FakeSFTP):
        self.host = host
        self.sftp = sftp
        self.active = True
        self.closed = False
        self.commands: List[str] = []
        self.fail_commands = False
        self.command_delay = 0.0
        self._listeners = []

    def is_active(self) -> bool:
        return self.active and not self.closed

    def add_close_listener(self, listener) -> None:
        self._listeners.append(listener)

    def lose(self, error: Optional[BaseException] = None) -> None:
        """Simulate the transport dying underneath its users"""
        self.active = False
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(error)

    def open_sftp(self) -> FakeSFTP:
        self.sftp._hook("open_sftp")
        return self.sftp

    def close(self) -> None:
        self.closed = True
        self._listeners = []

    def exec_with_code(self, cmd: str, timeout: Optional[float] = None) -> CommandResult:
        self.commands.append(cmd)
        if self.command_delay:
            time.sleep(self.command_delay)
        argv = shlex.split(cmd)
        if self.fail_commands:
            return CommandResult(127, "", f"sh: {argv[0]}: command not found")

        if argv[:2] == ["cp", "-r"]:
            src, dst = self.sftp.local(argv[2]), self.sftp.local(argv[3])
            if src.is_dir():
                shutil.copytree(src, dst, symlinks=True)
            else:
                shutil.copy2(src, dst)
            return CommandResult(0, "", "")

        if argv[0] in ("md5sum", "sha1sum", "sha256sum"):
            target = self.sftp.local(argv[1])
            if not target.exists():
                return CommandResult(1, "", f"{argv[0]}: {argv[1]}: No such file or directory")
            digest = hashlib.new(argv[0][:-3], target.read_bytes()).hexdigest()
            name = argv[1]
            if "\\" in name or "\n" in name:
                # coreutils escapes the name and flags the line with a leading backslash
                name = name.replace("\\", "\\\\").replace("\n", "\\n")
                digest = "\\" + digest
            return CommandResult(0, f"{digest}  {name}\n", "")

        if argv[:2] == ["readlink", "-f"]:
            resolved = Path(os.path.realpath(self.sftp.local(argv[2])))
            relative = resolved.relative_to(os.path.realpath(self.sftp.root))
            return CommandResult(0, "/" + relative.as_posix() + "\n", "")

        if argv[0] == "grep":
            needle, root = argv[3], self.sftp.local(argv[4])
            hits = [
                self.sftp.remote(Path(current) / name)
                for current, _, names in os.walk(root)
                for name in sorted(names)
                if needle.encode() in (Path(current) / name).read_bytes()
            ]
            return CommandResult(0, "".join(f"{hit}\n" for hit in hits), "")

        return CommandResult(127, "", f"sh: {argv[0]}: command not found")


class FakeFactory(ConnectionFactory):
    """Counts transports opened; every client shares one SFTP backend"""

    def __init__(self, sftp: FakeSFTP):
        self.sftp = sftp
        self.clients: List[FakeClient] = []
        self.auth = []
        self.error: Optional[BaseException] = None
        self.delay = 0.0
        self._lock = threading.Lock()

    def create(self, host: HostDescriptor, auth) -> FakeClient:
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        client = FakeClient(host, self.sftp)
        with self._lock:
            self.clients.append(client)
            self.auth.append(auth)
        return client

    @property
    def opened(self) -> int:
        return len(self.clients)

    @property
    def closed(self) -> int:
        return sum(1 for c in self.clients if c.closed)


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def sftp(remote_root: Path) -> FakeSFTP:
    return FakeSFTP(remote_root)


@pytest.fixture
def factory(sftp: FakeSFTP) -> FakeFactory:
    return FakeFactory(sftp)


@pytest.fixture
def host() -> HostDescriptor:
    return HostDescriptor(id="web", address="10.0.0.5", username="deploy")


@pytest.fixture
def secrets() -> MemorySecretStore:
    return MemorySecretStore({"web": "hunter2", "db": "s3cret"})


@pytest.fixture
def telemetry() -> Telemetry:
    return Telemetry()


@pytest.fixture
def pool(factory: FakeFactory, secrets: MemorySecretStore, telemetry: Telemetry) -> ConnectionPool:
    pool = ConnectionPool(factory, DefaultCredentialResolver(secrets), telemetry=telemetry)
    yield pool
    pool.dispose()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        retry=RetryPolicy(max_retries=2, initial_delay=0, max_delay=0),
        health_monitoring=False,
        chunk_size=8,
    )


@pytest.fixture
def cache() -> DirectoryCache:
    return DirectoryCache()


@pytest.fixture
def session(host, pool, cache, session_config, telemetry) -> RemoteFileSession:
    session = RemoteFileSession(host, pool, cache=cache, config=session_config, telemetry=telemetry)
    yield session
    session.close()


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until ``predicate`` is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
