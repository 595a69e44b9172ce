from __future__ import annotations

import io
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import paramiko

from .constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_KEEPALIVE_INTERVAL, DEFAULT_SSH_PORT
from .exceptions import AuthenticationError, ConnectionError
from .logging import get_logger

logger = get_logger(__name__)

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)


@dataclass
class CommandResult:
    """Result of a remote command"""
    exit_code: int
    stdout: str
    stderr: str
    success: bool = False

    def __post_init__(self):
        self.success = self.exit_code == 0


class RemoteClient:
    """
    Thin wrapper around paramiko.SSHClient.

    - keeps host / user / port explicitly (paramiko does not expose them)
    - password, private key (file or inline data) and agent login
    - one SSH transport, many logical channels: every ``open_sftp`` and
      ``exec_with_code`` call gets its own channel, so a shell and a file
      browser can share the connection without interleaving bytes
    - close listeners fire when the transport dies underneath us
    """

    def __init__(
        self,
        host: str,
        user: str,
        port: int = DEFAULT_SSH_PORT,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive: int = DEFAULT_KEEPALIVE_INTERVAL,
    ) -> None:
        self.host = host
        self.user = user
        self.port = port
        self.timeout = timeout
        self.keepalive = keepalive

        self.client = paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        self._listeners: List[Callable[[Optional[BaseException]], None]] = []
        self._lock = threading.Lock()
        self._closed = False

    # --------------------
    # Connection management
    # --------------------
    def connect(
        self,
        password: Optional[str] = None,
        key_path: Optional[str] = None,
        key_data: Optional[str] = None,
        passphrase: Optional[str] = None,
        allow_agent: bool = False,
    ) -> None:
        """
        Open and authenticate the transport.

        Raises:
            AuthenticationError: Credentials were rejected or unusable
            ConnectionError: Host unreachable or handshake failed
        """
        pkey = None
        if key_data:
            pkey = self._load_private_key_data(key_data, passphrase)
        elif key_path:
            pkey = self._load_private_key(key_path, passphrase)

        try:
            self.client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=password,
                pkey=pkey,
                passphrase=passphrase,
                allow_agent=allow_agent,
                look_for_keys=False,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
            )
        except paramiko.AuthenticationException as e:
            self.client.close()
            raise AuthenticationError(f"Authentication failed for {self.user}@{self.host}: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.client.close()
            raise ConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        transport = self.client.get_transport()
        if transport is not None and self.keepalive:
            transport.set_keepalive(self.keepalive)
        if transport is not None:
            key = transport.get_remote_server_key()
            logger.debug(f"{self.host} host key {key.get_name()} {key.fingerprint}")

    # --------------------
    # Load private key
    # --------------------
    def _load_private_key(self, path: str, passphrase: Optional[str] = None) -> paramiko.PKey:
        """Try Ed25519, RSA and ECDSA in turn"""
        p = Path(path).expanduser()
        for key_cls in _KEY_CLASSES:
            try:
                return key_cls.from_private_key_file(str(p), password=passphrase)
            except (paramiko.SSHException, ValueError):
                continue
            except OSError as e:
                raise AuthenticationError(f"Cannot read private key {p}: {e}") from e
        raise AuthenticationError(f"Failed to load private key at {p}")

    def _load_private_key_data(self, data: str, passphrase: Optional[str] = None) -> paramiko.PKey:
        """Same as _load_private_key, for key material held in memory"""
        for key_cls in _KEY_CLASSES:
            try:
                return key_cls.from_private_key(io.StringIO(data), password=passphrase)
            except (paramiko.SSHException, ValueError):
                continue
        raise AuthenticationError("Failed to parse inline private key data")

    # --------------------
    # Liveness
    # --------------------
    def is_active(self) -> bool:
        """True while the underlying transport is up"""
        transport = self.client.get_transport()
        return not self._closed and transport is not None and transport.is_active()

    def add_close_listener(self, listener: Callable[[Optional[BaseException]], None]) -> None:
        """Register a callback fired once on unexpected transport loss"""
        with self._lock:
            self._listeners.append(listener)

    def _notify_lost(self, error: Optional[BaseException]) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            listeners, self._listeners = self._listeners, []
        logger.warning(f"Transport to {self.host} lost: {error}")
        for listener in listeners:
            listener(error)

    # --------------------
    # Channels
    # --------------------
    def exec_with_code(self, cmd: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command on its own channel and collect its output"""
        try:
            _, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, EOFError, OSError) as e:
            if not self.is_active():
                self._notify_lost(e)
            raise
        return CommandResult(exit_code=exit_code, stdout=out, stderr=err)

    def open_sftp(self) -> paramiko.SFTPClient:
        """Open a new SFTP channel on the shared transport"""
        try:
            return self.client.open_sftp()
        except (paramiko.SSHException, EOFError, OSError) as e:
            if not self.is_active():
                self._notify_lost(e)
            raise

    def close(self) -> None:
        """Close the transport; listeners are not notified"""
        with self._lock:
            self._closed = True
            self._listeners = []
        self.client.close()

    # --------------------
    # Context manager
    # --------------------
    def __enter__(self) -> RemoteClient:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
