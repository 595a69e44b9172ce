"""
Application wiring - builds the shared pool and the services on top of it
"""
from pathlib import Path
from typing import Optional

from ..core.interfaces import ConnectionFactory, LocalFileSystem, PromptProvider, SecretStore
from ..core.logging import get_logger, setup_logging
from ..core.telemetry import Telemetry, get_telemetry
from ..domain.connection.auth import CredentialResolver, DefaultCredentialResolver
from ..domain.connection.models import HostDescriptor
from ..domain.connection.pool import ConnectionPool
from ..domain.session.manager import SessionManager
from ..domain.session.service import RemoteFileSession
from ..domain.sync.service import DirectorySynchronizer
from ..domain.transfer.coordinator import TransferCoordinator
from ..infrastructure.local_fs import OsFileSystem
from ..infrastructure.secrets import EnvSecretStore
from .config.loader import ConfigLoader, RemoteFsConfig
from .connection import ParamikoConnectionFactory
from .prompts import RichPromptProvider

logger = get_logger(__name__)


class RemoteFs:
    """
    One instance per process: owns the connection pool and every service
    that shares it. Call ``dispose`` at shutdown.
    """

    def __init__(
        self,
        config: Optional[RemoteFsConfig] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        credential_resolver: Optional[CredentialResolver] = None,
        secret_store: Optional[SecretStore] = None,
        prompt_provider: Optional[PromptProvider] = None,
        local_fs: Optional[LocalFileSystem] = None,
        telemetry: Optional[Telemetry] = None,
        start_scheduler: bool = True,
    ):
        self.config = RemoteFsConfig() if config is None else config
        self.telemetry = get_telemetry() if telemetry is None else telemetry
        self.secret_store = EnvSecretStore() if secret_store is None else secret_store
        if credential_resolver is None:
            credential_resolver = DefaultCredentialResolver(self.secret_store, prompt_provider)
        self.credential_resolver = credential_resolver
        if connection_factory is None:
            connection_factory = ParamikoConnectionFactory()
        self.pool = ConnectionPool(
            connection_factory,
            self.credential_resolver,
            telemetry=self.telemetry,
        )
        self.sessions = SessionManager(self.pool, self.config.session, telemetry=self.telemetry)
        for host in self.config.hosts:
            self.sessions.register(host)
        self.transfers = TransferCoordinator(
            self.sessions,
            self.config.transfer,
            telemetry=self.telemetry,
            autostart=start_scheduler,
        )
        self.local_fs = OsFileSystem() if local_fs is None else local_fs
        self.synchronizer = DirectorySynchronizer(self.sessions, self.local_fs, self.transfers)

    @classmethod
    def from_config_file(
        cls,
        path: Optional[Path] = None,
        interactive: bool = False,
        **kwargs,
    ) -> "RemoteFs":
        """
        Load configuration (TOML + REMOTEFS_* environment), set up logging
        and build the services.

        Args:
            path: TOML file; environment and defaults only when None
            interactive: Prompt on the terminal for missing credentials
        """
        config = ConfigLoader().load(path)
        setup_logging(config.log_level, Path(config.log_file).expanduser() if config.log_file else None)
        if interactive and "prompt_provider" not in kwargs:
            kwargs["prompt_provider"] = RichPromptProvider()
        return cls(config, **kwargs)

    def session(self, host: HostDescriptor) -> RemoteFileSession:
        """Register a host and return its file session"""
        return self.sessions.open(host)

    def dispose(self) -> None:
        """Stop transfers, close sessions, then close every pooled transport"""
        self.transfers.dispose()
        self.sessions.dispose()
        self.pool.dispose()
        logger.debug("remotefs disposed")

    def __enter__(self) -> "RemoteFs":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.dispose()
