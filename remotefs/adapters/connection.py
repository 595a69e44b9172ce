"""
Connection factory implementation
"""
import os

from ..core.client import RemoteClient
from ..core.constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_KEEPALIVE_INTERVAL
from ..core.exceptions import AuthenticationError, ConnectionError
from ..core.interfaces import ConnectionFactory
from ..core.logging import get_logger
from ..domain.connection.models import AgentAuth, AuthMaterial, HostDescriptor, PasswordAuth, PrivateKeyAuth

logger = get_logger(__name__)


class ParamikoConnectionFactory(ConnectionFactory):
    """RemoteClient connection factory"""

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL,
    ):
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval

    def create(self, host: HostDescriptor, auth: AuthMaterial) -> RemoteClient:
        """
        Create and connect SSH client.

        Args:
            host: Host to connect to
            auth: Resolved login material

        Returns:
            Connected RemoteClient instance

        Raises:
            AuthenticationError: Credentials rejected
            ConnectionError: If connection fails
        """
        client = RemoteClient(
            host=host.address,
            user=host.username,
            port=host.port,
            timeout=self.connect_timeout,
            keepalive=self.keepalive_interval if host.keep_alive else 0,
        )

        try:
            if isinstance(auth, PasswordAuth):
                client.connect(password=auth.password)
            elif isinstance(auth, PrivateKeyAuth):
                client.connect(key_path=auth.key_path, key_data=auth.key_data, passphrase=auth.passphrase)
            elif isinstance(auth, AgentAuth):
                # paramiko talks to the agent named by SSH_AUTH_SOCK
                if os.environ.get("SSH_AUTH_SOCK") != auth.socket:
                    logger.warning(f"Agent socket {auth.socket} differs from SSH_AUTH_SOCK")
                client.connect(allow_agent=True)
            else:
                raise AuthenticationError(f"Unsupported auth material for {host}: {type(auth).__name__}")
        except (AuthenticationError, ConnectionError):
            raise
        except Exception as e:
            raise ConnectionError(f"Failed to connect to {host}: {e}") from e

        logger.debug(f"Connected to {host}")
        return client
