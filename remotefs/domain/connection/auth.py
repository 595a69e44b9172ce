"""
Authentication resolution

Turns a HostDescriptor's auth tag into concrete login material. Each tag has
its own strategy; the agent strategy falls back to interactive prompts and
then to the default key files when no usable agent is running.
"""
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional

import paramiko

from ...core.constants import DEFAULT_KEY_FILES
from ...core.exceptions import AuthenticationError
from ...core.interfaces import PromptProvider, SecretStore
from ...core.logging import get_logger
from .models import AgentAuth, AuthMaterial, AuthMethod, HostDescriptor, PasswordAuth, PrivateKeyAuth

logger = get_logger(__name__)


def locate_agent_socket() -> Optional[str]:
    """
    Return the SSH agent socket if an agent is running and holds keys.

    Returns:
        Socket path, or None when SSH_AUTH_SOCK is unset, dangling, or the
        agent offers no identities
    """
    sock = os.environ.get("SSH_AUTH_SOCK")
    if not sock or not os.path.exists(sock):
        return None

    agent = paramiko.Agent()
    try:
        keys = agent.get_keys()
    finally:
        agent.close()
    if not keys:
        logger.debug(f"SSH agent at {sock} has no identities")
        return None
    return sock


def looks_like_private_key(secret: str) -> bool:
    """PEM/OpenSSH private key material"""
    return "BEGIN" in secret or "PRIVATE KEY" in secret


def looks_like_key_path(secret: str) -> bool:
    return secret.startswith("/") or secret.startswith("~")


class CredentialResolver(ABC):
    """Produces login material for a host"""

    @abstractmethod
    def resolve(self, host: HostDescriptor) -> AuthMaterial:
        """
        Resolve authentication for ``host``.

        Raises:
            AuthenticationError: If required material is missing
        """
        pass


class DefaultCredentialResolver(CredentialResolver):
    """Secret-store backed resolver with an optional interactive fallback"""

    def __init__(
        self,
        secret_store: SecretStore,
        prompt_provider: Optional[PromptProvider] = None,
        agent_locator: Callable[[], Optional[str]] = locate_agent_socket,
        default_key_files: Iterable[str] = DEFAULT_KEY_FILES,
    ):
        """
        Args:
            secret_store: Where passwords, key paths and vault secrets live
            prompt_provider: Asks a human when stored material is missing
            agent_locator: Finds a usable agent socket
            default_key_files: Keys tried last when the agent is unavailable
        """
        self.secret_store = secret_store
        self.prompt_provider = prompt_provider
        self.agent_locator = agent_locator
        self.default_key_files = tuple(default_key_files)

    def resolve(self, host: HostDescriptor) -> AuthMaterial:
        handlers = {
            AuthMethod.PASSWORD: self._resolve_password,
            AuthMethod.PRIVATE_KEY: self._resolve_private_key,
            AuthMethod.AGENT: self._resolve_agent,
            AuthMethod.VAULT: self._resolve_vault,
        }
        return handlers[host.auth_method](host)

    # ------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------

    def _resolve_password(self, host: HostDescriptor) -> PasswordAuth:
        secret = self.secret_store.get(self._secret_key(host))
        if secret:
            return PasswordAuth(secret)
        return self._prompt_password(host)

    def _resolve_private_key(self, host: HostDescriptor) -> PrivateKeyAuth:
        key = self._secret_key(host)
        passphrase = self.secret_store.get(f"{key}:passphrase")
        if host.key_path:
            return self._key_file(host.key_path, passphrase)

        secret = self.secret_store.get(key)
        if secret and looks_like_private_key(secret):
            return PrivateKeyAuth(key_data=secret, passphrase=passphrase)
        if secret:
            return self._key_file(secret, passphrase)
        raise AuthenticationError(f"No private key configured for {host}")

    def _resolve_agent(self, host: HostDescriptor) -> AuthMaterial:
        socket = self.agent_locator()
        if socket:
            return AgentAuth(socket)

        logger.warning(f"SSH agent unavailable for {host}, falling back")
        if self.prompt_provider is not None:
            choice = self.prompt_provider.prompt(
                f"SSH agent unavailable for {host}. Authenticate with (password/key)",
                default="password",
            ).strip().lower()
            if choice.startswith("k"):
                path = self.prompt_provider.prompt("Private key file", default=self.default_key_files[0])
                passphrase = self.prompt_provider.prompt("Key passphrase (empty for none)", password=True)
                return self._key_file(path, passphrase or None)
            return self._prompt_password(host)

        for candidate in self.default_key_files:
            if Path(candidate).expanduser().exists():
                logger.info(f"Using default key {candidate} for {host}")
                return PrivateKeyAuth(key_path=candidate)
        raise AuthenticationError(
            f"SSH agent unavailable for {host} and no fallback credentials",
            hint="start ssh-agent and add a key, or configure a password or key file",
        )

    def _resolve_vault(self, host: HostDescriptor) -> AuthMaterial:
        secret = self.secret_store.get(self._secret_key(host))
        if not secret:
            raise AuthenticationError(f"No vault secret stored for {host}")
        if looks_like_private_key(secret):
            return PrivateKeyAuth(key_data=secret)
        if looks_like_key_path(secret):
            return self._key_file(secret, None)
        return PasswordAuth(secret)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _secret_key(self, host: HostDescriptor) -> str:
        return host.credential_ref or host.id

    def _key_file(self, path: str, passphrase: Optional[str]) -> PrivateKeyAuth:
        if not Path(path).expanduser().exists():
            raise AuthenticationError(f"Private key file not found: {path}")
        return PrivateKeyAuth(key_path=path, passphrase=passphrase)

    def _prompt_password(self, host: HostDescriptor) -> PasswordAuth:
        if self.prompt_provider is None:
            raise AuthenticationError(f"No password available for {host}")
        password = self.prompt_provider.prompt(f"Password for {host}", password=True)
        if not password:
            raise AuthenticationError(f"Empty password for {host}")
        return PasswordAuth(password)
