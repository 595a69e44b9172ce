"""
Secret store implementations
"""
import os
import re
import threading
from typing import Dict, Mapping, Optional

from ..core.constants import SECRET_ENV_PREFIX
from ..core.interfaces import SecretStore


class MemorySecretStore(SecretStore):
    """Process-lifetime secrets, e.g. filled from a keyring by the caller"""

    def __init__(self, secrets: Optional[Mapping[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._secrets[key] = value


class EnvSecretStore(SecretStore):
    """
    Secrets from environment variables.

    ``web-1:passphrase`` is read from ``REMOTEFS_SECRET_WEB_1_PASSPHRASE``.
    """

    def __init__(self, prefix: str = SECRET_ENV_PREFIX, environ: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        self._environ = os.environ if environ is None else environ

    def env_name(self, key: str) -> str:
        return self.prefix + re.sub(r"[^A-Za-z0-9]", "_", key).upper()

    def get(self, key: str) -> Optional[str]:
        return self._environ.get(self.env_name(key)) or None

    def set(self, key: str, value: str) -> None:
        self._environ[self.env_name(key)] = value
