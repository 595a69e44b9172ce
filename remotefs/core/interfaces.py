"""
Core interfaces for dependency injection
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .client import RemoteClient
    from ..domain.connection.models import AuthMaterial, HostDescriptor
    from ..domain.session.models import FileEntry


class ConnectionFactory(ABC):
    """SSH connection factory interface"""

    @abstractmethod
    def create(self, host: HostDescriptor, auth: AuthMaterial) -> RemoteClient:
        """Open and authenticate a transport for ``host``"""
        pass


class SecretStore(ABC):
    """Opaque string secret storage"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the secret or None when it is not stored"""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a secret"""
        pass


class PromptProvider(ABC):
    """User prompt interface"""

    @abstractmethod
    def prompt(self, message: str, default: Optional[str] = None, password: bool = False) -> str:
        """Prompt user for input"""
        pass

    @abstractmethod
    def confirm(self, message: str, default: bool = False) -> bool:
        """Prompt user for confirmation"""
        pass


class LocalFileSystem(ABC):
    """Local side of synchronization and local-to-local copy/move"""

    @abstractmethod
    def list(self, path: str) -> List[FileEntry]:
        """List a directory"""
        pass

    @abstractmethod
    def stat(self, path: str) -> FileEntry:
        """Describe a single path"""
        pass

    @abstractmethod
    def copy(self, src: str, dst: str) -> None:
        """Copy a file or directory tree"""
        pass

    @abstractmethod
    def move(self, src: str, dst: str) -> None:
        """Move or rename"""
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a file or directory tree"""
        pass

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Read file contents"""
        pass

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Create a directory and its parents"""
        pass
