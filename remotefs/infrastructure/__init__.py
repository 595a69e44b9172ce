"""
Infrastructure layer - local filesystem and secret storage
"""
from .local_fs import OsFileSystem
from .secrets import MemorySecretStore, EnvSecretStore

__all__ = ["OsFileSystem", "MemorySecretStore", "EnvSecretStore"]
