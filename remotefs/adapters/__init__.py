"""
Adapters - paramiko transport, terminal prompts, configuration and wiring
"""
from .connection import ParamikoConnectionFactory
from .prompts import RichPromptProvider
from .config import ConfigLoader, RemoteFsConfig
from .app import RemoteFs

__all__ = [
    "ParamikoConnectionFactory",
    "RichPromptProvider",
    "ConfigLoader",
    "RemoteFsConfig",
    "RemoteFs",
]
