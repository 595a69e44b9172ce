"""
Configuration adapters
"""
from .loader import ConfigLoader, RemoteFsConfig

__all__ = ["ConfigLoader", "RemoteFsConfig"]
