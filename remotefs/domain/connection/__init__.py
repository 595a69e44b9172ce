"""
Connection domain - host identity, authentication and the shared pool
"""
from .models import (
    AuthMethod,
    HostDescriptor,
    PasswordAuth,
    PrivateKeyAuth,
    AgentAuth,
    AuthMaterial,
    PooledConnection,
)
from .auth import CredentialResolver, DefaultCredentialResolver, locate_agent_socket
from .pool import ConnectionPool

__all__ = [
    "AuthMethod",
    "HostDescriptor",
    "PasswordAuth",
    "PrivateKeyAuth",
    "AgentAuth",
    "AuthMaterial",
    "PooledConnection",
    "CredentialResolver",
    "DefaultCredentialResolver",
    "locate_agent_socket",
    "ConnectionPool",
]
