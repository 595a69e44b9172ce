"""
Connection data models
"""
import codecs
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from ...core.client import RemoteClient
from ...core.constants import DEFAULT_FILENAME_ENCODING, DEFAULT_SSH_PORT


class AuthMethod(str, Enum):
    """How a host authenticates"""
    PASSWORD = "password"
    PRIVATE_KEY = "private_key"
    AGENT = "agent"
    VAULT = "vault"


@dataclass(frozen=True)
class HostDescriptor:
    """Identity and address of a remote host"""
    id: str
    address: str
    username: str
    port: int = DEFAULT_SSH_PORT
    auth_method: AuthMethod = AuthMethod.PASSWORD
    keep_alive: bool = True
    credential_ref: Optional[str] = None
    key_path: Optional[str] = None
    encoding: str = DEFAULT_FILENAME_ENCODING

    def __post_init__(self):
        try:
            codecs.lookup(self.encoding)
        except LookupError as e:
            raise ValueError(f"Unknown filename encoding for host {self.id}: {self.encoding}") from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "address": self.address,
            "username": self.username,
            "port": self.port,
            "auth_method": self.auth_method.value,
            "keep_alive": self.keep_alive,
            "credential_ref": self.credential_ref,
            "key_path": self.key_path,
            "encoding": self.encoding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostDescriptor":
        """Create from dictionary"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "auth_method" in valid_fields:
            valid_fields["auth_method"] = AuthMethod(valid_fields["auth_method"])
        if "port" in valid_fields:
            valid_fields["port"] = int(valid_fields["port"])
        return cls(**valid_fields)

    def __str__(self) -> str:
        return f"{self.username}@{self.address}:{self.port}"


# ============================================================
# Resolved authentication material
# ============================================================

@dataclass(frozen=True)
class PasswordAuth:
    """Password login"""
    password: str = field(repr=False)


@dataclass(frozen=True)
class PrivateKeyAuth:
    """Key login; exactly one of key_path / key_data is set"""
    key_path: Optional[str] = None
    key_data: Optional[str] = field(default=None, repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if bool(self.key_path) == bool(self.key_data):
            raise ValueError("PrivateKeyAuth needs exactly one of key_path or key_data")


@dataclass(frozen=True)
class AgentAuth:
    """Login through a running SSH agent"""
    socket: str


AuthMaterial = Union[PasswordAuth, PrivateKeyAuth, AgentAuth]


@dataclass
class PooledConnection:
    """A live transport shared by refcount"""
    host: HostDescriptor
    client: RemoteClient
    ref_count: int = 1
    generation: int = 0
