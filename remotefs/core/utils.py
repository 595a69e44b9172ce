"""
Core utility functions
"""
import hashlib
import posixpath
import re
from pathlib import Path
from typing import Any, Dict

import paramiko

from .constants import SSH_CONFIG_PATH
from .exceptions import ConfigError


# ============================================================
# SSH Config Management
# ============================================================

def lookup_ssh_alias(alias: str, config_path: str = SSH_CONFIG_PATH) -> Dict[str, Any]:
    """
    Resolve a Host alias from an OpenSSH client config.

    Args:
        alias: Host name in the SSH configuration
        config_path: Config file, ~/.ssh/config by default

    Returns:
        HostDescriptor fields the config defines (address, username, port,
        key_path); keys the config leaves unset are omitted

    Raises:
        ConfigError: If the config file doesn't exist
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigError(f"SSH config {config_path} does not exist")

    entry = paramiko.SSHConfig.from_path(str(path)).lookup(alias)

    fields: Dict[str, Any] = {"address": entry.get("hostname", alias)}
    if "user" in entry:
        fields["username"] = entry["user"]
    if "port" in entry:
        fields["port"] = int(entry["port"])
    if entry.get("identityfile"):
        fields["key_path"] = entry["identityfile"][0]
    return fields


# ============================================================
# Remote Path Utilities
# ============================================================

def normalize_remote_path(path: str) -> str:
    """Collapse duplicate separators and dot segments; keep '/' and '.' intact"""
    if not path:
        return "."
    normalized = posixpath.normpath(path)
    # normpath keeps a leading '//' as-is
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


def remote_parent(path: str) -> str:
    """Parent directory of a normalized remote path"""
    parent = posixpath.dirname(normalize_remote_path(path))
    return parent or "."


def join_remote(base: str, *parts: str) -> str:
    """Join remote path segments with '/'"""
    return normalize_remote_path(posixpath.join(base, *parts))


def is_home_relative(path: str) -> bool:
    """True for '~' and '~/...' paths"""
    return path == "~" or path.startswith("~/")


# ============================================================
# Formatting
# ============================================================

_SPEED_UNITS = (("MB/s", 1024 * 1024), ("KB/s", 1024), ("B/s", 1))
_SPEED_RE = re.compile(r"^\s*([\d.]+)\s*(B/s|KB/s|MB/s|GB/s)\s*$")


def format_speed(bytes_per_second: float) -> str:
    """Human readable transfer rate, e.g. '1.5 MB/s'"""
    for unit, factor in _SPEED_UNITS:
        if bytes_per_second >= factor and factor > 1:
            return f"{bytes_per_second / factor:.1f} {unit}"
    return f"{bytes_per_second:.0f} B/s"


def parse_speed(label: str) -> float:
    """Inverse of format_speed; unknown labels count as 0"""
    match = _SPEED_RE.match(label or "")
    if not match:
        return 0.0
    value, unit = float(match.group(1)), match.group(2)
    factor = {"B/s": 1, "KB/s": 1024, "MB/s": 1024 ** 2, "GB/s": 1024 ** 3}[unit]
    return value * factor


def format_size(size: int) -> str:
    """Human readable byte count"""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


# ============================================================
# Hashing
# ============================================================

def compute_file_hash(path: Path, algorithm: str = "md5") -> str:
    """Hex digest of a local file, read in 8 KiB blocks"""
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(8192), b""):
            hasher.update(block)
    return hasher.hexdigest()
