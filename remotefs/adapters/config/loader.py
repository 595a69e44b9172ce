"""
Configuration loader with priority: env > explicit overrides > TOML > defaults
"""
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.constants import ENV_PREFIX, SSH_CONFIG_PATH
from ...core.exceptions import ConfigError
from ...core.utils import lookup_ssh_alias
from ...domain.connection.models import AuthMethod, HostDescriptor
from ...domain.session.models import SessionConfig
from ...domain.transfer.models import TransferConfig


@dataclass
class RemoteFsConfig:
    """Complete configuration"""
    session: SessionConfig = field(default_factory=SessionConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    hosts: List[HostDescriptor] = field(default_factory=list)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    ssh_config: str = SSH_CONFIG_PATH

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "session": self.session.to_dict(),
            "transfer": self.transfer.to_dict(),
            "hosts": {h.id: {k: v for k, v in h.to_dict().items() if k != "id"} for h in self.hosts},
            "log_level": self.log_level,
            "log_file": self.log_file,
            "ssh_config": self.ssh_config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteFsConfig":
        """
        Create from dictionary.

        Raises:
            ConfigError: If a section has an invalid shape or value
        """
        ssh_config = data.get("ssh_config", SSH_CONFIG_PATH)
        try:
            hosts = [
                _host_from_table(host_id, values, ssh_config)
                for host_id, values in (data.get("hosts") or {}).items()
            ]
            return cls(
                session=SessionConfig.from_dict(data.get("session") or {}),
                transfer=TransferConfig.from_dict(data.get("transfer") or {}),
                hosts=hosts,
                log_level=data.get("log_level", "INFO"),
                log_file=data.get("log_file"),
                ssh_config=ssh_config,
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def _host_from_table(host_id: str, values: Dict[str, Any], ssh_config: str) -> HostDescriptor:
    """
    Build a host from its ``[hosts.<id>]`` table.

    ``ssh_alias`` pulls address, user, port and identity file from the SSH
    config; keys set in the table win. An identity file implies key auth
    unless ``auth_method`` says otherwise.
    """
    values = dict(values)
    alias = values.pop("ssh_alias", None)
    if alias:
        resolved = lookup_ssh_alias(alias, ssh_config)
        if "key_path" in resolved and "auth_method" not in values:
            values["auth_method"] = AuthMethod.PRIVATE_KEY.value
        values = {**resolved, **values}
    return HostDescriptor.from_dict({"id": host_id, **values})


class ConfigLoader:
    """Configuration loader with priority support"""

    # Environment variable (after the prefix) -> dotted config key
    ENV_MAPPINGS = {
        "LOG_LEVEL": "log_level",
        "LOG_FILE": "log_file",
        "SSH_CONFIG": "ssh_config",
        "CACHE_TTL": "session.cache_ttl",
        "CACHE_MAX_BYTES": "session.cache_max_bytes",
        "INIT_TIMEOUT": "session.init_timeout",
        "OPERATION_TIMEOUT": "session.operation_timeout",
        "PATH_EXPAND_TIMEOUT": "session.path_expand_timeout",
        "COMMAND_TIMEOUT": "session.command_timeout",
        "HEALTH_INTERVAL": "session.health_interval",
        "VERIFY_CHECKSUM": "session.verify_checksum",
        "MAX_RETRIES": "session.retry.max_retries",
        "RETRY_DELAY": "session.retry.initial_delay",
        "MAX_CONCURRENT": "transfer.max_concurrent",
        "MAX_PER_HOST": "transfer.max_per_host",
        "LARGE_FILE_THRESHOLD": "transfer.large_file_threshold",
    }

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self._env_prefix = env_prefix

    def load_toml(self, path: Path) -> Dict[str, Any]:
        """Load TOML configuration file"""
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            return tomllib.loads(path.read_text(encoding='utf-8'))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML configuration {path}: {e}") from e

    def load_env(self, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        environ = os.environ if environ is None else environ
        config: Dict[str, Any] = {}

        for suffix, config_key in self.ENV_MAPPINGS.items():
            value = environ.get(self._env_prefix + suffix)
            if not value:
                continue
            node = config
            *parents, leaf = config_key.split(".")
            for part in parents:
                node = node.setdefault(part, {})
            node[leaf] = self._convert_value(value)

        return config

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type"""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            pass

        return value

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configurations with priority.
        Later configs override earlier ones.
        """
        result: Dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def load(
        self,
        toml_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        use_env: bool = True,
        environ: Optional[Dict[str, str]] = None,
    ) -> RemoteFsConfig:
        """
        Load configuration with priority: env > overrides > TOML > defaults

        Args:
            toml_path: Path to TOML configuration file
            overrides: Programmatic overrides
            use_env: Whether to load from environment variables
            environ: Environment to read instead of os.environ

        Returns:
            Merged configuration

        Raises:
            ConfigError: Missing or invalid file, or invalid values
        """
        configs = []

        if toml_path:
            configs.append(self.load_toml(Path(toml_path)))
        if overrides:
            configs.append(overrides)
        if use_env:
            env_config = self.load_env(environ)
            if env_config:
                configs.append(env_config)

        return RemoteFsConfig.from_dict(self.merge_configs(*configs))
